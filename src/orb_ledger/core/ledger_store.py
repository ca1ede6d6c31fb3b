"""
The persisted, deduplicated, newest-first ledger of the active wallet.

Every mutation runs under one asyncio.Lock. The lock only covers the
persist-then-swap step; network I/O always happens outside of it.
Subscribers are notified after the blob has been written, never before.
"""
import asyncio
import logging
from typing import Iterable, List, Optional, Set, Tuple

from pydantic import TypeAdapter

from orb_ledger.config import DEFAULT_STORAGE_KEY
from orb_ledger.core.entities.transaction import WRAPPED_SOL_MINT, RawTransaction
from orb_ledger.core.exceptions import LedgerPersistenceError
from orb_ledger.core.interfaces.datasource import ILedgerStorage
from orb_ledger.core.use_cases.ledger_merge import merge_transactions

logger = logging.getLogger(__name__)

_LEDGER_ADAPTER = TypeAdapter(List[RawTransaction])
_CLOSED = object()


def encode_ledger(transactions: Iterable[RawTransaction]) -> str:
    return _LEDGER_ADAPTER.dump_json(list(transactions), by_alias=True).decode("utf-8")


def decode_ledger(payload: str) -> List[RawTransaction]:
    return _LEDGER_ADAPTER.validate_json(payload)


class LedgerSubscription:
    """
    Push channel of full ledger snapshots. The current snapshot is delivered
    right after subscribing, then the latest one after each successful merge.
    At most one snapshot is pending: a slow reader skips straight to the newest.
    """

    def __init__(self, store: "LedgerStore"):
        self._store = store
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=1)
        self._closed = False

    def _replace(self, item) -> None:
        if self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(item)

    def _push(self, snapshot) -> None:
        if not self._closed:
            self._replace(snapshot)

    async def get(self) -> List[RawTransaction]:
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        if self._closed:
            return
        self._store._unsubscribe(self)
        self._closed = True
        self._replace(_CLOSED)

    def __aiter__(self):
        return self

    async def __anext__(self) -> List[RawTransaction]:
        return await self.get()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.close()


class LedgerStore:
    def __init__(self, storage: ILedgerStorage, storage_key: str = DEFAULT_STORAGE_KEY):
        self._storage = storage
        self._key = storage_key
        self._transactions: Tuple[RawTransaction, ...] = ()
        self._lock = asyncio.Lock()
        self._epoch = 0
        self._loaded = False
        self._subscribers: Set[LedgerSubscription] = set()

    # --- Reads ---

    @property
    def transactions(self) -> List[RawTransaction]:
        return list(self._transactions)

    @property
    def count(self) -> int:
        return len(self._transactions)

    @property
    def is_empty(self) -> bool:
        return not self._transactions

    @property
    def newest(self) -> Optional[RawTransaction]:
        return self._transactions[0] if self._transactions else None

    @property
    def oldest(self) -> Optional[RawTransaction]:
        return self._transactions[-1] if self._transactions else None

    @property
    def epoch(self) -> int:
        """Bumped on every clear(); lets in-flight syncs detect a wallet reset."""
        return self._epoch

    def unique_mints(self) -> Set[str]:
        mints = {WRAPPED_SOL_MINT}
        for tx in self._transactions:
            mints.update(t.mint for t in tx.token_transfers)
            swap = tx.swap_event
            if swap is not None:
                mints.update(leg.mint for leg in swap.token_inputs)
                mints.update(leg.mint for leg in swap.token_outputs)
            for account in tx.account_deltas:
                mints.update(d.mint for d in account.token_deltas)
        return mints

    # --- Persistence ---

    async def load(self) -> None:
        """
        Replace the in-memory ledger with the persisted one. A missing or
        unreadable blob is treated as an empty history.
        """
        async with self._lock:
            try:
                payload = await asyncio.to_thread(self._storage.load, self._key)
            except Exception as e:
                logger.warning(f"Ledger storage unavailable, starting with empty history: {e}")
                payload = None

            transactions: List[RawTransaction] = []
            if payload:
                try:
                    transactions = merge_transactions(decode_ledger(payload), [])
                except ValueError as e:
                    logger.warning(f"Stored ledger is corrupt, treating as empty history: {e}")
                    transactions = []

            self._transactions = tuple(transactions)
            self._loaded = True
            logger.info(f"Loaded {len(transactions)} transactions from storage")

    async def ensure_loaded(self) -> None:
        if not self._loaded:
            await self.load()

    async def merge(self, incoming: Iterable[RawTransaction], epoch: Optional[int] = None) -> int:
        """
        Dedup `incoming` into the ledger, persist, then notify subscribers.
        Returns the number of signatures that were not stored before.
        `epoch` is the value observed when the caller started fetching; a
        merge from before the last clear() is dropped.
        """
        async with self._lock:
            if epoch is not None and epoch != self._epoch:
                logger.warning("Ledger was reset while fetching, discarding fetched transactions")
                return 0

            merged = merge_transactions(self._transactions, incoming)
            added = len(merged) - len(self._transactions)
            payload = encode_ledger(merged)
            try:
                await asyncio.to_thread(self._storage.save, self._key, payload)
            except Exception as e:
                logger.error(f"Failed to persist ledger ({len(merged)} transactions): {e}")
                raise LedgerPersistenceError(str(e)) from e

            self._transactions = tuple(merged)
            self._loaded = True
            snapshot = list(merged)
            logger.info(f"Stored {len(merged)} transactions ({added} new)")

        self._notify(snapshot)
        return added

    async def clear(self) -> None:
        async with self._lock:
            self._epoch += 1
            self._transactions = ()
            self._loaded = True
            try:
                await asyncio.to_thread(self._storage.delete, self._key)
            except Exception as e:
                logger.error(f"Failed to delete persisted ledger: {e}")
                raise LedgerPersistenceError(str(e)) from e
            finally:
                self._notify([])
        logger.info("Ledger cleared")

    # --- Subscriptions ---

    def subscribe(self) -> LedgerSubscription:
        subscription = LedgerSubscription(self)
        self._subscribers.add(subscription)
        subscription._push(list(self._transactions))
        return subscription

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def _unsubscribe(self, subscription: LedgerSubscription) -> None:
        self._subscribers.discard(subscription)

    def _notify(self, snapshot: List[RawTransaction]) -> None:
        for subscription in list(self._subscribers):
            subscription._push(list(snapshot))
