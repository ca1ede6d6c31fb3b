import asyncio
import logging
import time
from decimal import Decimal
from typing import Callable, Dict, List, Mapping, NamedTuple, Optional, Sequence, Set, Tuple

from pydantic import BaseModel

from orb_ledger.config import Settings, load_settings
from orb_ledger.core.entities.balance import BalanceSnapshot, VerifiedToken
from orb_ledger.core.entities.processed import ProcessedTransaction
from orb_ledger.core.entities.transaction import WRAPPED_SOL_MINT, RawTransaction
from orb_ledger.core.exceptions import LedgerEmptyError
from orb_ledger.core.interfaces.datasource import ILedgerStorage, ITokenListSource, ITransactionSource
from orb_ledger.core.ledger_store import LedgerStore, LedgerSubscription
from orb_ledger.core.use_cases.balance_reconstructor import reconstruct_balances
from orb_ledger.core.use_cases.ledger_merge import filter_newer, filter_since, sort_newest_first
from orb_ledger.core.use_cases.transaction_classifier import ClassifierThresholds, classify

logger = logging.getLogger(__name__)


# --- Output Models ---

class SyncResult(BaseModel):
    new_count: int = 0
    backfilled_count: int = 0
    total: int = 0
    skipped: bool = False


class SyncCursor(NamedTuple):
    """
    Hole left by a capped forward walk: everything older than `before` and
    newer than `floor_timestamp` is still missing from the ledger.
    """
    before: str
    floor_timestamp: int
    epoch: int


# --- Sync Engine ---

class SyncEngine:
    """
    Drives the transaction source against the ledger store.

    Backfill, incremental sync and polling share one single-flight guard:
    a call made while another is in flight returns immediately and leaves
    the ledger untouched.
    """

    def __init__(
        self,
        source: ITransactionSource,
        store: LedgerStore,
        page_size: int = 100,
        backfill_cap: int = 10_000,
        forward_cap: int = 1_000,
    ):
        self._source = source
        self._store = store
        self._page_size = page_size
        self._backfill_cap = backfill_cap
        self._forward_cap = forward_cap
        self._is_fetching = False
        self._gaps: List[SyncCursor] = []

    @property
    def is_syncing(self) -> bool:
        return self._is_fetching

    @property
    def pending_gaps(self) -> List[SyncCursor]:
        return self._open_gaps(self._store.epoch)

    def _open_gaps(self, epoch: int) -> List[SyncCursor]:
        # Gaps recorded before a ledger reset no longer apply
        self._gaps = [gap for gap in self._gaps if gap.epoch == epoch]
        return list(self._gaps)

    def _acquire(self, operation: str) -> bool:
        if self._is_fetching:
            logger.warning(f"Already fetching, skipping {operation}")
            return False
        self._is_fetching = True
        return True

    def _release(self) -> None:
        self._is_fetching = False

    async def _fetch_page(self, address: str, before: Optional[str], limit: int) -> List[RawTransaction]:
        try:
            return await self._source.fetch_transactions(address, before=before, limit=limit)
        except Exception as e:
            logger.error(f"Error fetching transactions for {address} (before: {before or 'latest'}): {e}")
            raise

    async def _fetch_backward(
        self, address: str, before: Optional[str], init_timestamp: int
    ) -> List[RawTransaction]:
        collected: List[RawTransaction] = []
        cursor = before
        while True:
            page = await self._fetch_page(address, cursor, self._page_size)
            if not page:
                logger.info("No more transactions found")
                break

            kept = filter_since(page, init_timestamp)
            collected.extend(kept)
            logger.info(f"Fetched {len(page)} transactions, {len(kept)} valid (total: {len(collected)})")

            if len(kept) < len(page):
                logger.info("Reached init timestamp, stopping")
                break

            cursor = page[-1].signature

            if len(collected) >= self._backfill_cap:
                logger.warning(f"Reached {self._backfill_cap} transaction limit, stopping")
                break
        return collected

    async def _fetch_forward(
        self, address: str, newest_timestamp: int, before: Optional[str] = None
    ) -> Tuple[List[RawTransaction], bool]:
        """
        Page down from `before` (the tip when omitted) until reaching
        `newest_timestamp`. The flag is True when the forward cap cut the
        walk short.
        """
        collected: List[RawTransaction] = []
        cursor = before
        while True:
            page = await self._fetch_page(address, cursor, self._page_size)
            if not page:
                break

            kept = filter_newer(page, newest_timestamp)
            collected.extend(kept)

            # An already-known timestamp means we caught up with the ledger
            if len(kept) < len(page):
                break

            cursor = page[-1].signature

            if len(collected) >= self._forward_cap:
                logger.warning(f"Reached {self._forward_cap} new transaction limit, stopping")
                return collected, True
        return collected, False

    async def _heal_gaps(self, address: str, epoch: int) -> Tuple[List[RawTransaction], List[SyncCursor]]:
        healed: List[RawTransaction] = []
        remaining: List[SyncCursor] = []
        for gap in self._open_gaps(epoch):
            logger.info(f"Resuming capped sync below {gap.before} down to {gap.floor_timestamp}")
            found, capped = await self._fetch_forward(address, gap.floor_timestamp, before=gap.before)
            healed.extend(found)
            if capped:
                remaining.append(SyncCursor(found[-1].signature, gap.floor_timestamp, epoch))
        return healed, remaining

    async def run_initial_backfill(self, address: str, init_timestamp: int) -> int:
        """
        Fetch everything from now back to `init_timestamp` and commit it in one merge.
        Returns the number of transactions fetched (0 when skipped).
        """
        if not self._acquire("initial backfill"):
            return 0
        try:
            await self._store.ensure_loaded()
            epoch = self._store.epoch
            logger.info(f"Fetching initial transaction history for {address} back to {init_timestamp}")

            transactions = await self._fetch_backward(address, None, init_timestamp)
            await self._store.merge(sort_newest_first(transactions), epoch=epoch)

            logger.info(f"Initial history fetch complete: {len(transactions)} transactions")
            return len(transactions)
        finally:
            self._release()

    async def run_incremental_sync(self, address: str, init_timestamp: int) -> SyncResult:
        """
        Fill holes left by earlier capped syncs, fetch transactions newer than
        the ledger, then resume an interrupted backfill if the oldest stored
        transaction is newer than `init_timestamp`.
        """
        if not self._acquire("incremental sync"):
            return SyncResult(skipped=True, total=self._store.count)
        try:
            await self._store.ensure_loaded()
            if self._store.is_empty:
                raise LedgerEmptyError("No stored transactions, run the initial backfill first")

            epoch = self._store.epoch
            newest = self._store.newest
            oldest = self._store.oldest
            logger.info(f"Syncing transaction history for {address}")

            healed, gaps = await self._heal_gaps(address, epoch)

            new_transactions, capped = await self._fetch_forward(address, newest.timestamp)
            if capped:
                gaps.append(SyncCursor(new_transactions[-1].signature, newest.timestamp, epoch))
            new_transactions += healed

            missing_old: List[RawTransaction] = []
            if oldest.timestamp > init_timestamp:
                logger.info(
                    f"Initial fetch was interrupted (oldest saved {oldest.timestamp} > {init_timestamp}), "
                    "continuing backward fetch"
                )
                missing_old = await self._fetch_backward(address, oldest.signature, init_timestamp)

            await self._store.merge(new_transactions + missing_old, epoch=epoch)
            self._gaps = gaps

            logger.info(
                f"Sync complete: {len(new_transactions)} new, {len(missing_old)} backfilled, "
                f"{self._store.count} total"
            )
            return SyncResult(
                new_count=len(new_transactions),
                backfilled_count=len(missing_old),
                total=self._store.count,
            )
        finally:
            self._release()

    async def poll_newest(
        self, address: str, limit: int, still_wanted: Callable[[], bool] = lambda: True
    ) -> int:
        """
        Lightweight check of the newest `limit` transactions. When the whole
        window is new it does not reach the stored ledger, so the poll pages
        down to it like an incremental sync. Results are committed only if
        `still_wanted()` holds once the fetch returns.
        """
        if not self._acquire("poll"):
            return 0
        try:
            await self._store.ensure_loaded()
            epoch = self._store.epoch
            newest = self._store.newest
            since = newest.timestamp if newest else 0

            page = await self._fetch_page(address, None, limit)
            new_transactions = filter_newer(page, since)
            if not new_transactions:
                return 0

            gaps: Optional[List[SyncCursor]] = None
            if newest is not None and len(new_transactions) == len(page) and len(page) >= limit:
                logger.info(f"All {len(page)} polled transactions are new, paging down to the stored ledger")
                new_transactions, capped = await self._fetch_forward(address, since)
                if capped:
                    gaps = self._open_gaps(epoch) + [
                        SyncCursor(new_transactions[-1].signature, since, epoch)
                    ]

            if not still_wanted():
                logger.info(f"Polling stopped mid-flight, discarding {len(new_transactions)} transaction(s)")
                return 0

            logger.info(f"Found {len(new_transactions)} new transaction(s)")
            added = await self._store.merge(new_transactions, epoch=epoch)
            if gaps is not None:
                self._gaps = gaps
            return added
        finally:
            self._release()


# --- Poller ---

class Poller:
    def __init__(self, engine: SyncEngine, interval: float = 10.0, limit: int = 10):
        self._engine = engine
        self._interval = interval
        self._limit = limit
        self._running = False
        self._generation = 0
        self._in_flight = False
        self._task: Optional[asyncio.Task] = None
        self._draining: Set[asyncio.Task] = set()
        self._address: Optional[str] = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def address(self) -> Optional[str]:
        return self._address

    def _is_current(self, generation: int) -> bool:
        return self._running and generation == self._generation

    async def start(self, address: str) -> bool:
        if self._running:
            logger.warning("Already polling")
            return False

        logger.info(f"Starting polling for new transactions every {self._interval}s")
        self._running = True
        self._generation += 1
        self._address = address
        self._task = asyncio.create_task(self._run(address, self._generation))
        return True

    async def stop(self) -> None:
        if not self._running:
            return

        logger.info("Stopping polling")
        self._running = False
        task, self._task = self._task, None
        if task is None:
            return
        if self._in_flight:
            # A poll already talking to the indexer finishes; its result is discarded
            self._draining.add(task)
            task.add_done_callback(self._draining.discard)
        else:
            task.cancel()

    async def join(self) -> None:
        """Wait for polls that were still in flight when the poller stopped."""
        if self._draining:
            await asyncio.gather(*self._draining, return_exceptions=True)

    async def _run(self, address: str, generation: int) -> None:
        while self._is_current(generation):
            await asyncio.sleep(self._interval)
            if not self._is_current(generation):
                break
            await self._tick(address, generation)

    async def _tick(self, address: str, generation: int) -> None:
        self._in_flight = True
        try:
            await self._engine.poll_newest(address, self._limit, lambda: self._is_current(generation))
        except Exception as e:
            logger.warning(f"Polling error: {e}")
        finally:
            self._in_flight = False

    async def poll_once(self, address: Optional[str] = None) -> int:
        target = address or self._address
        if target is None:
            return 0
        return await self._engine.poll_newest(target, self._limit)


# --- Token Resolver ---

KNOWN_TOKENS: Dict[str, tuple] = {
    WRAPPED_SOL_MINT: ("SOL", 9),
    "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v": ("USDC", 6),
    "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB": ("USDT", 6),
    "JUPyiwrYJFskUPiHa7hkeR8VUtAeFoSYbKedZNsDvCN": ("JUP", 6),
    "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263": ("BONK", 5),
    "4k3Dyjzvzp8eMZWUXbBCjEvwSkkk59S5iCNLY3QrkX6R": ("RAY", 6),
    "EKpQGSJtjMFqKZ9KQanSqYXRcF8fBopzLHYxdM65zcjm": ("WIF", 6),
}

ALWAYS_VERIFIED = {WRAPPED_SOL_MINT, "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"}


def fallback_symbol(mint: str) -> str:
    return mint[:4].upper()


class TokenResolver:
    """
    Symbol/icon lookup: hardcoded table, then a lazily fetched verified-token
    list, then the mint prefix. Lookups never raise.
    """

    def __init__(
        self,
        token_list: Optional[ITokenListSource] = None,
        retry_after: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._token_list = token_list
        self._retry_after = retry_after
        self._clock = clock
        self._tokens: Dict[str, VerifiedToken] = {}
        self._loaded = False
        self._last_failure: Optional[float] = None
        self._lock = asyncio.Lock()

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    def _in_backoff(self) -> bool:
        return self._last_failure is not None and self._clock() - self._last_failure < self._retry_after

    async def _ensure_tokens(self) -> None:
        if self._loaded or self._token_list is None or self._in_backoff():
            return
        async with self._lock:
            if self._loaded or self._in_backoff():
                return
            try:
                tokens = await self._token_list.fetch_verified_tokens()
            except Exception as e:
                logger.warning(f"Failed to fetch verified tokens, using fallback symbols: {e}")
                self._last_failure = self._clock()
                return
            self._tokens = {t.mint: t for t in tokens}
            self._loaded = True
            self._last_failure = None
            logger.info(f"Loaded {len(self._tokens)} verified tokens")

    async def _lookup(self, mint: str) -> Optional[VerifiedToken]:
        token = self._tokens.get(mint)
        if token is None and not self._loaded:
            await self._ensure_tokens()
            token = self._tokens.get(mint)
        return token

    async def symbol_for(self, mint: str) -> str:
        known = KNOWN_TOKENS.get(mint)
        if known:
            return known[0]
        token = await self._lookup(mint)
        if token is not None and token.symbol:
            return token.symbol
        return fallback_symbol(mint)

    async def icon_for(self, mint: str) -> Optional[str]:
        token = await self._lookup(mint)
        return token.icon if token else None

    async def decimals_for(self, mint: str) -> int:
        known = KNOWN_TOKENS.get(mint)
        if known:
            return known[1]
        token = await self._lookup(mint)
        return token.decimals if token else 9

    async def is_verified(self, mint: str) -> bool:
        if mint in ALWAYS_VERIFIED:
            return True
        return await self._lookup(mint) is not None

    def invalidate(self) -> None:
        self._tokens = {}
        self._loaded = False
        self._last_failure = None


# --- Balance Reconstructor ---

class BalanceReconstructor:
    def __init__(self, store: LedgerStore, source: ITransactionSource, undo_fees: bool = True):
        self._store = store
        self._source = source
        self._undo_fees = undo_fees
        self._cached_balances: Optional[Dict[str, Decimal]] = None
        self._cached_wallet: Optional[str] = None
        self._cache_generation = 0

    def invalidate(self) -> None:
        self._cached_balances = None
        self._cached_wallet = None
        self._cache_generation += 1

    async def current_balances(self, wallet_address: str) -> Dict[str, Decimal]:
        if self._cached_balances is not None and self._cached_wallet == wallet_address:
            return dict(self._cached_balances)

        logger.info(f"Fetching current balances for {wallet_address}")
        generation = self._cache_generation
        balances = dict(await self._source.fetch_current_balances(wallet_address))

        if generation == self._cache_generation:
            self._cached_balances = balances
            self._cached_wallet = wallet_address
            logger.info(f"Cached {len(balances)} current balances")
        return dict(balances)

    async def reconstruct(
        self,
        timestamp: int,
        wallet_address: str,
        current_balances: Optional[Mapping[str, Decimal]] = None,
    ) -> BalanceSnapshot:
        await self._store.ensure_loaded()
        start = current_balances
        if start is None:
            start = await self.current_balances(wallet_address)

        balances = reconstruct_balances(
            self._store.transactions, wallet_address, start, timestamp, undo_fees=self._undo_fees
        )
        return BalanceSnapshot(timestamp=timestamp, wallet_address=wallet_address, balances=balances)

    async def reconstruct_series(
        self,
        timestamps: Sequence[int],
        wallet_address: str,
        current_balances: Optional[Mapping[str, Decimal]] = None,
    ) -> List[BalanceSnapshot]:
        start = current_balances
        if start is None:
            start = await self.current_balances(wallet_address)
        return [await self.reconstruct(ts, wallet_address, start) for ts in timestamps]


# --- Facade ---

class TransactionHistoryService:
    """
    Single owner of the ledger store, sync engine, poller, resolver and
    balance cache for the active wallet.
    """

    def __init__(
        self,
        source: ITransactionSource,
        storage: ILedgerStorage,
        token_list: Optional[ITokenListSource] = None,
        settings: Optional[Settings] = None,
    ):
        settings = settings or load_settings()
        self.settings = settings
        self.source = source
        self.token_list = token_list
        self.store = LedgerStore(storage, settings.storage_key)
        self.engine = SyncEngine(
            source,
            self.store,
            page_size=settings.sync_page_size,
            backfill_cap=settings.backfill_cap,
            forward_cap=settings.forward_cap,
        )
        self.poller = Poller(self.engine, interval=settings.poll_interval_s, limit=settings.poll_limit)
        self.resolver = TokenResolver(token_list, retry_after=settings.resolver_retry_after_s)
        self.reconstructor = BalanceReconstructor(self.store, source, undo_fees=settings.undo_fees)
        self.thresholds = ClassifierThresholds(
            token_dust=settings.token_dust_threshold,
            native_with_tokens=settings.native_threshold_with_tokens,
            native_only=settings.native_threshold_only,
        )

    async def startup(self) -> None:
        await self.store.load()

    async def shutdown(self) -> None:
        await self.poller.stop()
        await self.poller.join()
        for gateway in (self.source, self.token_list):
            aclose = getattr(gateway, "aclose", None)
            if aclose is not None:
                await aclose()

    # Sync

    async def resolve_init_timestamp(self, wallet_address: str) -> int:
        first = await self.source.fetch_first_transaction_timestamp(wallet_address)
        return first if first is not None else 0

    async def fetch_initial_history(self, wallet_address: str, init_timestamp: int) -> int:
        return await self.engine.run_initial_backfill(wallet_address, init_timestamp)

    async def fetch_new_transactions(self, wallet_address: str, init_timestamp: int) -> SyncResult:
        return await self.engine.run_incremental_sync(wallet_address, init_timestamp)

    async def start_polling(self, wallet_address: str) -> bool:
        await self.store.ensure_loaded()
        return await self.poller.start(wallet_address)

    async def stop_polling(self) -> None:
        await self.poller.stop()

    # Reads

    async def get_transactions(self) -> List[RawTransaction]:
        await self.store.ensure_loaded()
        return self.store.transactions

    async def transaction_count(self) -> int:
        await self.store.ensure_loaded()
        return self.store.count

    async def has_transactions(self) -> bool:
        return await self.transaction_count() > 0

    def subscribe(self) -> LedgerSubscription:
        return self.store.subscribe()

    async def get_processed_transactions(
        self, wallet_address: Optional[str] = None, limit: Optional[int] = None
    ) -> List[ProcessedTransaction]:
        transactions = await self.get_transactions()
        if limit is not None:
            transactions = transactions[:limit]
        return [await classify(tx, wallet_address, self.resolver, self.thresholds) for tx in transactions]

    async def get_unique_tokens(self) -> List[str]:
        await self.store.ensure_loaded()
        mints = self.store.unique_mints()
        logger.info(f"Found {len(mints)} unique tokens")
        return sorted(mints)

    async def get_balances_at(
        self,
        timestamp: int,
        wallet_address: str,
        current_balances: Optional[Mapping[str, Decimal]] = None,
    ) -> BalanceSnapshot:
        return await self.reconstructor.reconstruct(timestamp, wallet_address, current_balances)

    async def get_balance_history(
        self,
        timestamps: Sequence[int],
        wallet_address: str,
        current_balances: Optional[Mapping[str, Decimal]] = None,
    ) -> List[BalanceSnapshot]:
        return await self.reconstructor.reconstruct_series(timestamps, wallet_address, current_balances)

    # Reset

    async def clear_history(self) -> None:
        await self.poller.stop()
        self.reconstructor.invalidate()
        await self.store.clear()
        logger.info("History and balance cache cleared")
