import asyncio
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from orb_ledger.core.entities.balance import VerifiedToken
from orb_ledger.core.entities.transaction import RawTransaction
from orb_ledger.core.exceptions import TokenListError, TransactionSourceError
from orb_ledger.core.interfaces.datasource import ITokenListSource, ITransactionSource
from orb_ledger.core.use_cases.ledger_merge import sort_newest_first


class LocalMockTransactionSource(ITransactionSource):
    """
    Scripted indexer for local runs and tests. Serves a fixed history with
    the same cursor semantics as the real API and records every call.
    """

    def __init__(
        self,
        transactions: Iterable[RawTransaction] = (),
        balances: Optional[Dict[str, Decimal]] = None,
        first_timestamp: Optional[int] = None,
    ):
        self.transactions: List[RawTransaction] = sort_newest_first(transactions)
        self.balances: Dict[str, Decimal] = dict(balances or {})
        self.first_timestamp = first_timestamp
        self.calls: List[dict] = []
        self.balance_calls = 0
        self.fail_on_call: Optional[int] = None
        self.fail_balances = False
        self.gate: Optional[asyncio.Event] = None
        self.closed = False

    def add(self, *transactions: RawTransaction) -> None:
        self.transactions = sort_newest_first(list(self.transactions) + list(transactions))

    async def fetch_transactions(
        self,
        address: str,
        before: Optional[str] = None,
        limit: int = 100,
        type: Optional[str] = None,
        source: Optional[str] = None,
    ) -> List[RawTransaction]:
        self.calls.append({"address": address, "before": before, "limit": limit})
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_on_call is not None and len(self.calls) >= self.fail_on_call:
            raise TransactionSourceError("Mock indexer failure", status_code=500)

        start = 0
        if before is not None:
            signatures = [tx.signature for tx in self.transactions]
            if before not in signatures:
                return []
            start = signatures.index(before) + 1

        page = self.transactions[start:]
        if type:
            page = [tx for tx in page if tx.type == type]
        if source:
            page = [tx for tx in page if tx.source == source]
        return page[:limit]

    async def fetch_current_balances(self, address: str) -> Dict[str, Decimal]:
        self.balance_calls += 1
        if self.fail_balances:
            raise TransactionSourceError("Mock balance failure", status_code=503)
        return dict(self.balances)

    async def fetch_first_transaction_timestamp(self, address: str) -> Optional[int]:
        return self.first_timestamp

    async def aclose(self) -> None:
        self.closed = True


class LocalMockTokenList(ITokenListSource):
    def __init__(self, tokens: Iterable[VerifiedToken] = (), fail: bool = False):
        self.tokens = list(tokens)
        self.fail = fail
        self.fetch_count = 0

    async def fetch_verified_tokens(self) -> List[VerifiedToken]:
        self.fetch_count += 1
        if self.fail:
            raise TokenListError("Mock token list failure")
        return list(self.tokens)
