from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Dict, List, Optional

from orb_ledger.core.entities.balance import VerifiedToken
from orb_ledger.core.entities.transaction import RawTransaction


class ITransactionSource(ABC):
    @abstractmethod
    async def fetch_transactions(
        self,
        address: str,
        before: Optional[str] = None,
        limit: int = 100,
        type: Optional[str] = None,
        source: Optional[str] = None,
    ) -> List[RawTransaction]:
        """
        Returns one page of transactions strictly older than `before`
        (newest page when omitted), newest-first.
        Raises TransactionSourceError on transport or HTTP failure.
        """
        pass

    @abstractmethod
    async def fetch_current_balances(self, address: str) -> Dict[str, Decimal]:
        """
        Returns mint -> UI amount of the wallet's holdings right now.
        """
        pass

    async def fetch_first_transaction_timestamp(self, address: str) -> Optional[int]:
        return None


class ILedgerStorage(ABC):
    """Keyed blob storage for the serialized ledger."""

    @abstractmethod
    def load(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def save(self, key: str, payload: str) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass


class ITokenListSource(ABC):
    @abstractmethod
    async def fetch_verified_tokens(self) -> List[VerifiedToken]:
        pass
