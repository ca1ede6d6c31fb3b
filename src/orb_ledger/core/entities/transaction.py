"""
Raw transaction entities as reported by the Helius enhanced-transactions API.

Field names are snake_case in Python and keep the indexer's camelCase names
as aliases, so a persisted ledger blob has the same shape as an API page.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

WRAPPED_SOL_MINT = "So11111111111111111111111111111111111111112"
LAMPORTS_PER_SOL_EXP = 9


def lamports_to_sol(lamports) -> Decimal:
    return Decimal(lamports).scaleb(-LAMPORTS_PER_SOL_EXP)


class _IndexerModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    @field_validator("*", mode="before")
    @classmethod
    def _null_lists_to_empty(cls, value, info):
        # The indexer sends null instead of [] for absent transfer lists
        if value is None and info.field_name in _LIST_FIELDS:
            return []
        return value


_LIST_FIELDS = {
    "native_transfers",
    "token_transfers",
    "account_deltas",
    "token_deltas",
    "token_inputs",
    "token_outputs",
}


class NativeTransfer(_IndexerModel):
    from_account: str = Field(alias="fromUserAccount")
    to_account: str = Field(alias="toUserAccount")
    amount: int  # lamports

    @property
    def amount_sol(self) -> Decimal:
        return lamports_to_sol(self.amount)


class TokenTransfer(_IndexerModel):
    from_account: str = Field(default="", alias="fromUserAccount")
    to_account: str = Field(default="", alias="toUserAccount")
    from_token_account: str = Field(default="", alias="fromTokenAccount")
    to_token_account: str = Field(default="", alias="toTokenAccount")
    amount: Decimal = Field(alias="tokenAmount")  # UI units
    mint: str


class RawTokenAmount(_IndexerModel):
    token_amount: str = Field(alias="tokenAmount")
    decimals: int


class TokenDelta(_IndexerModel):
    """A signed token balance change, also used for swap-event legs."""
    owner_account: str = Field(default="", alias="userAccount")
    token_account: str = Field(default="", alias="tokenAccount")
    mint: str
    raw_token_amount: RawTokenAmount = Field(alias="rawTokenAmount")

    @property
    def value(self) -> Decimal:
        return Decimal(self.raw_token_amount.token_amount).scaleb(-self.raw_token_amount.decimals)


class AccountDelta(_IndexerModel):
    account: str
    native_delta: int = Field(default=0, alias="nativeBalanceChange")  # lamports
    token_deltas: List[TokenDelta] = Field(default_factory=list, alias="tokenBalanceChanges")


class NativeAmount(_IndexerModel):
    account: str = ""
    amount: str  # lamports, as a string

    @property
    def amount_sol(self) -> Decimal:
        return lamports_to_sol(Decimal(self.amount))


class SwapEvent(_IndexerModel):
    native_input: Optional[NativeAmount] = Field(default=None, alias="nativeInput")
    native_output: Optional[NativeAmount] = Field(default=None, alias="nativeOutput")
    token_inputs: List[TokenDelta] = Field(default_factory=list, alias="tokenInputs")
    token_outputs: List[TokenDelta] = Field(default_factory=list, alias="tokenOutputs")


class TransactionEvents(_IndexerModel):
    swap: Optional[SwapEvent] = None


class RawTransaction(_IndexerModel):
    """
    One confirmed on-chain event. `signature` is the primary key and never
    changes once the indexer reported it.
    """
    signature: str
    timestamp: int
    fee_payer: str = Field(alias="feePayer")
    fee: int = 0
    type: str = "UNKNOWN"
    source: str = "UNKNOWN"
    description: Optional[str] = None
    slot: Optional[int] = None
    native_transfers: List[NativeTransfer] = Field(default_factory=list, alias="nativeTransfers")
    token_transfers: List[TokenTransfer] = Field(default_factory=list, alias="tokenTransfers")
    account_deltas: List[AccountDelta] = Field(default_factory=list, alias="accountData")
    events: Optional[TransactionEvents] = None

    @property
    def swap_event(self) -> Optional[SwapEvent]:
        return self.events.swap if self.events else None

    @property
    def date(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp, tz=timezone.utc)
