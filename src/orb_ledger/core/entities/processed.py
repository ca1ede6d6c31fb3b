from decimal import Decimal
from typing import Optional

from pydantic import BaseModel


class TokenAmount(BaseModel):
    """
    One side (received or spent) of a classified transaction.
    """
    value: Decimal
    symbol: str
    mint: str
    icon_url: Optional[str] = None

    @property
    def formatted(self) -> str:
        if self.value < 1:
            places = 6
        elif self.value < 10:
            places = 4
        else:
            places = 0
        amount = f"{self.value:,.{places}f}"
        if places and "." in amount:
            amount = amount.rstrip("0").rstrip(".")
        return f"{amount} {self.symbol}"


class ProcessedTransaction(BaseModel):
    """
    Display-ready view of a raw transaction. Derived on demand and never stored.
    """
    signature: str
    type: str
    source: str
    timestamp: int
    description: Optional[str] = None
    received_amount: Optional[TokenAmount] = None
    spent_amount: Optional[TokenAmount] = None

    @property
    def is_swap(self) -> bool:
        return (
            self.received_amount is not None
            and self.spent_amount is not None
            and self.received_amount.mint != self.spent_amount.mint
        )
