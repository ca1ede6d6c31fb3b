from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel


class BalanceSnapshot(BaseModel):
    """
    Holdings of a wallet at a point in time. Only strictly positive
    balances are present.
    """
    timestamp: int
    wallet_address: str
    balances: Dict[str, Decimal]


class BalanceRequest(BaseModel):
    wallet: str
    timestamp: int
    current_balances: Optional[Dict[str, Decimal]] = None


class VerifiedToken(BaseModel):
    mint: str
    symbol: str
    name: str
    icon: Optional[str] = None
    decimals: int = 9
    tags: List[str] = []


class TokenSummary(BaseModel):
    mint: str
    symbol: str
    icon_url: Optional[str] = None
    decimals: int = 9
    verified: bool = False
