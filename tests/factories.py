"""
Builders for raw indexer transactions used across the test suite.
"""
from decimal import Decimal
from typing import List, Optional

from orb_ledger.core.entities.transaction import (
    WRAPPED_SOL_MINT,
    AccountDelta,
    NativeAmount,
    NativeTransfer,
    RawTokenAmount,
    RawTransaction,
    SwapEvent,
    TokenDelta,
    TokenTransfer,
    TransactionEvents,
)

WALLET = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"
OTHER = "vines1vzrYbzLMRdu58ou5XTby4qAqVRLmqo36NKPTg"
SOL = WRAPPED_SOL_MINT
USDC = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
BONK = "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"

LAMPORTS = 1_000_000_000


def make_tx(signature: str, timestamp: int, fee_payer: str = WALLET, **fields) -> RawTransaction:
    return RawTransaction(signature=signature, timestamp=timestamp, fee_payer=fee_payer, **fields)


def history(count: int, step: int = 100, prefix: str = "sig") -> List[RawTransaction]:
    """`count` plain transactions at timestamps step, 2*step, ... newest-first."""
    return [make_tx(f"{prefix}{i:04d}", i * step) for i in range(count, 0, -1)]


def sol_transfer(signature: str, timestamp: int, frm: str, to: str, sol) -> RawTransaction:
    lamports = int(Decimal(str(sol)) * LAMPORTS)
    return make_tx(
        signature,
        timestamp,
        fee_payer=frm,
        type="TRANSFER",
        native_transfers=[NativeTransfer(from_account=frm, to_account=to, amount=lamports)],
    )


def token_transfer(signature: str, timestamp: int, frm: str, to: str, amount, mint: str = USDC) -> RawTransaction:
    return make_tx(
        signature,
        timestamp,
        fee_payer=frm,
        type="TRANSFER",
        token_transfers=[TokenTransfer(from_account=frm, to_account=to, amount=Decimal(str(amount)), mint=mint)],
    )


def token_delta(mint: str, raw: int, decimals: int, owner: str = WALLET, token_account: str = "") -> TokenDelta:
    return TokenDelta(
        owner_account=owner,
        token_account=token_account,
        mint=mint,
        raw_token_amount=RawTokenAmount(token_amount=str(raw), decimals=decimals),
    )


def swap_sol_for_usdc(
    signature: str,
    timestamp: int,
    sol_in,
    usdc_out,
    owner: str = WALLET,
    with_transfers: bool = False,
) -> RawTransaction:
    lamports = int(Decimal(str(sol_in)) * LAMPORTS)
    usdc_raw = int(Decimal(str(usdc_out)) * 10 ** 6)
    swap = SwapEvent(
        native_input=NativeAmount(account=owner, amount=str(lamports)),
        token_outputs=[token_delta(USDC, usdc_raw, 6, owner=owner)],
    )
    fields = {}
    if with_transfers:
        fields["native_transfers"] = [NativeTransfer(from_account=owner, to_account=OTHER, amount=lamports)]
        fields["token_transfers"] = [
            TokenTransfer(from_account=OTHER, to_account=owner, amount=Decimal(str(usdc_out)), mint=USDC)
        ]
    return make_tx(
        signature,
        timestamp,
        fee_payer=owner,
        type="SWAP",
        source="JUPITER",
        events=TransactionEvents(swap=swap),
        **fields,
    )


def account_deltas(
    signature: str,
    timestamp: int,
    native_lamports: int = 0,
    tokens: Optional[List[TokenDelta]] = None,
    type: str = "SWAP",
) -> RawTransaction:
    return make_tx(
        signature,
        timestamp,
        type=type,
        account_deltas=[AccountDelta(account=WALLET, native_delta=native_lamports, token_deltas=tokens or [])],
    )
