"""
Transaction classification: maps one raw transaction to the amount the
wallet received and the amount it spent.

Extraction runs as a cascade, highest-confidence source first:

1. the indexer's swap event,
2. a single token or native transfer,
3. the per-account balance deltas (noisy, filtered by thresholds).

The thresholds used in step 3 are heuristics and live in
ClassifierThresholds so they can be tuned without touching the logic.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import List, NamedTuple, Optional, Tuple

from orb_ledger.core.entities.processed import ProcessedTransaction, TokenAmount
from orb_ledger.core.entities.transaction import (
    WRAPPED_SOL_MINT,
    RawTransaction,
    TokenDelta,
    lamports_to_sol,
)
from orb_ledger.core.use_cases.associated_accounts import is_owned_token_account


@dataclass(frozen=True)
class ClassifierThresholds:
    token_dust: Decimal = Decimal("0.000001")
    native_with_tokens: Decimal = Decimal("0.001")
    native_only: Decimal = Decimal("0.01")


DEFAULT_THRESHOLDS = ClassifierThresholds()


class RawAmount(NamedTuple):
    mint: str
    value: Decimal


Amounts = Tuple[Optional[RawAmount], Optional[RawAmount]]


def _leg(delta: TokenDelta) -> RawAmount:
    return RawAmount(delta.mint, delta.value)


def _from_swap_event(tx: RawTransaction) -> Amounts:
    swap = tx.swap_event
    received: Optional[RawAmount] = None
    spent: Optional[RawAmount] = None

    if swap.token_outputs:
        received = _leg(swap.token_outputs[0])
    elif swap.native_output is not None:
        received = RawAmount(WRAPPED_SOL_MINT, swap.native_output.amount_sol)

    if swap.token_inputs:
        spent = _leg(swap.token_inputs[0])
    elif swap.native_input is not None:
        spent = RawAmount(WRAPPED_SOL_MINT, swap.native_input.amount_sol)

    return received, spent


def _looks_like_swap(tx: RawTransaction) -> bool:
    return "swap" in tx.type.lower() or len(tx.token_transfers) > 1


def _from_simple_transfer(tx: RawTransaction, wallet: str) -> Amounts:
    if tx.token_transfers:
        transfer = tx.token_transfers[0]
        amount = RawAmount(transfer.mint, transfer.amount)
        outgoing = transfer.from_account == wallet
    elif tx.native_transfers:
        transfer = tx.native_transfers[0]
        amount = RawAmount(WRAPPED_SOL_MINT, transfer.amount_sol)
        outgoing = transfer.from_account == wallet
    else:
        return None, None
    return (None, amount) if outgoing else (amount, None)


def _from_account_deltas(
    tx: RawTransaction, wallet: str, thresholds: ClassifierThresholds
) -> Tuple[List[RawAmount], List[RawAmount]]:
    gains: List[RawAmount] = []
    losses: List[RawAmount] = []

    # Pass A: token deltas owned by the wallet
    for account in tx.account_deltas:
        for delta in account.token_deltas:
            if not is_owned_token_account(wallet, delta.owner_account, delta.token_account, delta.mint):
                continue
            value = delta.value
            if abs(value) < thresholds.token_dust:
                continue
            if value > 0:
                gains.append(RawAmount(delta.mint, value))
            elif value < 0:
                losses.append(RawAmount(delta.mint, -value))

    # Pass B: the wallet's own native delta, with a stricter bar when no token moved
    found_tokens = bool(gains or losses)
    native_threshold = thresholds.native_with_tokens if found_tokens else thresholds.native_only
    for account in tx.account_deltas:
        if account.account != wallet:
            continue
        change = lamports_to_sol(account.native_delta)
        if abs(change) <= native_threshold:
            continue
        if change > 0:
            gains.append(RawAmount(WRAPPED_SOL_MINT, change))
        else:
            losses.append(RawAmount(WRAPPED_SOL_MINT, -change))

    return gains, losses


def _largest(amounts: List[RawAmount]) -> Optional[RawAmount]:
    if not amounts:
        return None
    # max() keeps the first of equal values
    return max(amounts, key=lambda a: a.value)


def extract_amounts(
    tx: RawTransaction,
    wallet_address: Optional[str] = None,
    thresholds: ClassifierThresholds = DEFAULT_THRESHOLDS,
) -> Amounts:
    """
    Returns (received, spent) for `wallet_address` (defaults to the fee payer).
    Pure and deterministic; never raises on ambiguous data.
    """
    wallet = wallet_address or tx.fee_payer
    received: Optional[RawAmount] = None
    spent: Optional[RawAmount] = None

    if tx.swap_event is not None:
        received, spent = _from_swap_event(tx)

    if received is None and spent is None and not _looks_like_swap(tx):
        received, spent = _from_simple_transfer(tx, wallet)

    if received is None or spent is None:
        gains, losses = _from_account_deltas(tx, wallet, thresholds)
        if received is None:
            received = _largest(gains)
        if spent is None:
            spent = _largest(losses)

    return received, spent


async def _decorate(amount: Optional[RawAmount], resolver) -> Optional[TokenAmount]:
    if amount is None:
        return None
    return TokenAmount(
        value=amount.value,
        symbol=await resolver.symbol_for(amount.mint),
        mint=amount.mint,
        icon_url=await resolver.icon_for(amount.mint),
    )


async def classify(
    tx: RawTransaction,
    wallet_address: Optional[str],
    resolver,
    thresholds: ClassifierThresholds = DEFAULT_THRESHOLDS,
) -> ProcessedTransaction:
    received, spent = extract_amounts(tx, wallet_address, thresholds)
    return ProcessedTransaction(
        signature=tx.signature,
        type=tx.type,
        source=tx.source,
        timestamp=tx.timestamp,
        description=tx.description,
        received_amount=await _decorate(received, resolver),
        spent_amount=await _decorate(spent, resolver),
    )
