from decimal import Decimal
from typing import Dict, Iterable, Mapping

from orb_ledger.core.entities.transaction import (
    WRAPPED_SOL_MINT,
    RawTransaction,
    SwapEvent,
    lamports_to_sol,
)
from orb_ledger.core.use_cases.ledger_merge import filter_newer, sort_newest_first

ZERO = Decimal(0)


def _to_decimal(amount) -> Decimal:
    if isinstance(amount, float):
        return Decimal(str(amount))
    return Decimal(amount)


def _belongs(owner: str, wallet: str) -> bool:
    # Legs without an owner are attributed to the swapping wallet
    return not owner or owner == wallet


def _undo_swap(balances: Dict[str, Decimal], swap: SwapEvent, wallet: str) -> None:
    for leg in swap.token_inputs:
        if _belongs(leg.owner_account, wallet):
            balances[leg.mint] = balances.get(leg.mint, ZERO) + leg.value
    for leg in swap.token_outputs:
        if _belongs(leg.owner_account, wallet):
            balances[leg.mint] = balances.get(leg.mint, ZERO) - leg.value
    if swap.native_input is not None and _belongs(swap.native_input.account, wallet):
        balances[WRAPPED_SOL_MINT] = balances.get(WRAPPED_SOL_MINT, ZERO) + swap.native_input.amount_sol
    if swap.native_output is not None and _belongs(swap.native_output.account, wallet):
        balances[WRAPPED_SOL_MINT] = balances.get(WRAPPED_SOL_MINT, ZERO) - swap.native_output.amount_sol


def _undo_transfers(balances: Dict[str, Decimal], tx: RawTransaction, wallet: str) -> None:
    for transfer in tx.native_transfers:
        received = transfer.to_account == wallet
        sent = transfer.from_account == wallet
        if received == sent:
            continue
        delta = transfer.amount_sol
        balances[WRAPPED_SOL_MINT] = balances.get(WRAPPED_SOL_MINT, ZERO) + (-delta if received else delta)

    for transfer in tx.token_transfers:
        received = transfer.to_account == wallet
        sent = transfer.from_account == wallet
        if received == sent:
            continue
        delta = transfer.amount
        balances[transfer.mint] = balances.get(transfer.mint, ZERO) + (-delta if received else delta)


def undo_transaction(
    balances: Dict[str, Decimal], tx: RawTransaction, wallet: str, undo_fees: bool = True
) -> None:
    """Apply the inverse of `tx`'s effect on `wallet` to `balances` in place."""
    swap = tx.swap_event
    if swap is not None:
        # The swap event and the transfer list describe the same legs
        _undo_swap(balances, swap, wallet)
    else:
        _undo_transfers(balances, tx, wallet)

    if undo_fees and tx.fee and tx.fee_payer == wallet:
        balances[WRAPPED_SOL_MINT] = balances.get(WRAPPED_SOL_MINT, ZERO) + lamports_to_sol(tx.fee)


def reconstruct_balances(
    transactions: Iterable[RawTransaction],
    wallet_address: str,
    current_balances: Mapping[str, Decimal],
    timestamp: int,
    undo_fees: bool = True,
) -> Dict[str, Decimal]:
    """
    Balances of `wallet_address` as they were at `timestamp`.

    Starts from the current holdings and undoes every transaction newer than
    `timestamp`, newest first. Exact only when the ledger has no gap between
    `timestamp` and now. Mints that end at or below zero are dropped.
    """
    balances: Dict[str, Decimal] = {mint: _to_decimal(amount) for mint, amount in current_balances.items()}

    for tx in sort_newest_first(filter_newer(transactions, timestamp)):
        undo_transaction(balances, tx, wallet_address, undo_fees)

    return {mint: amount for mint, amount in balances.items() if amount > 0}
