from typing import Iterable, List

from orb_ledger.core.entities.transaction import RawTransaction


def sort_newest_first(transactions: Iterable[RawTransaction]) -> List[RawTransaction]:
    # Signature breaks timestamp ties so the order is stable across merges
    return sorted(transactions, key=lambda tx: (-tx.timestamp, tx.signature))


def merge_transactions(
    existing: Iterable[RawTransaction], incoming: Iterable[RawTransaction]
) -> List[RawTransaction]:
    """
    Union of two transaction sequences, one entry per signature, newest-first.
    Raw transactions are immutable, so the first copy seen is kept.
    """
    seen = set()
    merged: List[RawTransaction] = []
    for tx in list(existing) + list(incoming):
        if tx.signature in seen:
            continue
        seen.add(tx.signature)
        merged.append(tx)
    return sort_newest_first(merged)


def filter_newer(transactions: Iterable[RawTransaction], timestamp: int) -> List[RawTransaction]:
    return [tx for tx in transactions if tx.timestamp > timestamp]


def filter_since(transactions: Iterable[RawTransaction], timestamp: int) -> List[RawTransaction]:
    return [tx for tx in transactions if tx.timestamp >= timestamp]
