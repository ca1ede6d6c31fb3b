"""
Tests for the persisted ledger: merge, ordering, persistence and subscriptions.
"""
import pytest

from orb_ledger.core.exceptions import LedgerPersistenceError
from orb_ledger.core.ledger_store import LedgerStore, decode_ledger, encode_ledger
from orb_ledger.core.use_cases.ledger_merge import merge_transactions

from conftest import TEST_STORAGE_KEY
from factories import SOL, USDC, history, make_tx, swap_sol_for_usdc


def test_merge_keeps_one_entry_per_signature():
    a = make_tx("a", 100)
    b = make_tx("b", 200)
    merged = merge_transactions([a, b], [make_tx("a", 100), make_tx("c", 300)])
    assert [tx.signature for tx in merged] == ["c", "b", "a"]


def test_merge_orders_ties_by_signature():
    merged = merge_transactions([make_tx("y", 100)], [make_tx("x", 100), make_tx("z", 50)])
    assert [tx.signature for tx in merged] == ["x", "y", "z"]


def test_ledger_blob_uses_indexer_field_names():
    payload = encode_ledger([swap_sol_for_usdc("s1", 100, 2, 50)])
    assert '"feePayer"' in payload
    assert '"tokenOutputs"' in payload
    assert decode_ledger(payload)[0].swap_event.token_outputs[0].mint == USDC


async def test_merge_persists_and_counts_new(store, storage):
    await store.load()
    added = await store.merge(history(3))
    assert added == 3
    assert store.count == 3
    assert store.newest.timestamp == 300
    assert store.oldest.timestamp == 100

    again = await store.merge(history(4))
    assert again == 1
    assert [tx.timestamp for tx in store.transactions] == [400, 300, 200, 100]
    assert len(decode_ledger(storage.blobs[TEST_STORAGE_KEY])) == 4


async def test_load_restores_persisted_ledger(store, storage):
    await store.merge(history(2))

    reopened = LedgerStore(storage, TEST_STORAGE_KEY)
    await reopened.load()
    assert [tx.signature for tx in reopened.transactions] == ["sig0002", "sig0001"]


async def test_corrupt_blob_is_treated_as_empty_history(store, storage):
    storage.blobs[TEST_STORAGE_KEY] = "{not json"
    await store.load()
    assert store.is_empty
    assert store.newest is None


async def test_persistence_failure_leaves_ledger_untouched(store, storage):
    await store.merge(history(2))
    subscription = store.subscribe()
    assert await subscription.get() is not None

    storage.fail_writes = True
    with pytest.raises(LedgerPersistenceError):
        await store.merge([make_tx("new", 999)])

    assert store.count == 2
    assert subscription.pending() == 0
    assert len(decode_ledger(storage.blobs[TEST_STORAGE_KEY])) == 2


async def test_subscription_replays_current_then_each_merge(store):
    await store.merge(history(1))
    async with store.subscribe() as subscription:
        first = await subscription.get()
        assert [tx.signature for tx in first] == ["sig0001"]

        await store.merge([make_tx("late", 500)])
        second = await subscription.get()
        assert [tx.signature for tx in second] == ["late", "sig0001"]
    assert store.subscriber_count == 0


async def test_clear_resets_and_discards_stale_merges(store, storage):
    await store.merge(history(2))
    epoch = store.epoch
    subscription = store.subscribe()
    await subscription.get()

    await store.clear()
    assert store.is_empty
    assert TEST_STORAGE_KEY not in storage.blobs
    assert await subscription.get() == []

    assert await store.merge([make_tx("stale", 10)], epoch=epoch) == 0
    assert store.is_empty


async def test_unique_mints_always_include_sol(store):
    await store.load()
    assert store.unique_mints() == {SOL}

    await store.merge([swap_sol_for_usdc("s1", 100, 1, 20)])
    assert store.unique_mints() == {SOL, USDC}


async def test_slow_subscriber_only_sees_the_latest_snapshot(store):
    subscription = store.subscribe()
    assert await subscription.get() == []

    await store.merge([make_tx("a", 100)])
    await store.merge([make_tx("b", 200)])
    await store.merge([make_tx("c", 300)])

    assert subscription.pending() == 1
    latest = await subscription.get()
    assert [tx.signature for tx in latest] == ["c", "b", "a"]
    assert subscription.pending() == 0

    subscription.close()
    with pytest.raises(StopAsyncIteration):
        await subscription.get()
