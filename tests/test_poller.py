"""
Tests for the background poller.
"""
import asyncio

import pytest

from orb_ledger.core.services import Poller, SyncEngine

from factories import WALLET, history, make_tx


@pytest.fixture
def engine(source, store):
    return SyncEngine(source, store, page_size=2)


async def _eventually(predicate, attempts: int = 200):
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0.01)
    raise AssertionError("condition not reached")


async def test_poll_once_on_empty_ledger_stores_latest(engine, source, store):
    source.add(*history(3))
    poller = Poller(engine, interval=10, limit=2)

    assert await poller.poll_once(WALLET) == 2
    assert [tx.timestamp for tx in store.transactions] == [300, 200]


async def test_poll_once_catches_up_after_a_burst(engine, source, store):
    source.add(*history(3))
    await engine.run_initial_backfill(WALLET, 0)
    source.add(*[make_tx(f"b{i:02d}", 1000 + i) for i in range(15)])
    poller = Poller(engine, interval=10, limit=10)

    assert await poller.poll_once(WALLET) == 15
    assert store.count == 18
    assert store.transactions[14].signature == "b00"


async def test_poller_picks_up_new_transactions(engine, source, store):
    source.add(*history(2))
    await engine.run_initial_backfill(WALLET, 0)
    poller = Poller(engine, interval=0.01, limit=10)

    assert await poller.start(WALLET)
    assert poller.is_running
    source.add(make_tx("incoming", 900))

    await _eventually(lambda: store.count == 3)
    await poller.stop()

    assert not poller.is_running
    assert store.newest.signature == "incoming"


async def test_start_twice_is_ignored(engine):
    poller = Poller(engine, interval=10)
    assert await poller.start(WALLET)
    assert not await poller.start(WALLET)
    await poller.stop()
    await poller.stop()
    assert not poller.is_running


async def test_stop_discards_in_flight_poll(engine, source, store):
    source.add(*history(2))
    source.gate = asyncio.Event()
    poller = Poller(engine, interval=0, limit=10)

    await poller.start(WALLET)
    await _eventually(lambda: len(source.calls) >= 1)
    await poller.stop()

    source.gate.set()
    await _eventually(lambda: not engine.is_syncing)

    assert store.is_empty
    assert len(source.calls) == 1


async def test_poll_errors_do_not_stop_the_loop(engine, source):
    source.fail_on_call = 1
    poller = Poller(engine, interval=0.01)

    await poller.start(WALLET)
    await _eventually(lambda: len(source.calls) >= 3)

    assert poller.is_running
    await poller.stop()


async def test_join_waits_for_in_flight_poll(engine, source, store):
    source.add(*history(2))
    source.gate = asyncio.Event()
    poller = Poller(engine, interval=0, limit=10)

    await poller.start(WALLET)
    await _eventually(lambda: len(source.calls) >= 1)
    await poller.stop()

    joiner = asyncio.create_task(poller.join())
    await asyncio.sleep(0.05)
    assert not joiner.done()

    source.gate.set()
    await joiner

    assert not engine.is_syncing
    assert store.is_empty


async def test_shutdown_closes_gateways_after_in_flight_poll(service, source):
    source.gate = asyncio.Event()
    await service.start_polling(WALLET)
    await _eventually(lambda: len(source.calls) >= 1)

    shutdown = asyncio.create_task(service.shutdown())
    await asyncio.sleep(0.05)
    assert not source.closed
    assert not shutdown.done()

    source.gate.set()
    await shutdown

    assert source.closed
    assert not service.engine.is_syncing
