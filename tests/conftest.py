"""
Pytest configuration and shared fixtures.
"""
from dataclasses import replace

import pytest
from httpx import ASGITransport, AsyncClient

from orb_ledger.api.main import app, get_service
from orb_ledger.config import load_settings
from orb_ledger.core.entities.balance import VerifiedToken
from orb_ledger.core.ledger_store import LedgerStore
from orb_ledger.core.services import TransactionHistoryService
from orb_ledger.infrastructure.gateways.local_mock import LocalMockTokenList, LocalMockTransactionSource
from orb_ledger.infrastructure.persistence.memory_storage import InMemoryLedgerStorage

from factories import BONK

TEST_STORAGE_KEY = "test.orb.transactionHistory"


@pytest.fixture
def settings():
    return replace(
        load_settings(),
        storage_key=TEST_STORAGE_KEY,
        sync_page_size=2,
        poll_interval_s=0.01,
        poll_limit=10,
    )


@pytest.fixture
def source():
    return LocalMockTransactionSource(first_timestamp=0)


@pytest.fixture
def storage():
    return InMemoryLedgerStorage()


@pytest.fixture
def store(storage):
    return LedgerStore(storage, TEST_STORAGE_KEY)


@pytest.fixture
def token_list():
    return LocalMockTokenList([
        VerifiedToken(mint=BONK, symbol="Bonk", name="Bonk", icon="https://img.example/bonk.png", decimals=5),
    ])


@pytest.fixture
async def service(source, storage, token_list, settings):
    svc = TransactionHistoryService(source, storage, token_list, settings)
    await svc.startup()
    yield svc
    await svc.shutdown()


@pytest.fixture
async def client(service):
    """Async HTTP client for testing FastAPI endpoints."""
    app.dependency_overrides[get_service] = lambda: service
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
