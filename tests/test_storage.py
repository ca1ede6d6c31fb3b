"""
Tests for the Redis and Postgres ledger storage adapters, using in-process fakes.
"""
import pytest
import redis

from orb_ledger.infrastructure.cache import redis_service
from orb_ledger.infrastructure.cache.redis_service import RedisLedgerStorage
from orb_ledger.infrastructure.persistence import postgres_repo
from orb_ledger.infrastructure.persistence.postgres_repo import PostgresLedgerRepo


class FakeRedis:
    def __init__(self, reachable: bool = True):
        self.data = {}
        self.reachable = reachable

    def ping(self):
        if not self.reachable:
            raise redis.ConnectionError("down")
        return True

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value):
        self.data[key] = value

    def delete(self, key):
        self.data.pop(key, None)


def test_redis_storage_round_trip():
    client = FakeRedis()
    storage = RedisLedgerStorage("redis://fake", client=client)

    assert storage.load("ledger") is None
    storage.save("ledger", "[]")
    assert storage.load("ledger") == "[]"
    storage.delete("ledger")
    assert client.data == {}


def test_redis_storage_decodes_bytes():
    client = FakeRedis()
    client.data["ledger"] = b'[{"signature": "a"}]'
    assert RedisLedgerStorage("redis://fake", client=client).load("ledger") == '[{"signature": "a"}]'


def test_unreachable_redis_does_not_fail_construction():
    storage = RedisLedgerStorage("redis://fake", client=FakeRedis(reachable=False))
    assert storage.redis_url == "redis://fake"


def test_redis_client_is_built_from_url(monkeypatch):
    built = []

    def from_url(url, decode_responses):
        built.append((url, decode_responses))
        return FakeRedis()

    monkeypatch.setattr(redis_service.redis, "from_url", from_url)
    RedisLedgerStorage("redis://localhost:6379/0")
    assert built == [("redis://localhost:6379/0", True)]


class FakeCursor:
    def __init__(self, rows):
        self.rows = rows
        self.result = None

    def execute(self, query, params=None):
        sql = " ".join(query.split())
        if sql.startswith("INSERT INTO ledger_blobs"):
            self.rows[params[0]] = params[1]
        elif sql.startswith("SELECT payload"):
            self.result = (self.rows[params[0]],) if params[0] in self.rows else None
        elif sql.startswith("DELETE FROM ledger_blobs"):
            self.rows.pop(params[0], None)

    def fetchone(self):
        return self.result

    def close(self):
        pass


class FakeConnection:
    def __init__(self, rows):
        self.rows = rows
        self.commits = 0

    def cursor(self):
        return FakeCursor(self.rows)

    def commit(self):
        self.commits += 1

    def rollback(self):
        pass

    def close(self):
        pass


@pytest.fixture
def pg_rows(monkeypatch):
    rows = {}
    monkeypatch.setattr(postgres_repo.psycopg2, "connect", lambda dsn: FakeConnection(rows))
    return rows


def test_postgres_repo_upserts_and_deletes(pg_rows):
    repo = PostgresLedgerRepo("postgresql://fake")

    assert repo.load("ledger") is None
    repo.save("ledger", "[1]")
    repo.save("ledger", "[2]")
    assert repo.load("ledger") == "[2]"
    assert pg_rows == {"ledger": "[2]"}

    repo.delete("ledger")
    assert repo.load("ledger") is None
