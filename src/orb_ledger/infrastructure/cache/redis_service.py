import logging
from typing import Optional

import redis

from orb_ledger.core.interfaces.datasource import ILedgerStorage

logger = logging.getLogger(__name__)


class RedisLedgerStorage(ILedgerStorage):
    """
    Ledger blob kept under a single Redis key, without expiry.
    Unlike a cache, write errors propagate so the store can keep its
    in-memory ledger unchanged.
    """

    def __init__(self, redis_url: str, client: Optional[redis.Redis] = None):
        self.redis_url = redis_url
        self.client = client or redis.from_url(redis_url, decode_responses=True)
        try:
            self.client.ping()
            logger.info("Connected to Redis for ledger storage.")
        except redis.RedisError as e:
            logger.warning(f"Redis not reachable yet: {e}")

    def load(self, key: str) -> Optional[str]:
        data = self.client.get(key)
        if isinstance(data, bytes):
            return data.decode("utf-8")
        return data

    def save(self, key: str, payload: str) -> None:
        self.client.set(key, payload)

    def delete(self, key: str) -> None:
        self.client.delete(key)
