import logging
from typing import Optional

import psycopg2

from orb_ledger.core.interfaces.datasource import ILedgerStorage

logger = logging.getLogger(__name__)


class PostgresLedgerRepo(ILedgerStorage):
    """Stores each ledger blob as one row of `ledger_blobs`, keyed by storage key."""

    def __init__(self, dsn: str):
        self.dsn = dsn
        self._init_db()

    def _init_db(self):
        conn = psycopg2.connect(self.dsn)
        cur = conn.cursor()

        cur.execute("""
            CREATE TABLE IF NOT EXISTS ledger_blobs (
                storage_key VARCHAR PRIMARY KEY,
                payload TEXT NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
            );
        """)

        conn.commit()
        cur.close()
        conn.close()
        logger.info("Postgres ledger table ready")

    def load(self, key: str) -> Optional[str]:
        conn = psycopg2.connect(self.dsn)
        cur = conn.cursor()

        cur.execute("SELECT payload FROM ledger_blobs WHERE storage_key = %s", (key,))
        row = cur.fetchone()

        cur.close()
        conn.close()
        return row[0] if row else None

    def save(self, key: str, payload: str) -> None:
        conn = psycopg2.connect(self.dsn)
        cur = conn.cursor()

        upsert_query = """
            INSERT INTO ledger_blobs (storage_key, payload, updated_at)
            VALUES (%s, %s, now())
            ON CONFLICT (storage_key)
            DO UPDATE SET payload = EXCLUDED.payload, updated_at = EXCLUDED.updated_at
        """
        try:
            cur.execute(upsert_query, (key, payload))
            conn.commit()
        except psycopg2.Error:
            conn.rollback()
            raise
        finally:
            cur.close()
            conn.close()

    def delete(self, key: str) -> None:
        conn = psycopg2.connect(self.dsn)
        cur = conn.cursor()

        cur.execute("DELETE FROM ledger_blobs WHERE storage_key = %s", (key,))
        conn.commit()

        cur.close()
        conn.close()
