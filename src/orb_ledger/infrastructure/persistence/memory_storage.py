from typing import Dict, Optional

from orb_ledger.core.interfaces.datasource import ILedgerStorage


class InMemoryLedgerStorage(ILedgerStorage):
    """Process-local storage used when neither Postgres nor Redis is configured."""

    def __init__(self):
        self.blobs: Dict[str, str] = {}
        self.fail_writes = False
        self.save_count = 0

    def load(self, key: str) -> Optional[str]:
        return self.blobs.get(key)

    def save(self, key: str, payload: str) -> None:
        if self.fail_writes:
            raise OSError("storage is read-only")
        self.blobs[key] = payload
        self.save_count += 1

    def delete(self, key: str) -> None:
        if self.fail_writes:
            raise OSError("storage is read-only")
        self.blobs.pop(key, None)
