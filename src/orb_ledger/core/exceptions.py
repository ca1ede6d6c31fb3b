from typing import Optional


class LedgerError(Exception):
    """Base class for every error raised by the ledger engine."""


class TransactionSourceError(LedgerError):
    """The indexer could not be reached or answered with an error."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TokenListError(LedgerError):
    pass


class LedgerEmptyError(LedgerError):
    """Incremental sync was requested before any initial backfill."""


class LedgerPersistenceError(LedgerError):
    """The ledger blob could not be written; the in-memory ledger is unchanged."""
