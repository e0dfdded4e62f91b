"""
Error taxonomy for the usage ledger.

Every ledger operation either returns its documented result or raises one
of these. Only StorageUnavailable is worth retrying.
"""


class LedgerError(Exception):
    """Base class for all usage ledger failures."""
    retryable = False


class InvalidInput(LedgerError, ValueError):
    """Raised when an operation is called with bad arguments."""


class InvalidRange(InvalidInput):
    """Raised when a query range starts after it ends.

    A kind of InvalidInput, so `except InvalidInput` also catches it; catch
    InvalidRange first when the two need different handling.
    """
    def __init__(self, from_date, to_date):
        super().__init__(f"from_date {from_date} is after to_date {to_date}")
        self.from_date = from_date
        self.to_date = to_date


class StorageUnavailable(LedgerError):
    """Raised when the persistence layer cannot be reached.

    Transient: callers should retry with backoff.
    """
    retryable = True


class AccessDenied(LedgerError):
    """Raised when the configured access policy refuses an operation."""
    def __init__(self, message: str, action=None, provider=None):
        super().__init__(message)
        self.action = action
        self.provider = provider
