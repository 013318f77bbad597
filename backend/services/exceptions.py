"""Typed exception hierarchy for lot ledger errors.

Lets callers tell bad input apart from a real shortfall in holdings
and from a failing storage backend.
"""

from decimal import Decimal


class LedgerError(Exception):
    """Base exception for all lot ledger errors."""

    pass


class InvalidQuantityError(LedgerError):
    """A units or rate value is non-positive or otherwise out of domain.

    Raised before any mutation.
    """

    pass


class InsufficientHoldingsError(LedgerError):
    """A disposal asks for more units than the tracked lots hold.

    Raised before any mutation; nothing is partially consumed.
    """

    def __init__(self, message: str, requested: Decimal, available: Decimal):
        self.requested = requested
        self.available = available
        super().__init__(message)


class StorageUnavailableError(LedgerError):
    """The lot store failed to read or write.

    The session has been rolled back. The ledger never retries.
    """

    pass
