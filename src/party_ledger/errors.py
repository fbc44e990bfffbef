"""Exception hierarchy raised by the party ledger engine."""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for failures raised while reconciling a party ledger."""


class MalformedRecordError(LedgerError):
    """Raised when a single raw record lacks identity, timestamp, or amounts.

    The engine catches this per record, skips the record, and reports a
    warning instead of failing the whole computation.
    """

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class UnknownKindError(LedgerError):
    """Raised when a record set or kind has no sign convention rule."""


class EmptyPartyError(LedgerError):
    """Raised when no party could be resolved for a computation."""


__all__ = [
    "LedgerError",
    "MalformedRecordError",
    "UnknownKindError",
    "EmptyPartyError",
]
