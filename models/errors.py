"""Error taxonomy shared by the datastore and the services."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from app.schemas import Reading


class ReadingValidationError(ValueError):
    """Raised when an ingestion request is malformed or out of range."""


class StorageError(RuntimeError):
    """A persistence operation failed.

    ``reading`` carries the derived but unpersisted reading when the failure
    happened during ingestion, so callers can still answer with a best-effort
    result flagged as not durably saved.
    """

    def __init__(self, message: str, reading: Optional["Reading"] = None) -> None:
        super().__init__(message)
        self.reading = reading


class StorageUnavailable(StorageError):
    """The backing store cannot be reached."""


class StorageTimeout(StorageUnavailable):
    """A storage operation did not complete within its time bound."""
