"""
Exception hierarchy for srqueue.

SRQueueError
├── CASConflictError        — write rejected because etag did not match
├── EntryNotFoundError      — entry id not present in the store
├── StorageError            — underlying I/O failure (wraps original exception)
└── StoreNotConnectedError  — store used before connect() or after close()

Losing a claim race is not an error: try_take() returns None.
"""

from __future__ import annotations


class SRQueueError(Exception):
    """Base class for all srqueue exceptions."""


class CASConflictError(SRQueueError):
    """
    Raised when a compare-and-set write is rejected by the storage backend.

    The entry store re-reads the current document and retries the mutation.
    Only surfaces to callers once the retry budget is exhausted.
    """


class EntryNotFoundError(SRQueueError):
    """Raised when an entry id is not present in the store."""

    def __init__(self, entry_id: str | None) -> None:
        self.entry_id = entry_id
        super().__init__(f"Queue entry {entry_id!r} not found")


class StorageError(SRQueueError):
    """
    Wraps an underlying I/O failure from a storage adapter.

    Attributes
    ----------
    cause : Exception
        The original exception from the storage backend.
    """

    def __init__(self, message: str, cause: Exception) -> None:
        self.cause = cause
        super().__init__(f"{message}: {cause}")


class StoreNotConnectedError(SRQueueError):
    """Raised when an entry store is used outside connect() ... close()."""
