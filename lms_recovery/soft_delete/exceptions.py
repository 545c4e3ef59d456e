"""Exceptions for soft delete and restore operations."""

from typing import Optional


class SoftDeleteError(Exception):
    """Base exception for soft delete operations.

    ``retryable`` tells the calling layer whether re-issuing the same
    operation may succeed. Every failure leaves the store unchanged.
    """

    retryable = False

    def __init__(
        self,
        message: str,
        kind: Optional[str] = None,
        record_id: Optional[str] = None,
    ):
        self.kind = kind
        self.record_id = record_id
        super().__init__(message)


class NotFound(SoftDeleteError):
    """Raised when the target record or ledger event does not exist."""

    def __init__(self, kind: str, record_id: str):
        super().__init__(
            f"{kind} {record_id} does not exist", kind=kind, record_id=record_id
        )


class AlreadyDeleted(SoftDeleteError):
    """Raised when attempting to delete an already tombstoned record."""

    def __init__(self, kind: str, record_id: str, event_id: Optional[str] = None):
        self.event_id = event_id
        super().__init__(
            f"{kind} {record_id} is already deleted (event {event_id}) "
            "and cannot be deleted again",
            kind=kind,
            record_id=record_id,
        )


class NotDeleted(SoftDeleteError):
    """Raised when attempting to restore a live record."""

    def __init__(self, kind: str, record_id: str):
        super().__init__(
            f"{kind} {record_id} is not deleted and cannot be restored",
            kind=kind,
            record_id=record_id,
        )


class ConcurrentModification(SoftDeleteError):
    """Raised when the store rejects a transaction because of a conflict."""

    retryable = True


class Timeout(SoftDeleteError):
    """Raised when the store did not complete within its time bound."""

    retryable = True


class PartialRestoreConflict(SoftDeleteError):
    """Raised when a restore member was mutated by another transaction."""

    retryable = True

    def __init__(self, kind: str, record_id: str, event_id: Optional[str]):
        self.event_id = event_id
        super().__init__(
            f"Restore of {kind} {record_id} conflicted with a concurrent change "
            f"to records of event {event_id}; nothing was restored",
            kind=kind,
            record_id=record_id,
        )


class InvariantViolation(SoftDeleteError):
    """Raised when stored tombstone state contradicts the subsystem invariants.

    Indicates a bug or out-of-band tampering. Never retried, never repaired.
    """
