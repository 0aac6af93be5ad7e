"""
Error taxonomy for instant edits.

Only validation, transport and lookup problems are raised. Version conflicts
and undo failures travel back to the caller inside result objects, and storage
corruption never leaves the draft store.
"""

from typing import Iterable, Optional


class FieldGuardError(Exception):
    """Base class for all instant-edit errors."""
    pass


class ValidationFailure(FieldGuardError, ValueError):
    """A field name or value outside the closed enumeration."""

    def __init__(self, field: str, value: object, allowed: Optional[Iterable[str]] = None):
        self.field = field
        self.value = value
        self.allowed = list(allowed or [])
        if self.allowed:
            message = f"Invalid {field}: {value}. Must be one of: {', '.join(self.allowed)}"
        else:
            message = f"Unknown editable field: {field}"
        super().__init__(message)


class NetworkFailure(FieldGuardError):
    """The remote store could not be reached; the write may be retried."""

    retryable = True


class RecordNotFoundError(FieldGuardError):
    """The remote record does not exist."""

    def __init__(self, record_id: object):
        self.record_id = record_id
        super().__init__(f"Record not found: {record_id}")


class VersionConflict(FieldGuardError):
    """A write lost the version race and the merge left true conflicts.

    Instant saves report conflicts inside SaveResult; this is raised by the
    pending-queue submitter so the drain can drop the submission.
    """

    def __init__(self, record_id: object, conflicts: list):
        self.record_id = record_id
        self.conflicts = conflicts
        fields = ", ".join(c.field_name for c in conflicts)
        super().__init__(f"Conflicting changes on record {record_id}: {fields}")


class UndoFailure(FieldGuardError):
    """A restore write failed while executing an undo entry."""
    pass


class StorageCorruption(FieldGuardError):
    """A local storage entry could not be decoded or is missing required fields."""

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Corrupted storage entry {key}: {reason}")
