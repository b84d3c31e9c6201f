"""Error taxonomy for the migration engine."""

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorKind(str, Enum):
    """Machine-readable category attached to every engine error."""
    VALIDATION = "validation"
    TRANSIENT_INFRA = "transient_infra"
    CONFLICT = "conflict"
    SNAPSHOT = "snapshot"
    SNAPSHOT_NOT_FOUND = "snapshot_not_found"
    CONCURRENT_MIGRATION_IN_PROGRESS = "concurrent_migration_in_progress"
    APPROVER_REQUIRED = "approver_required"
    ALREADY_RESOLVED = "already_resolved"
    REVIEW_REQUIRED = "review_required"
    INVALID_STATE = "invalid_state"
    NOT_FOUND = "not_found"
    TABLE_LOCKED = "table_locked"


class MigrationEngineError(Exception):
    """Base class for all engine errors."""

    default_kind = ErrorKind.INVALID_STATE

    def __init__(
        self,
        message: str,
        kind: Optional[ErrorKind] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.kind = kind or self.default_kind
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(MigrationEngineError):
    """Permanent row/field level failure. Never retried."""

    default_kind = ErrorKind.VALIDATION

    def __init__(self, message: str, violations: Optional[List[Any]] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.violations = violations or []


class TransientInfraError(MigrationEngineError):
    """Infrastructure hiccup; the operation is retried through the retry queue."""

    default_kind = ErrorKind.TRANSIENT_INFRA


class ConflictError(MigrationEngineError):
    """A write collided with an existing identity in the target store."""

    default_kind = ErrorKind.CONFLICT

    def __init__(
        self,
        message: str,
        table: str = "",
        existing_key: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.table = table
        self.existing_key = existing_key


class SnapshotError(MigrationEngineError):
    """Snapshot capture or persistence failed; the batch aborts pre-write."""

    default_kind = ErrorKind.SNAPSHOT


class RollbackPreconditionError(MigrationEngineError):
    """Rollback request rejected before any table was touched."""

    default_kind = ErrorKind.SNAPSHOT_NOT_FOUND


class AlreadyResolvedError(MigrationEngineError):
    """A duplicate candidate already carries a terminal resolution."""

    default_kind = ErrorKind.ALREADY_RESOLVED


class ReviewError(MigrationEngineError):
    """Illegal review transition or unconfirmed mapping input."""

    default_kind = ErrorKind.REVIEW_REQUIRED


class NotFoundError(MigrationEngineError):
    default_kind = ErrorKind.NOT_FOUND


class TableLockedError(MigrationEngineError):
    """A table lease is held by a conflicting operation."""

    default_kind = ErrorKind.TABLE_LOCKED
