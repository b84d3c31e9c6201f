"""Snapshot and rollback models."""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple
from enum import Enum
from datetime import datetime
import uuid

TableRows = Dict[str, Dict[str, Any]]  # row key -> column values


class SnapshotType(str, Enum):
    PRE_MIGRATION = "pre_migration"
    CHECKPOINT = "checkpoint"
    POST_MIGRATION = "post_migration"
    MANUAL = "manual"


@dataclass(frozen=True)
class MigrationSnapshot:
    """Immutable point-in-time copy of target tables."""
    snapshot_id: str
    snapshot_name: str
    snapshot_type: SnapshotType
    tables_included: Tuple[str, ...]
    snapshot_data: Dict[str, TableRows]
    total_rows: int
    size_bytes: int
    created_at: datetime
    expires_at: Optional[datetime] = None
    migration_batch_id: Optional[str] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or datetime.utcnow()) >= self.expires_at

    def to_dict(self, include_data: bool = False) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        result = {
            "snapshot_id": self.snapshot_id,
            "migration_batch_id": self.migration_batch_id,
            "snapshot_name": self.snapshot_name,
            "snapshot_type": self.snapshot_type.value,
            "tables_included": list(self.tables_included),
            "total_rows": self.total_rows,
            "size_bytes": self.size_bytes,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }
        if include_data:
            result["snapshot_data"] = self.snapshot_data
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MigrationSnapshot":
        """Create from dictionary representation (with data)."""
        expires_at = data.get("expires_at")
        return cls(
            snapshot_id=data["snapshot_id"],
            snapshot_name=data["snapshot_name"],
            snapshot_type=SnapshotType(data.get("snapshot_type", "manual")),
            tables_included=tuple(data.get("tables_included", [])),
            snapshot_data=data.get("snapshot_data", {}),
            total_rows=data.get("total_rows", 0),
            size_bytes=data.get("size_bytes", 0),
            created_at=datetime.fromisoformat(data["created_at"]),
            expires_at=datetime.fromisoformat(expires_at) if expires_at else None,
            migration_batch_id=data.get("migration_batch_id"),
        )


@dataclass(frozen=True)
class RollbackEvent:
    """Audit record of a completed rollback."""
    snapshot_id: str
    reason: str
    approved_by: str
    tables_restored: Tuple[str, ...]
    rows_restored: int
    rows_deleted: int
    duration_ms: int
    rollback_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "rollback_id": self.rollback_id,
            "snapshot_id": self.snapshot_id,
            "reason": self.reason,
            "approved_by": self.approved_by,
            "tables_restored": list(self.tables_restored),
            "rows_restored": self.rows_restored,
            "rows_deleted": self.rows_deleted,
            "duration_ms": self.duration_ms,
            "created_at": self.created_at.isoformat(),
        }


def new_snapshot_id() -> str:
    return str(uuid.uuid4())


def default_snapshot_name(now: datetime) -> str:
    return f"Snapshot_{now.strftime('%Y%m%d_%H%M%S')}"