"""Migration batch models."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum
from datetime import datetime
import uuid


class BatchStatus(str, Enum):
    """Status of a migration batch."""
    DRY_RUN = "dry_run"
    PROCESSING = "processing"
    AWAITING_RETRY = "awaiting_retry"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    BatchStatus.COMPLETED,
    BatchStatus.COMPLETED_WITH_ERRORS,
    BatchStatus.FAILED,
})


@dataclass
class MigrationBatch:
    """
    One execution of a confirmed mapping set over a dataset.

    Only the executor mutates a batch, and only until it reaches a terminal
    status.
    """
    batch_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    source_system: Optional[str] = None
    source_file: Optional[str] = None
    record_count: int = 0
    success_count: int = 0
    error_count: int = 0
    pending_retry_count: int = 0
    rows_processed: int = 0
    status: BatchStatus = BatchStatus.PROCESSING
    dry_run: bool = False
    started_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
    snapshot_id: Optional[str] = None
    review_id: Optional[str] = None
    schema_id: Optional[str] = None
    tables: List[str] = field(default_factory=list)
    cancelled: bool = False
    errors: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def settled_count(self) -> int:
        return self.success_count + self.error_count

    @property
    def duration_seconds(self) -> Optional[float]:
        """Get duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "batch_id": self.batch_id,
            "source_system": self.source_system,
            "source_file": self.source_file,
            "record_count": self.record_count,
            "success_count": self.success_count,
            "error_count": self.error_count,
            "pending_retry_count": self.pending_retry_count,
            "rows_processed": self.rows_processed,
            "status": self.status.value,
            "dry_run": self.dry_run,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "snapshot_id": self.snapshot_id,
            "review_id": self.review_id,
            "schema_id": self.schema_id,
            "tables": self.tables,
            "cancelled": self.cancelled,
            "errors": self.errors,
        }
