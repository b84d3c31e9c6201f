"""Retry queue models."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum
from datetime import datetime
import uuid


class RetryStatus(str, Enum):
    PENDING = "pending"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RetryStatus.SUCCEEDED, RetryStatus.EXHAUSTED, RetryStatus.CANCELLED)


@dataclass
class RetryQueueItem:
    """A transient failure waiting to be re-attempted out of band."""
    migration_batch_id: str
    failed_operation: str
    target_table: str
    row_key: str
    source_row_numbers: List[int] = field(default_factory=list)
    payload: Dict[str, Any] = field(default_factory=dict)
    error_code: str = ""
    error_message: str = ""
    attempt_number: int = 1
    max_attempts: int = 5
    next_retry_at: Optional[datetime] = None
    status: RetryStatus = RetryStatus.PENDING
    retry_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=datetime.utcnow)
    last_attempt_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def operation_key(self) -> str:
        """Idempotency key of the retried operation."""
        return f"{self.failed_operation}:{self.target_table}:{self.row_key}"

    def is_due(self, now: datetime) -> bool:
        return (
            self.status == RetryStatus.PENDING
            and self.next_retry_at is not None
            and self.next_retry_at <= now
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "retry_id": self.retry_id,
            "migration_batch_id": self.migration_batch_id,
            "failed_operation": self.failed_operation,
            "target_table": self.target_table,
            "row_key": self.row_key,
            "source_row_numbers": self.source_row_numbers,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "attempt_number": self.attempt_number,
            "max_attempts": self.max_attempts,
            "next_retry_at": self.next_retry_at.isoformat() if self.next_retry_at else None,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "last_attempt_at": self.last_attempt_at.isoformat() if self.last_attempt_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
