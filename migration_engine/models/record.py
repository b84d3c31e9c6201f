"""Per-row and per-cell records produced during execution."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from datetime import datetime
import uuid


@dataclass
class FieldViolation:
    """A declared rule that a target cell failed."""
    column: str
    message: str
    rule: str = "validation"
    value: Optional[Any] = None
    table: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "column": self.column,
            "message": self.message,
            "rule": self.rule,
            "value": self.value,
            "table": self.table,
        }


@dataclass
class RowFailure:
    """Permanent, logged failure of a single source row."""
    batch_id: str
    source_row: int
    error_kind: str
    message: str
    error_code: str = ""
    target_table: Optional[str] = None
    violations: List[FieldViolation] = field(default_factory=list)
    failure_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def columns(self) -> List[str]:
        return [v.column for v in self.violations]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "failure_id": self.failure_id,
            "batch_id": self.batch_id,
            "source_row": self.source_row,
            "error_kind": self.error_kind,
            "error_code": self.error_code,
            "message": self.message,
            "target_table": self.target_table,
            "violations": [v.to_dict() for v in self.violations],
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class TransformationStep:
    """One transform applied to a cell, identified by value hashes."""
    step: int
    transform: str
    before_hash: str
    after_hash: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step,
            "transform": self.transform,
            "before_hash": self.before_hash,
            "after_hash": self.after_hash,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TransformationStep":
        return cls(
            step=data["step"],
            transform=data["transform"],
            before_hash=data["before_hash"],
            after_hash=data["after_hash"],
        )


@dataclass(frozen=True)
class LineageRecord:
    """Append-only trail from one source cell to one target cell."""
    batch_id: str
    source_row: int
    source_column: str
    target_table: str
    target_column: str
    target_row_key: str
    source_value_hash: str
    target_value_hash: str
    transformations: Tuple[TransformationStep, ...] = ()
    validation_passed: bool = True
    source_file: Optional[str] = None
    lineage_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "lineage_id": self.lineage_id,
            "batch_id": self.batch_id,
            "source_file": self.source_file,
            "source_row": self.source_row,
            "source_column": self.source_column,
            "target_table": self.target_table,
            "target_column": self.target_column,
            "target_row_key": self.target_row_key,
            "source_value_hash": self.source_value_hash,
            "target_value_hash": self.target_value_hash,
            "transformations": [t.to_dict() for t in self.transformations],
            "validation_passed": self.validation_passed,
            "created_at": self.created_at.isoformat(),
        }
