"""Duplicate candidate models."""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from enum import Enum
from datetime import datetime
import uuid


class Resolution(str, Enum):
    """Resolution of a duplicate candidate."""
    PENDING = "pending"
    MERGE_A = "merge_a"  # keep A, fold B into it
    MERGE_B = "merge_b"  # keep B, fold A into it
    KEEP_BOTH = "keep_both"


@dataclass
class DedupCandidate:
    """A pair of target records that may describe the same identity."""
    batch_id: str
    target_table: str
    record_a_id: str
    record_a_data: Dict[str, Any]
    record_b_id: str
    record_b_data: Dict[str, Any]
    overall_similarity: float
    name_similarity: Optional[float] = None
    dob_match: Optional[bool] = None
    phone_similarity: Optional[float] = None
    email_similarity: Optional[float] = None
    match_method: str = "weighted_identity"
    resolution: Resolution = Resolution.PENDING
    requires_human_review: bool = True
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    candidate_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def is_pending(self) -> bool:
        return self.resolution == Resolution.PENDING

    @property
    def field_similarities(self) -> Dict[str, Any]:
        return {
            "name": self.name_similarity,
            "dob": self.dob_match,
            "phone": self.phone_similarity,
            "email": self.email_similarity,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "candidate_id": self.candidate_id,
            "batch_id": self.batch_id,
            "target_table": self.target_table,
            "record_a_id": self.record_a_id,
            "record_a_data": self.record_a_data,
            "record_b_id": self.record_b_id,
            "record_b_data": self.record_b_data,
            "overall_similarity": self.overall_similarity,
            "field_similarities": self.field_similarities,
            "match_method": self.match_method,
            "resolution": self.resolution.value,
            "requires_human_review": self.requires_human_review,
            "resolved_by": self.resolved_by,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "created_at": self.created_at.isoformat(),
        }
