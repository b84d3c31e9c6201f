"""Quality score model."""

from dataclasses import dataclass, field
from typing import Any, Dict, Tuple
from datetime import datetime


@dataclass(frozen=True)
class QualityScore:
    """Composite data-quality grade for a settled batch."""
    batch_id: str
    overall_score: float
    completeness_score: float
    accuracy_score: float
    consistency_score: float
    uniqueness_score: float
    grade: str
    recommendations: Tuple[str, ...] = ()
    ready_for_production: bool = False
    created_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "batch_id": self.batch_id,
            "overall_score": self.overall_score,
            "completeness_score": self.completeness_score,
            "accuracy_score": self.accuracy_score,
            "consistency_score": self.consistency_score,
            "uniqueness_score": self.uniqueness_score,
            "grade": self.grade,
            "recommendations": list(self.recommendations),
            "ready_for_production": self.ready_for_production,
            "created_at": self.created_at.isoformat(),
        }
