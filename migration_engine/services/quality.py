"""Composite data-quality scoring for settled batches."""

import logging
import threading
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional

from ..config import QualitySettings
from ..models.dedup import DedupCandidate
from ..models.quality import QualityScore
from ..models.record import FieldViolation
from ..models.schema import TargetTable
from .validator import RecordValidator

logger = logging.getLogger(__name__)

GRADE_THRESHOLDS = [
    (95.0, "A+"),
    (90.0, "A"),
    (85.0, "B+"),
    (80.0, "B"),
    (75.0, "C+"),
    (70.0, "C"),
    (60.0, "D"),
]

RECOMMENDATIONS = {
    "completeness": "Review and fill missing required fields",
    "accuracy": "Fix validation errors before proceeding",
    "consistency": "Standardize field formats (phone, date, state) before re-running",
    "uniqueness": "Resolve duplicate record candidates",
}


def grade_for(score: float) -> str:
    for threshold, grade in GRADE_THRESHOLDS:
        if score >= threshold:
            return grade
    return "F"


@dataclass
class QualityInputs:
    """Counters gathered while rows are validated and written."""
    required_total: int = 0
    required_present: int = 0
    fields_validated: int = 0
    fields_passed: int = 0
    values_checked: int = 0
    values_canonical: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class QualityScorer:
    """
    Computes completeness, accuracy, consistency and uniqueness for a batch.

    Supports:
    - Incremental observation of validated rows (thread-safe)
    - Weighted overall score with letter grade
    - Production readiness and recommendations
    """

    def __init__(
        self,
        settings: Optional[QualitySettings] = None,
        validator: Optional[RecordValidator] = None
    ):
        self.settings = settings or QualitySettings()
        self.validator = validator or RecordValidator()
        self._lock = threading.Lock()

    def observe(
        self,
        inputs: QualityInputs,
        table: TargetTable,
        values: Dict[str, Any],
        violations: List[FieldViolation]
    ) -> None:
        """Fold one validated target row into the batch counters."""
        failed_columns = {v.column for v in violations if v.rule != "required"}

        required_total = len(table.required_columns)
        required_present = sum(
            1 for c in table.required_columns if not RecordValidator._is_missing(values.get(c))
        )

        validated = 0
        passed = 0
        checked = 0
        canonical = 0
        for column_name, value in values.items():
            column = table.columns.get(column_name)
            if column is None or RecordValidator._is_missing(value):
                continue
            validated += 1
            if column_name not in failed_columns:
                passed += 1
            checked += 1
            if self.validator.is_canonical(column, value):
                canonical += 1

        with self._lock:
            inputs.required_total += required_total
            inputs.required_present += required_present
            inputs.fields_validated += validated
            inputs.fields_passed += passed
            inputs.values_checked += checked
            inputs.values_canonical += canonical

    def score(
        self,
        batch_id: str,
        record_count: int,
        inputs: QualityInputs,
        candidates: List[DedupCandidate]
    ) -> QualityScore:
        """
        Score a settled batch.

        Args:
            batch_id: Batch being scored
            record_count: Rows in the batch
            inputs: Counters gathered during execution
            candidates: Duplicate candidates of the batch

        Returns:
            The immutable QualityScore
        """
        pending = [c for c in candidates if c.is_pending]
        flagged_rows = set()
        for candidate in pending:
            flagged_rows.add((candidate.target_table, candidate.record_a_id))
            flagged_rows.add((candidate.target_table, candidate.record_b_id))

        uniqueness = 100.0
        if record_count > 0:
            uniqueness = max(0.0, 100.0 - min(len(flagged_rows), record_count) / record_count * 100.0)

        return self.score_from_components(
            batch_id,
            completeness=self._percent(inputs.required_present, inputs.required_total),
            accuracy=self._percent(inputs.fields_passed, inputs.fields_validated),
            consistency=self._percent(inputs.values_canonical, inputs.values_checked),
            uniqueness=uniqueness,
            pending_candidates=len(pending),
        )

    def score_from_components(
        self,
        batch_id: str,
        completeness: float,
        accuracy: float,
        consistency: float,
        uniqueness: float,
        pending_candidates: int = 0
    ) -> QualityScore:
        """Combine sub-scores into the overall score, grade and readiness."""
        s = self.settings
        components = {
            "completeness": (completeness, s.completeness_weight),
            "accuracy": (accuracy, s.accuracy_weight),
            "consistency": (consistency, s.consistency_weight),
            "uniqueness": (uniqueness, s.uniqueness_weight),
        }
        total_weight = sum(w for _, w in components.values()) or 1.0
        overall = round(sum(v * w for v, w in components.values()) / total_weight, 2)

        recommendations = []
        lowest_name, (lowest_value, _) = min(components.items(), key=lambda item: item[1][0])
        if lowest_value < 100.0:
            recommendations.append(RECOMMENDATIONS[lowest_name])
        if pending_candidates:
            recommendations.append(f"Resolve {pending_candidates} pending duplicate candidates")

        score = QualityScore(
            batch_id=batch_id,
            overall_score=overall,
            completeness_score=round(completeness, 2),
            accuracy_score=round(accuracy, 2),
            consistency_score=round(consistency, 2),
            uniqueness_score=round(uniqueness, 2),
            grade=grade_for(overall),
            recommendations=tuple(recommendations),
            ready_for_production=overall >= s.ready_threshold and pending_candidates == 0,
        )
        logger.info(f"Batch {batch_id} quality {overall} ({score.grade}), ready={score.ready_for_production}")
        return score

    @staticmethod
    def _percent(part: int, whole: int) -> float:
        if whole <= 0:
            return 100.0
        return part / whole * 100.0
