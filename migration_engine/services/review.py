"""Human review gate: turns mapping suggestions into confirmed mappings."""

import logging
import threading
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..errors import ReviewError
from ..models.mapping import ConfirmedMapping, MappingAnalysis, MappingSuggestion
from ..models.schema import TargetSchema, TransformType

logger = logging.getLogger(__name__)

_SEAL = object()


class ReviewState(str, Enum):
    DRAFT = "draft"
    SUGGESTIONS_GENERATED = "suggestions_generated"
    UNDER_REVIEW = "under_review"
    CONFIRMED = "confirmed"
    EXECUTING = "executing"
    COMPLETED = "completed"


_TRANSITIONS = {
    ReviewState.DRAFT: ReviewState.SUGGESTIONS_GENERATED,
    ReviewState.SUGGESTIONS_GENERATED: ReviewState.UNDER_REVIEW,
    ReviewState.UNDER_REVIEW: ReviewState.CONFIRMED,
    ReviewState.CONFIRMED: ReviewState.EXECUTING,
    ReviewState.EXECUTING: ReviewState.COMPLETED,
}


class ConfirmedMappingSet:
    """
    The sealed output of a review session.

    Only ReviewSession.confirm() can build one; the executor refuses any
    other mapping input.
    """

    def __init__(
        self,
        review_id: str,
        confirmed_by: str,
        confirmed_at: datetime,
        mappings: List[ConfirmedMapping],
        schema_id: str = "",
        _seal: Any = None
    ):
        if _seal is not _SEAL:
            raise ReviewError("Confirmed mappings can only be produced by a review session")
        self._review_id = review_id
        self._confirmed_by = confirmed_by
        self._confirmed_at = confirmed_at
        self._mappings = tuple(mappings)
        self._schema_id = schema_id

    @property
    def review_id(self) -> str:
        return self._review_id

    @property
    def confirmed_by(self) -> str:
        return self._confirmed_by

    @property
    def confirmed_at(self) -> datetime:
        return self._confirmed_at

    @property
    def schema_id(self) -> str:
        return self._schema_id

    @property
    def mappings(self) -> Tuple[ConfirmedMapping, ...]:
        return self._mappings

    @property
    def active_mappings(self) -> List[ConfirmedMapping]:
        """Mappings that will be executed (skipped columns excluded)."""
        return [m for m in self._mappings if m.is_active]

    @property
    def target_tables(self) -> List[str]:
        tables = []
        for mapping in self.active_mappings:
            if mapping.target_table not in tables:
                tables.append(mapping.target_table)
        return tables

    def to_dict(self) -> Dict[str, Any]:
        return {
            "review_id": self._review_id,
            "confirmed_by": self._confirmed_by,
            "confirmed_at": self._confirmed_at.isoformat(),
            "schema_id": self._schema_id,
            "mappings": [m.to_dict() for m in self._mappings],
        }


class ReviewSession:
    """
    Finite-state review of one mapping analysis.

    draft → suggestions_generated → under_review → confirmed → executing → completed

    Supports:
    - Accepting a suggestion as-is
    - Overriding a suggestion (the first suggestion is kept for learning)
    - Skipping a column so it is excluded from execution
    """

    def __init__(self, target_schema: Optional[TargetSchema] = None, review_id: Optional[str] = None):
        self.review_id = review_id or str(uuid.uuid4())
        self.target_schema = target_schema
        self.state = ReviewState.DRAFT
        self.analysis: Optional[MappingAnalysis] = None
        self.batch_id: Optional[str] = None
        self.confirmed: Optional[ConfirmedMappingSet] = None
        self._decisions: Dict[str, ConfirmedMapping] = {}
        self._lock = threading.Lock()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def load(self, analysis: MappingAnalysis) -> None:
        """Attach generated suggestions to a draft session."""
        with self._lock:
            self._require(ReviewState.DRAFT)
            self.analysis = analysis
            self._decisions = {}
            self._advance()
        logger.info(f"Review {self.review_id}: loaded {len(analysis.suggestions)} suggestions")

    def begin_review(self) -> None:
        with self._lock:
            self._require(ReviewState.SUGGESTIONS_GENERATED)
            self._advance()

    def confirm(self, confirmed_by: str) -> ConfirmedMappingSet:
        """
        Seal the reviewed mappings.

        Mapped suggestions without an explicit decision are accepted as
        suggested. UNMAPPED columns must have been overridden or skipped.

        Args:
            confirmed_by: Identity of the approving reviewer

        Returns:
            The sealed ConfirmedMappingSet
        """
        if not confirmed_by or not confirmed_by.strip():
            raise ReviewError("confirm requires the reviewer identity")

        with self._lock:
            self._require(ReviewState.UNDER_REVIEW)

            unresolved = self._unresolved_columns()
            if unresolved:
                raise ReviewError(
                    f"{len(unresolved)} unmapped column(s) need an override or skip: {', '.join(unresolved)}",
                    details={"columns": unresolved},
                )

            mappings = []
            for suggestion in self.analysis.suggestions:
                decision = self._decisions.get(suggestion.source_column)
                mappings.append(decision or self._accepted(suggestion))

            self.confirmed = ConfirmedMappingSet(
                review_id=self.review_id,
                confirmed_by=confirmed_by,
                confirmed_at=datetime.utcnow(),
                mappings=mappings,
                schema_id=self.analysis.schema_id,
                _seal=_SEAL,
            )
            self._advance()

        active = len(self.confirmed.active_mappings)
        logger.info(f"Review {self.review_id} confirmed by {confirmed_by}: {active} active mappings")
        return self.confirmed

    def mark_executing(self, batch_id: Optional[str] = None) -> None:
        with self._lock:
            self._require(ReviewState.CONFIRMED)
            self.batch_id = batch_id
            self._advance()

    def mark_completed(self) -> None:
        with self._lock:
            self._require(ReviewState.EXECUTING)
            self._advance()

    # =========================================================================
    # Decisions
    # =========================================================================

    def accept(self, source_column: str) -> ConfirmedMapping:
        """Accept the engine's top suggestion for a column."""
        with self._lock:
            self._require(ReviewState.UNDER_REVIEW)
            suggestion = self._suggestion(source_column)
            if suggestion.is_unmapped:
                raise ReviewError(
                    f"Column {source_column} is UNMAPPED; override or skip it instead"
                )
            decision = self._accepted(suggestion)
            self._decisions[source_column] = decision
            return decision

    def accept_all(self, min_confidence: float = 0.0) -> List[str]:
        """Accept every undecided mapped suggestion at or above min_confidence."""
        accepted = []
        with self._lock:
            self._require(ReviewState.UNDER_REVIEW)
            for suggestion in self.analysis.suggestions:
                if suggestion.source_column in self._decisions or suggestion.is_unmapped:
                    continue
                if suggestion.confidence >= min_confidence:
                    self._decisions[suggestion.source_column] = self._accepted(suggestion)
                    accepted.append(suggestion.source_column)
        return accepted

    def override(
        self,
        source_column: str,
        target_table: str,
        target_column: str,
        transform: Optional[TransformType] = None
    ) -> ConfirmedMapping:
        """
        Map a column somewhere other than the top suggestion.

        Args:
            source_column: Source column under review
            target_table: Chosen target table
            target_column: Chosen target column
            transform: Transform to apply; defaults to the one the engine
                proposed for that target, or TRIM

        Returns:
            The user-modified ConfirmedMapping
        """
        with self._lock:
            self._require(ReviewState.UNDER_REVIEW)
            suggestion = self._suggestion(source_column)

            if self.target_schema is not None and self.target_schema.get_column(target_table, target_column) is None:
                raise ReviewError(f"Unknown target column {target_table}.{target_column}")

            if transform is None:
                transform = self._proposed_transform(suggestion, target_table, target_column)

            decision = ConfirmedMapping(
                source_column=source_column,
                target_table=target_table,
                target_column=target_column,
                confidence=1.0,
                transform=transform,
                reasons=("Overridden by reviewer",),
                user_modified=True,
                original_suggestion=suggestion,
            )
            self._decisions[source_column] = decision
            return decision

    def skip(self, source_column: str) -> ConfirmedMapping:
        """Exclude a column from execution."""
        with self._lock:
            self._require(ReviewState.UNDER_REVIEW)
            suggestion = self._suggestion(source_column)
            decision = ConfirmedMapping(
                source_column=source_column,
                target_table=suggestion.target_table,
                target_column=suggestion.target_column,
                confidence=suggestion.confidence,
                transform=suggestion.transform,
                reasons=("Skipped by reviewer",),
                user_skipped=True,
                original_suggestion=suggestion,
            )
            self._decisions[source_column] = decision
            return decision

    @property
    def unresolved_columns(self) -> List[str]:
        with self._lock:
            return self._unresolved_columns()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "review_id": self.review_id,
            "state": self.state.value,
            "batch_id": self.batch_id,
            "decisions": {k: v.to_dict() for k, v in self._decisions.items()},
            "unresolved_columns": self.unresolved_columns,
        }

    # =========================================================================
    # Helpers
    # =========================================================================

    def _require(self, state: ReviewState) -> None:
        if self.state != state:
            raise ReviewError(
                f"Review {self.review_id} is {self.state.value}, expected {state.value}"
            )

    def _advance(self) -> None:
        self.state = _TRANSITIONS[self.state]

    def _suggestion(self, source_column: str) -> MappingSuggestion:
        suggestion = self.analysis.get(source_column) if self.analysis else None
        if suggestion is None:
            raise ReviewError(f"No suggestion for column {source_column}")
        return suggestion

    def _unresolved_columns(self) -> List[str]:
        if self.analysis is None:
            return []
        return [
            s.source_column for s in self.analysis.suggestions
            if s.is_unmapped and s.source_column not in self._decisions
        ]

    @staticmethod
    def _accepted(suggestion: MappingSuggestion) -> ConfirmedMapping:
        return ConfirmedMapping(
            source_column=suggestion.source_column,
            target_table=suggestion.target_table,
            target_column=suggestion.target_column,
            confidence=suggestion.confidence,
            transform=suggestion.transform,
            reasons=tuple(suggestion.reasons),
        )

    @staticmethod
    def _proposed_transform(suggestion: MappingSuggestion, table: str, column: str) -> TransformType:
        if (suggestion.target_table, suggestion.target_column) == (table, column):
            return suggestion.transform
        for alternative in suggestion.alternative_mappings:
            if (alternative.target_table, alternative.target_column) == (table, column):
                return alternative.transform
        return TransformType.TRIM
