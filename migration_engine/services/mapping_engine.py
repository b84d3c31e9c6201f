"""Mapping suggestion engine: ranks target columns for every source column."""

import json
import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from ..config import MappingSettings
from ..models.dna import ColumnDNA, DataPattern, SourceDNA
from ..models.mapping import (
    UNMAPPED,
    AlternativeMapping,
    ConfirmedMapping,
    HistoricalMigration,
    MappingAnalysis,
    MappingSuggestion,
    SimilarMigration,
)
from ..models.schema import SemanticType, TargetColumn, TargetSchema, TargetTable, TransformType
from .similarity import column_name_similarity, cosine_similarity

logger = logging.getLogger(__name__)


class MigrationHistory:
    """
    Corpus of confirmed past migrations.

    Each entry keeps the source signature vector and the confirmed
    normalized-column → target mapping, so later sources with a similar
    profile can reuse the decisions.
    """

    def __init__(self, migrations: Optional[Iterable[HistoricalMigration]] = None):
        self._lock = threading.Lock()
        self._migrations: List[HistoricalMigration] = list(migrations or [])

    def __len__(self) -> int:
        return len(self._migrations)

    def add(self, migration: HistoricalMigration) -> None:
        with self._lock:
            self._migrations.append(migration)

    def record(
        self,
        dna: SourceDNA,
        mappings: Iterable[ConfirmedMapping],
        migration_id: Optional[str] = None
    ) -> HistoricalMigration:
        """Learn from an executed migration, human overrides included."""
        normalized = {c.original_name: c.normalized_name for c in dna.columns}
        confirmed = {
            normalized.get(m.source_column, m.source_column): (m.target_table, m.target_column)
            for m in mappings
            if m.is_active
        }
        migration = HistoricalMigration(
            migration_id=migration_id or str(uuid.uuid4()),
            signature_vector=dna.signature_vector,
            mappings=confirmed,
            source_system=dna.source_system,
            structure_hash=dna.structure_hash,
        )
        self.add(migration)
        logger.info(f"Recorded migration {migration.migration_id} with {len(confirmed)} confirmed mappings")
        return migration

    def find_similar(
        self,
        dna: SourceDNA,
        threshold: float,
        limit: int
    ) -> List[Tuple[HistoricalMigration, float]]:
        """Past migrations whose signature cosine similarity is at least threshold."""
        with self._lock:
            migrations = list(self._migrations)

        scored = []
        for migration in migrations:
            if migration.structure_hash and migration.structure_hash == dna.structure_hash:
                similarity = 1.0
            else:
                similarity = cosine_similarity(dna.signature_vector, migration.signature_vector)
            if similarity >= threshold:
                scored.append((migration, round(similarity, 4)))

        scored.sort(key=lambda pair: pair[1], reverse=True)
        return scored[:limit]

    def save_to_json(self, file_path: str) -> None:
        with self._lock:
            data = [m.to_dict() for m in self._migrations]
        with open(file_path, 'w') as f:
            json.dump(data, f, indent=2)

    @classmethod
    def from_json_file(cls, file_path: str) -> "MigrationHistory":
        with open(file_path, 'r') as f:
            data = json.load(f)
        return cls(HistoricalMigration.from_dict(item) for item in data)


@dataclass
class _Candidate:
    table: TargetTable
    column: TargetColumn
    confidence: float
    reasons: List[str] = field(default_factory=list)
    signals: Dict[str, float] = field(default_factory=dict)
    transform: TransformType = TransformType.TRIM


class MappingSuggestionEngine:
    """
    Proposes ranked target mappings for profiled source columns.

    Supports:
    - Name similarity against target column names and synonyms
    - Pattern compatibility (incompatible pairs are never proposed)
    - Historical precedent from similar past migrations
    - Optional language-model assistance for columns left unmapped

    Confidence is a configurable weighted sum of the three signals,
    normalized into [0, 1].
    """

    def __init__(
        self,
        target_schema: TargetSchema,
        settings: Optional[MappingSettings] = None,
        history: Optional[MigrationHistory] = None,
        assistant=None
    ):
        """
        Initialize the engine.

        Args:
            target_schema: Versioned target schema declaration
            settings: Weights, floors and limits
            history: Corpus of past migrations
            assistant: Optional LLMMappingAssistant for unmapped columns
        """
        self.target_schema = target_schema
        self.settings = settings or MappingSettings()
        self.history = history
        self.assistant = assistant

    def suggest(self, dna: SourceDNA) -> MappingAnalysis:
        """
        Suggest mappings for every column of a profiled source.

        Returns:
            MappingAnalysis with suggestions sorted by confidence (descending)
        """
        similar: List[Tuple[HistoricalMigration, float]] = []
        if self.history is not None:
            similar = self.history.find_similar(
                dna,
                self.settings.history_similarity_threshold,
                self.settings.max_similar_migrations,
            )

        suggestions = [self.suggest_column(column, similar) for column in dna.columns]

        if self.assistant is not None:
            suggestions = [
                self._assist(dna, s) if s.is_unmapped else s
                for s in suggestions
            ]

        suggestions.sort(key=lambda s: s.confidence, reverse=True)

        estimated_accuracy = self._estimate_accuracy(dna, suggestions)
        analysis = MappingAnalysis(
            suggestions=suggestions,
            similar_past_migrations=[
                SimilarMigration(
                    migration_id=m.migration_id,
                    similarity=sim,
                    source_system=m.source_system,
                    mapped_columns=len(m.mappings),
                )
                for m, sim in similar
            ],
            estimated_accuracy=estimated_accuracy,
            auto_execution_eligible=self._auto_execution_eligible(estimated_accuracy, suggestions),
            schema_id=self.target_schema.schema_id,
        )

        mapped = sum(1 for s in suggestions if not s.is_unmapped)
        logger.info(
            f"Suggested mappings for {len(suggestions)} columns against {self.target_schema.schema_id}: "
            f"{mapped} mapped, estimated accuracy {estimated_accuracy:.2f}"
        )
        return analysis

    def suggest_column(
        self,
        column: ColumnDNA,
        similar: Optional[List[Tuple[HistoricalMigration, float]]] = None
    ) -> MappingSuggestion:
        """Rank every compatible target column for one source column."""
        candidates = self.rank_candidates(column, similar or [])

        if not candidates:
            return MappingSuggestion(
                source_column=column.original_name,
                target_table=UNMAPPED,
                target_column="",
                confidence=0.0,
                reasons=[f"No target column accepts pattern {column.primary_pattern.value}"],
            )

        best = candidates[0]
        alternatives = [
            AlternativeMapping(
                target_table=c.table.name,
                target_column=c.column.name,
                confidence=c.confidence,
                reasons=c.reasons,
                transform=c.transform,
            )
            for c in candidates[1:self.settings.max_alternatives + 1]
        ]

        if best.confidence < self.settings.min_confidence:
            below_floor = [
                AlternativeMapping(
                    target_table=c.table.name,
                    target_column=c.column.name,
                    confidence=c.confidence,
                    reasons=c.reasons,
                    transform=c.transform,
                )
                for c in candidates[:self.settings.max_alternatives]
            ]
            return MappingSuggestion(
                source_column=column.original_name,
                target_table=UNMAPPED,
                target_column="",
                confidence=best.confidence,
                reasons=[
                    f"Best candidate {best.table.name}.{best.column.name} scored "
                    f"{best.confidence:.2f}, below the {self.settings.min_confidence:.2f} floor"
                ],
                alternative_mappings=below_floor,
                signals=best.signals,
            )

        return MappingSuggestion(
            source_column=column.original_name,
            target_table=best.table.name,
            target_column=best.column.name,
            confidence=best.confidence,
            reasons=best.reasons,
            alternative_mappings=alternatives,
            transform=best.transform,
            signals=best.signals,
        )

    def rank_candidates(
        self,
        column: ColumnDNA,
        similar: List[Tuple[HistoricalMigration, float]]
    ) -> List[_Candidate]:
        """Score all compatible target columns; ties keep schema declaration order."""
        candidates = []
        for table, target in self.target_schema.iter_columns():
            candidate = self._score_candidate(column, table, target, similar)
            if candidate is not None:
                candidates.append(candidate)
        candidates.sort(key=lambda c: c.confidence, reverse=True)
        return candidates

    def compatible_targets(self, column: ColumnDNA) -> List[Tuple[str, str]]:
        """All (table, column) pairs whose declared type accepts the column's patterns."""
        return [
            (table.name, target.name)
            for table, target in self.target_schema.iter_columns()
            if self._pattern_signal(column, target)[0] > 0
        ]

    def _score_candidate(
        self,
        column: ColumnDNA,
        table: TargetTable,
        target: TargetColumn,
        similar: List[Tuple[HistoricalMigration, float]]
    ) -> Optional[_Candidate]:
        pattern_score, pattern_reason = self._pattern_signal(column, target)
        if pattern_score <= 0:
            return None

        name_score, name_reason = self._name_signal(column, table, target)
        history_score, history_reason = self._history_signal(column, table, target, similar)

        weights = self.settings.weights
        total = weights.total or 1.0
        confidence = (
            weights.name * name_score
            + weights.pattern * pattern_score
            + weights.history * history_score
        ) / total
        confidence = round(max(0.0, min(1.0, confidence)), 4)

        reasons = [r for r in (name_reason, pattern_reason, history_reason) if r]
        return _Candidate(
            table=table,
            column=target,
            confidence=confidence,
            reasons=reasons,
            signals={
                "name": round(name_score, 4),
                "pattern": round(pattern_score, 4),
                "history": round(history_score, 4),
            },
            transform=self.determine_transform(column, target),
        )

    def _pattern_signal(self, column: ColumnDNA, target: TargetColumn) -> Tuple[float, str]:
        accepted = target.accepted_patterns
        if column.primary_pattern in accepted:
            return 1.0, (
                f"Pattern {column.primary_pattern.value} is compatible with "
                f"{target.semantic_type.value} column {target.name}"
            )
        for pattern in column.candidate_patterns:
            if pattern in accepted:
                return self.settings.secondary_pattern_credit, (
                    f"Secondary pattern {pattern.value} is compatible with "
                    f"{target.semantic_type.value} column {target.name}"
                )
        return 0.0, ""

    def _name_signal(self, column: ColumnDNA, table: TargetTable, target: TargetColumn) -> Tuple[float, str]:
        best_score = 0.0
        best_term = target.name
        for term in [target.name] + list(target.synonyms):
            score = column_name_similarity(column.original_name, term)
            if score > best_score:
                best_score, best_term = score, term

        if best_score < self.settings.name_similarity_floor:
            return 0.0, ""
        if best_score >= 1.0:
            if best_term == target.name:
                return 1.0, f"Column name matches {table.name}.{target.name}"
            return 1.0, f"Column name matches synonym '{best_term}' of {table.name}.{target.name}"
        return best_score, f"Column name resembles '{best_term}' ({best_score:.2f})"

    def _history_signal(
        self,
        column: ColumnDNA,
        table: TargetTable,
        target: TargetColumn,
        similar: List[Tuple[HistoricalMigration, float]]
    ) -> Tuple[float, str]:
        matches = [
            sim for migration, sim in similar
            if migration.mappings.get(column.normalized_name) == (table.name, target.name)
        ]
        if not matches:
            return 0.0, ""
        best = max(matches)
        return best, (
            f"Confirmed as {table.name}.{target.name} in {len(matches)} similar past "
            f"migration(s) (best similarity {best:.2f})"
        )

    def determine_transform(self, column: ColumnDNA, target: TargetColumn) -> TransformType:
        """Pick the normalization a source column needs for its target."""
        semantic = target.semantic_type
        pattern = column.primary_pattern

        if semantic == SemanticType.PHONE:
            return TransformType.NORMALIZE_PHONE
        if semantic == SemanticType.DATE:
            return TransformType.CONVERT_DATE_TO_ISO
        if semantic == SemanticType.DATETIME and pattern == DataPattern.DATE:
            return TransformType.CONVERT_DATE_TO_ISO
        if pattern == DataPattern.NAME_FULL and semantic == SemanticType.NAME_FIRST:
            return TransformType.PARSE_NAME_FIRST
        if pattern == DataPattern.NAME_FULL and semantic == SemanticType.NAME_LAST:
            return TransformType.PARSE_NAME_LAST
        if semantic == SemanticType.STATE:
            return TransformType.CONVERT_STATE_TO_CODE
        if semantic == SemanticType.EMAIL:
            return TransformType.LOWERCASE
        if semantic == SemanticType.NUMBER:
            return TransformType.TO_NUMBER
        if semantic == SemanticType.BOOLEAN:
            return TransformType.TO_BOOLEAN
        if semantic == SemanticType.NPI:
            return TransformType.DIGITS_ONLY
        if semantic == SemanticType.CODE:
            return TransformType.UPPERCASE
        return TransformType.TRIM

    def _auto_execution_eligible(self, estimated_accuracy: float, suggestions: List[MappingSuggestion]) -> bool:
        """Unattended runs need an operator threshold and no UNMAPPED column."""
        threshold = self.settings.auto_execution_threshold
        if threshold is None or any(s.is_unmapped for s in suggestions):
            return False
        return estimated_accuracy >= threshold

    def _assist(self, dna: SourceDNA, suggestion: MappingSuggestion) -> MappingSuggestion:
        """Ask the language model about an unmapped column, within compatible targets only."""
        column = dna.column(suggestion.source_column)
        if column is None:
            return suggestion

        options = self.compatible_targets(column)
        if not options:
            return suggestion

        proposal = self.assistant.propose(column, options)
        if proposal is None or (proposal.target_table, proposal.target_column) not in options:
            return suggestion

        target = self.target_schema.get_column(proposal.target_table, proposal.target_column)
        confidence = round(min(self.settings.llm_confidence_cap, max(proposal.confidence, 0.0)), 4)
        if confidence < self.settings.min_confidence:
            return suggestion

        return MappingSuggestion(
            source_column=suggestion.source_column,
            target_table=proposal.target_table,
            target_column=proposal.target_column,
            confidence=max(confidence, suggestion.confidence),
            reasons=[f"Suggested by language model: {proposal.reasoning}"] + suggestion.reasons,
            alternative_mappings=[
                a for a in suggestion.alternative_mappings
                if (a.target_table, a.target_column) != (proposal.target_table, proposal.target_column)
            ],
            transform=self.determine_transform(column, target),
            signals=dict(suggestion.signals, llm=confidence),
        )

    def _estimate_accuracy(self, dna: SourceDNA, suggestions: List[MappingSuggestion]) -> float:
        """Mean confidence weighted by each column's non-null share; unmapped count as zero."""
        by_column = {c.original_name: c for c in dna.columns}
        weighted = 0.0
        total_weight = 0.0
        for suggestion in suggestions:
            column = by_column.get(suggestion.source_column)
            weight = column.fill_rate if column else 1.0
            total_weight += weight
            if not suggestion.is_unmapped:
                weighted += weight * suggestion.confidence

        if total_weight == 0:
            return 0.0
        return round(min(1.0, weighted / total_weight), 4)
