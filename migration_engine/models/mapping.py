"""Mapping suggestion and confirmation models."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .schema import TransformType

UNMAPPED = "UNMAPPED"


@dataclass
class AlternativeMapping:
    """A runner-up target for a source column."""
    target_table: str
    target_column: str
    confidence: float
    reasons: List[str] = field(default_factory=list)
    transform: TransformType = TransformType.TRIM

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "target_table": self.target_table,
            "target_column": self.target_column,
            "confidence": self.confidence,
            "reasons": self.reasons,
            "transform": self.transform.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AlternativeMapping":
        return cls(
            target_table=data["target_table"],
            target_column=data["target_column"],
            confidence=data.get("confidence", 0.0),
            reasons=list(data.get("reasons", [])),
            transform=TransformType(data.get("transform", "trim")),
        )


@dataclass
class MappingSuggestion:
    """A proposed source column → target column mapping."""
    source_column: str
    target_table: str
    target_column: str
    confidence: float  # 0-1
    reasons: List[str] = field(default_factory=list)
    alternative_mappings: List[AlternativeMapping] = field(default_factory=list)
    transform: TransformType = TransformType.TRIM
    signals: Dict[str, float] = field(default_factory=dict)

    @property
    def is_unmapped(self) -> bool:
        return self.target_table == UNMAPPED

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "source_column": self.source_column,
            "target_table": self.target_table,
            "target_column": self.target_column,
            "confidence": self.confidence,
            "reasons": self.reasons,
            "alternative_mappings": [a.to_dict() for a in self.alternative_mappings],
            "transform": self.transform.value,
            "signals": self.signals,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MappingSuggestion":
        """Create from dictionary representation."""
        return cls(
            source_column=data["source_column"],
            target_table=data.get("target_table", UNMAPPED),
            target_column=data.get("target_column", ""),
            confidence=data.get("confidence", 0.0),
            reasons=list(data.get("reasons", [])),
            alternative_mappings=[
                AlternativeMapping.from_dict(a) for a in data.get("alternative_mappings", [])
            ],
            transform=TransformType(data.get("transform", "trim")),
            signals=dict(data.get("signals", {})),
        )


@dataclass(frozen=True)
class ConfirmedMapping:
    """A mapping after human review."""
    source_column: str
    target_table: str
    target_column: str
    confidence: float
    transform: TransformType
    reasons: Tuple[str, ...] = ()
    user_modified: bool = False
    user_skipped: bool = False
    original_suggestion: Optional[MappingSuggestion] = None

    @property
    def is_active(self) -> bool:
        return not self.user_skipped and self.target_table != UNMAPPED

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "source_column": self.source_column,
            "target_table": self.target_table,
            "target_column": self.target_column,
            "confidence": self.confidence,
            "transform": self.transform.value,
            "reasons": list(self.reasons),
            "user_modified": self.user_modified,
            "user_skipped": self.user_skipped,
            "original_suggestion": (
                self.original_suggestion.to_dict() if self.original_suggestion else None
            ),
        }


@dataclass
class SimilarMigration:
    """A past migration whose source profile resembles the current one."""
    migration_id: str
    similarity: float
    source_system: Optional[str] = None
    mapped_columns: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "migration_id": self.migration_id,
            "similarity": self.similarity,
            "source_system": self.source_system,
            "mapped_columns": self.mapped_columns,
        }


@dataclass
class HistoricalMigration:
    """A confirmed past migration used as mapping precedent."""
    migration_id: str
    signature_vector: Tuple[float, ...]
    mappings: Dict[str, Tuple[str, str]] = field(default_factory=dict)  # normalized column -> (table, column)
    source_system: Optional[str] = None
    structure_hash: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "migration_id": self.migration_id,
            "signature_vector": list(self.signature_vector),
            "mappings": {k: list(v) for k, v in self.mappings.items()},
            "source_system": self.source_system,
            "structure_hash": self.structure_hash,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HistoricalMigration":
        """Create from dictionary representation."""
        return cls(
            migration_id=data["migration_id"],
            signature_vector=tuple(data.get("signature_vector", [])),
            mappings={k: (v[0], v[1]) for k, v in data.get("mappings", {}).items()},
            source_system=data.get("source_system"),
            structure_hash=data.get("structure_hash", ""),
        )


@dataclass
class MappingAnalysis:
    """Everything the review gate receives for one profiled source."""
    suggestions: List[MappingSuggestion]
    similar_past_migrations: List[SimilarMigration] = field(default_factory=list)
    estimated_accuracy: float = 0.0
    auto_execution_eligible: bool = False
    schema_id: str = ""

    @property
    def unmapped_columns(self) -> List[str]:
        return [s.source_column for s in self.suggestions if s.is_unmapped]

    def get(self, source_column: str) -> Optional[MappingSuggestion]:
        for suggestion in self.suggestions:
            if suggestion.source_column == source_column:
                return suggestion
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "schema_id": self.schema_id,
            "suggestions": [s.to_dict() for s in self.suggestions],
            "similar_past_migrations": [m.to_dict() for m in self.similar_past_migrations],
            "estimated_accuracy": self.estimated_accuracy,
            "auto_execution_eligible": self.auto_execution_eligible,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MappingAnalysis":
        return cls(
            suggestions=[MappingSuggestion.from_dict(s) for s in data.get("suggestions", [])],
            similar_past_migrations=[
                SimilarMigration(**m) for m in data.get("similar_past_migrations", [])
            ],
            estimated_accuracy=data.get("estimated_accuracy", 0.0),
            auto_execution_eligible=data.get("auto_execution_eligible", False),
            schema_id=data.get("schema_id", ""),
        )
