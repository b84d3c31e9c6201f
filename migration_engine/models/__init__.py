"""Data models for the migration engine."""

from .values import (
    ValueKind,
    TaggedValue,
    Row,
)
from .dna import (
    DataPattern,
    InferredType,
    ColumnDNA,
    SourceDNA,
)
from .schema import (
    SemanticType,
    TransformType,
    TargetColumn,
    TargetTable,
    TargetSchema,
)
from .mapping import (
    UNMAPPED,
    AlternativeMapping,
    MappingSuggestion,
    ConfirmedMapping,
    SimilarMigration,
    HistoricalMigration,
    MappingAnalysis,
)
from .migration import (
    BatchStatus,
    MigrationBatch,
)
from .record import (
    FieldViolation,
    RowFailure,
    TransformationStep,
    LineageRecord,
)
from .dedup import (
    Resolution,
    DedupCandidate,
)
from .quality import QualityScore
from .snapshot import (
    SnapshotType,
    MigrationSnapshot,
    RollbackEvent,
)
from .retry import (
    RetryStatus,
    RetryQueueItem,
)
from .conditional import (
    ConditionType,
    ActionType,
    RuleCondition,
    RuleAction,
    ConditionalRule,
)

__all__ = [
    "ValueKind",
    "TaggedValue",
    "Row",
    "DataPattern",
    "InferredType",
    "ColumnDNA",
    "SourceDNA",
    "SemanticType",
    "TransformType",
    "TargetColumn",
    "TargetTable",
    "TargetSchema",
    "UNMAPPED",
    "AlternativeMapping",
    "MappingSuggestion",
    "ConfirmedMapping",
    "SimilarMigration",
    "HistoricalMigration",
    "MappingAnalysis",
    "BatchStatus",
    "MigrationBatch",
    "FieldViolation",
    "RowFailure",
    "TransformationStep",
    "LineageRecord",
    "Resolution",
    "DedupCandidate",
    "QualityScore",
    "SnapshotType",
    "MigrationSnapshot",
    "RollbackEvent",
    "RetryStatus",
    "RetryQueueItem",
    "ConditionType",
    "ActionType",
    "RuleCondition",
    "RuleAction",
    "ConditionalRule",
]
