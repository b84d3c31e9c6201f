"""Service layer for the migration engine."""

from .profiler import SourceProfiler, PatternMatcher
from .mapping_engine import MappingSuggestionEngine, MigrationHistory
from .llm_assist import LLMMappingAssistant
from .review import ReviewSession, ReviewState, ConfirmedMappingSet
from .transformer import TransformEngine
from .validator import RecordValidator
from .lineage import LineageTracker
from .dedup import DeduplicationEngine
from .quality import QualityScorer
from .snapshots import SnapshotManager, TableLockManager
from .retry_queue import RetryQueue
from .conditional import ConditionalMappingEvaluator

__all__ = [
    "SourceProfiler",
    "PatternMatcher",
    "MappingSuggestionEngine",
    "MigrationHistory",
    "LLMMappingAssistant",
    "ReviewSession",
    "ReviewState",
    "ConfirmedMappingSet",
    "TransformEngine",
    "RecordValidator",
    "LineageTracker",
    "DeduplicationEngine",
    "QualityScorer",
    "SnapshotManager",
    "TableLockManager",
    "RetryQueue",
    "ConditionalMappingEvaluator",
]
