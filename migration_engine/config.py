"""Engine configuration."""

import json
import os
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from .models.conditional import ConditionalRule


@dataclass
class ProfilerSettings:
    sample_size: int = 50
    pattern_floor: float = 0.8
    sample_value_count: int = 5


@dataclass
class MappingWeights:
    """
    Relative weight of each mapping signal.

    confidence = (name * w_name + pattern * w_pattern + history * w_history)
                 / (w_name + w_pattern + w_history)
    """
    name: float = 0.5
    pattern: float = 0.35
    history: float = 0.15

    @property
    def total(self) -> float:
        return self.name + self.pattern + self.history


@dataclass
class MappingSettings:
    weights: MappingWeights = field(default_factory=MappingWeights)
    min_confidence: float = 0.4
    max_alternatives: int = 3
    name_similarity_floor: float = 0.5
    secondary_pattern_credit: float = 0.6
    history_similarity_threshold: float = 0.7
    max_similar_migrations: int = 5
    auto_execution_threshold: Optional[float] = None  # unset: every run needs a human decision per column
    llm_confidence_cap: float = 0.6


@dataclass
class IdentityFields:
    """Which target columns identify a person in one table."""
    name_fields: List[str] = field(default_factory=lambda: ["first_name", "last_name"])
    dob_field: Optional[str] = "date_of_birth"
    phone_field: Optional[str] = "phone"
    email_field: Optional[str] = "email"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IdentityFields":
        defaults = cls()
        return cls(
            name_fields=list(data.get("name_fields", defaults.name_fields)),
            dob_field=data.get("dob_field", defaults.dob_field),
            phone_field=data.get("phone_field", defaults.phone_field),
            email_field=data.get("email_field", defaults.email_field),
        )


@dataclass
class DedupSettings:
    """
    Duplicate detection policy.

    Auto-merge is off unless an operator turns it on; every candidate then
    waits for a human.
    """
    identity_tables: Dict[str, IdentityFields] = field(default_factory=dict)
    name_weight: float = 0.4
    dob_weight: float = 0.25
    phone_weight: float = 0.2
    email_weight: float = 0.15
    review_threshold: float = 0.8
    auto_merge_enabled: bool = False
    auto_merge_threshold: float = 0.95

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DedupSettings":
        tables = {
            name: IdentityFields.from_dict(fields or {})
            for name, fields in data.get("identity_tables", {}).items()
        }
        scalars = {k: v for k, v in data.items() if k != "identity_tables"}
        return cls(identity_tables=tables, **scalars)


@dataclass
class QualitySettings:
    completeness_weight: float = 1.0
    accuracy_weight: float = 1.0
    consistency_weight: float = 1.0
    uniqueness_weight: float = 1.0
    ready_threshold: float = 85.0


@dataclass
class RetryPolicy:
    """Backoff is base * 2^(attempt-1) seconds, capped at max_delay_seconds."""
    max_attempts: int = 5
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 300.0
    jitter_ratio: float = 0.0


@dataclass
class SnapshotSettings:
    retention_days: Optional[int] = 30
    storage_dir: Optional[str] = None


@dataclass
class ExecutionOptions:
    """Per-run switches for the executor."""
    enable_lineage_tracking: bool = True
    create_pre_migration_snapshot: bool = True
    enable_deduplication: bool = True
    enable_quality_scoring: bool = True
    enable_retry_logic: bool = True
    enable_conditional_mappings: bool = True
    dry_run: bool = False
    stop_on_error: bool = False
    worker_count: int = 4
    chunk_size: int = 500
    source_file: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExecutionOptions":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass
class LLMSettings:
    enabled: bool = False
    provider: str = "openai"
    model: str = "gpt-4o"
    api_key: Optional[str] = None


@dataclass
class EngineConfig:
    """Top-level configuration for the migration engine."""
    profiler: ProfilerSettings = field(default_factory=ProfilerSettings)
    mapping: MappingSettings = field(default_factory=MappingSettings)
    dedup: DedupSettings = field(default_factory=DedupSettings)
    quality: QualitySettings = field(default_factory=QualitySettings)
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    snapshots: SnapshotSettings = field(default_factory=SnapshotSettings)
    execution: ExecutionOptions = field(default_factory=ExecutionOptions)
    llm: LLMSettings = field(default_factory=LLMSettings)
    conditional_mappings: List[ConditionalRule] = field(default_factory=list)
    output_dir: Optional[str] = None
    lineage_flush_size: int = 100

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation, without secrets."""
        data = asdict(self)
        data["llm"].pop("api_key", None)
        data["conditional_mappings"] = [r.to_dict() for r in self.conditional_mappings]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineConfig":
        """Create from dictionary representation."""
        mapping_data = dict(data.get("mapping", {}))
        weights = MappingWeights(**mapping_data.pop("weights", {}))
        llm = LLMSettings(**data.get("llm", {}))
        if llm.api_key is None:
            env_var = "ANTHROPIC_API_KEY" if llm.provider == "anthropic" else "OPENAI_API_KEY"
            llm.api_key = os.environ.get(env_var)

        return cls(
            profiler=ProfilerSettings(**data.get("profiler", {})),
            mapping=MappingSettings(weights=weights, **mapping_data),
            dedup=DedupSettings.from_dict(data.get("dedup", {})),
            quality=QualitySettings(**data.get("quality", {})),
            retry=RetryPolicy(**data.get("retry", {})),
            snapshots=SnapshotSettings(**data.get("snapshots", {})),
            execution=ExecutionOptions.from_dict(data.get("execution", {})),
            llm=llm,
            conditional_mappings=[
                ConditionalRule.from_dict(r) for r in data.get("conditional_mappings", [])
            ],
            output_dir=data.get("output_dir"),
            lineage_flush_size=data.get("lineage_flush_size", 100),
        )

    @classmethod
    def from_json_file(cls, file_path: str) -> "EngineConfig":
        """Load configuration from a JSON file."""
        with open(file_path, 'r') as f:
            data = json.load(f)
        return cls.from_dict(data)
