"""Source profile ("DNA") models."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class DataPattern(str, Enum):
    """Value patterns recognised by the profiler."""
    NPI = "npi"
    SSN = "ssn"
    EMAIL = "email"
    PHONE = "phone"
    DATE_ISO = "date_iso"
    DATE = "date"
    NAME_FULL = "name_full"
    NAME_FIRST = "name_first"
    NAME_LAST = "name_last"
    STATE_CODE = "state_code"
    STATE_NAME = "state_name"
    ZIP = "zip"
    CURRENCY = "currency"
    PERCENTAGE = "percentage"
    BOOLEAN = "boolean"
    ID_NUMERIC = "id_numeric"
    ID_UUID = "id_uuid"
    ID_ALPHANUMERIC = "id_alphanumeric"
    CODE = "code"
    TEXT_SHORT = "text_short"
    TEXT_LONG = "text_long"
    SNOMED_CT = "snomed_ct"
    LOINC = "loinc"
    RXNORM = "rxnorm"
    ICD10 = "icd10"
    CPT = "cpt"
    NDC = "ndc"
    FHIR_RESOURCE_TYPE = "fhir_resource_type"
    FHIR_REFERENCE = "fhir_reference"
    UNKNOWN = "unknown"


class InferredType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    DATE = "date"
    BOOLEAN = "boolean"


@dataclass(frozen=True)
class ColumnDNA:
    """Statistical and pattern profile of one source column."""
    original_name: str
    normalized_name: str
    primary_pattern: DataPattern
    pattern_confidence: float
    candidate_patterns: Tuple[DataPattern, ...]
    sample_values: Tuple[str, ...]
    null_percentage: float
    unique_percentage: float
    avg_length: float
    data_type_inferred: InferredType

    @property
    def fill_rate(self) -> float:
        return 1.0 - self.null_percentage

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "original_name": self.original_name,
            "normalized_name": self.normalized_name,
            "primary_pattern": self.primary_pattern.value,
            "pattern_confidence": self.pattern_confidence,
            "candidate_patterns": [p.value for p in self.candidate_patterns],
            "sample_values": list(self.sample_values),
            "null_percentage": self.null_percentage,
            "unique_percentage": self.unique_percentage,
            "avg_length": self.avg_length,
            "data_type_inferred": self.data_type_inferred.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ColumnDNA":
        """Create from dictionary representation."""
        return cls(
            original_name=data["original_name"],
            normalized_name=data.get("normalized_name", data["original_name"]),
            primary_pattern=DataPattern(data["primary_pattern"]),
            pattern_confidence=data.get("pattern_confidence", 0.0),
            candidate_patterns=tuple(DataPattern(p) for p in data.get("candidate_patterns", [])),
            sample_values=tuple(data.get("sample_values", [])),
            null_percentage=data.get("null_percentage", 0.0),
            unique_percentage=data.get("unique_percentage", 0.0),
            avg_length=data.get("avg_length", 0.0),
            data_type_inferred=InferredType(data.get("data_type_inferred", "string")),
        )


@dataclass(frozen=True)
class SourceDNA:
    """
    Profile of an uploaded dataset.

    Carries no timestamps or random identifiers so that profiling the same
    rows with the same matcher version yields an equal object.
    """
    source_type: str
    column_count: int
    row_count: int
    columns: Tuple[ColumnDNA, ...]
    structure_hash: str
    signature_vector: Tuple[float, ...]
    matcher_version: str
    source_system: Optional[str] = None

    def column(self, name: str) -> Optional[ColumnDNA]:
        for col in self.columns:
            if col.original_name == name:
                return col
        return None

    @property
    def column_names(self) -> List[str]:
        return [c.original_name for c in self.columns]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "source_system": self.source_system,
            "source_type": self.source_type,
            "column_count": self.column_count,
            "row_count": self.row_count,
            "columns": [c.to_dict() for c in self.columns],
            "structure_hash": self.structure_hash,
            "signature_vector": list(self.signature_vector),
            "matcher_version": self.matcher_version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SourceDNA":
        """Create from dictionary representation."""
        columns = tuple(ColumnDNA.from_dict(c) for c in data.get("columns", []))
        return cls(
            source_system=data.get("source_system"),
            source_type=data.get("source_type", "csv"),
            column_count=data.get("column_count", len(columns)),
            row_count=data.get("row_count", 0),
            columns=columns,
            structure_hash=data.get("structure_hash", ""),
            signature_vector=tuple(data.get("signature_vector", [])),
            matcher_version=data.get("matcher_version", ""),
        )


@dataclass
class ProfileSummary:
    """Lightweight description of a profiling run, used for logs and the CLI."""
    row_count: int
    column_count: int
    patterns: Dict[str, str] = field(default_factory=dict)
    source_system: Optional[str] = None

    @classmethod
    def from_dna(cls, dna: SourceDNA) -> "ProfileSummary":
        return cls(
            row_count=dna.row_count,
            column_count=dna.column_count,
            patterns={c.original_name: c.primary_pattern.value for c in dna.columns},
            source_system=dna.source_system,
        )
