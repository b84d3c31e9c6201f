"""Target schema declaration and transform types."""

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional, Tuple
from enum import Enum
import json

from .dna import DataPattern
from ..errors import ValidationError


class SemanticType(str, Enum):
    """Semantic type of a target column."""
    NPI = "npi"
    SSN = "ssn"
    EMAIL = "email"
    PHONE = "phone"
    DATE = "date"
    DATETIME = "datetime"
    NAME_FIRST = "name_first"
    NAME_LAST = "name_last"
    STATE = "state"
    ZIP = "zip"
    IDENTIFIER = "identifier"
    UUID = "uuid"
    CODE = "code"
    TEXT = "text"
    LONG_TEXT = "long_text"
    NUMBER = "number"
    BOOLEAN = "boolean"
    FHIR_REFERENCE = "fhir_reference"
    FHIR_RESOURCE_TYPE = "fhir_resource_type"
    LOINC = "loinc"
    SNOMED_CT = "snomed_ct"
    ICD10 = "icd10"
    CPT = "cpt"
    NDC = "ndc"
    RXNORM = "rxnorm"


class TransformType(str, Enum):
    """Supported cell transformations."""
    DIRECT = "direct"
    TRIM = "trim"
    UPPERCASE = "uppercase"
    LOWERCASE = "lowercase"
    NORMALIZE_PHONE = "normalize_phone"
    CONVERT_DATE_TO_ISO = "convert_date_to_iso"
    PARSE_NAME_FIRST = "parse_name_first"
    PARSE_NAME_LAST = "parse_name_last"
    CONVERT_STATE_TO_CODE = "convert_state_to_code"
    TO_NUMBER = "to_number"
    TO_BOOLEAN = "to_boolean"
    DIGITS_ONLY = "digits_only"


_TEXTUAL = (
    DataPattern.TEXT_SHORT,
    DataPattern.TEXT_LONG,
    DataPattern.NAME_FULL,
    DataPattern.NAME_FIRST,
    DataPattern.NAME_LAST,
    DataPattern.CODE,
    DataPattern.STATE_NAME,
)
_PERSON_NAME = (
    DataPattern.NAME_FIRST,
    DataPattern.NAME_LAST,
    DataPattern.NAME_FULL,
    DataPattern.TEXT_SHORT,
)

# Which source patterns may feed which semantic type. Pairs outside this
# table are never suggested.
SEMANTIC_COMPATIBILITY: Dict[SemanticType, Tuple[DataPattern, ...]] = {
    SemanticType.NPI: (DataPattern.NPI,),
    SemanticType.SSN: (DataPattern.SSN,),
    SemanticType.EMAIL: (DataPattern.EMAIL,),
    SemanticType.PHONE: (DataPattern.PHONE,),
    SemanticType.DATE: (DataPattern.DATE, DataPattern.DATE_ISO),
    SemanticType.DATETIME: (DataPattern.DATE_ISO, DataPattern.DATE),
    SemanticType.NAME_FIRST: _PERSON_NAME,
    SemanticType.NAME_LAST: _PERSON_NAME,
    SemanticType.STATE: (DataPattern.STATE_CODE, DataPattern.STATE_NAME),
    SemanticType.ZIP: (DataPattern.ZIP,),
    SemanticType.IDENTIFIER: (
        DataPattern.ID_NUMERIC,
        DataPattern.ID_ALPHANUMERIC,
        DataPattern.ID_UUID,
        DataPattern.CODE,
    ),
    SemanticType.UUID: (DataPattern.ID_UUID, DataPattern.FHIR_REFERENCE),
    SemanticType.CODE: (
        DataPattern.CODE,
        DataPattern.STATE_CODE,
        DataPattern.NAME_FIRST,
        DataPattern.ID_ALPHANUMERIC,
        DataPattern.TEXT_SHORT,
    ),
    SemanticType.TEXT: _TEXTUAL,
    SemanticType.LONG_TEXT: (DataPattern.TEXT_LONG, DataPattern.TEXT_SHORT),
    SemanticType.NUMBER: (DataPattern.ID_NUMERIC, DataPattern.CURRENCY, DataPattern.PERCENTAGE),
    SemanticType.BOOLEAN: (DataPattern.BOOLEAN,),
    SemanticType.FHIR_REFERENCE: (DataPattern.FHIR_REFERENCE,),
    SemanticType.FHIR_RESOURCE_TYPE: (DataPattern.FHIR_RESOURCE_TYPE,),
    SemanticType.LOINC: (DataPattern.LOINC,),
    SemanticType.SNOMED_CT: (DataPattern.SNOMED_CT,),
    SemanticType.ICD10: (DataPattern.ICD10,),
    SemanticType.CPT: (DataPattern.CPT,),
    SemanticType.NDC: (DataPattern.NDC,),
    SemanticType.RXNORM: (DataPattern.RXNORM,),
}


@dataclass
class TargetColumn:
    """A column in the target schema."""
    name: str
    semantic_type: SemanticType
    required: bool = False
    synonyms: List[str] = field(default_factory=list)
    patterns: Optional[List[DataPattern]] = None  # overrides the semantic default
    description: str = ""

    @property
    def accepted_patterns(self) -> FrozenSet[DataPattern]:
        if self.patterns is not None:
            return frozenset(self.patterns)
        return frozenset(SEMANTIC_COMPATIBILITY.get(self.semantic_type, ()))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        result: Dict[str, Any] = {"type": self.semantic_type.value}
        if self.required:
            result["required"] = True
        if self.synonyms:
            result["synonyms"] = self.synonyms
        if self.patterns is not None:
            result["patterns"] = [p.value for p in self.patterns]
        if self.description:
            result["description"] = self.description
        return result

    @classmethod
    def from_dict(cls, name: str, data: Any) -> "TargetColumn":
        """Create from a dict or a bare semantic type string."""
        if isinstance(data, str):
            return cls(name=name, semantic_type=SemanticType(data))
        patterns = data.get("patterns")
        return cls(
            name=name,
            semantic_type=SemanticType(data.get("type", "text")),
            required=data.get("required", False),
            synonyms=list(data.get("synonyms", [])),
            patterns=[DataPattern(p) for p in patterns] if patterns is not None else None,
            description=data.get("description", ""),
        )


@dataclass
class TargetTable:
    """A table in the target schema."""
    name: str
    columns: Dict[str, TargetColumn] = field(default_factory=dict)
    description: str = ""
    depends_on: List[str] = field(default_factory=list)  # parent tables written first

    @property
    def required_columns(self) -> List[str]:
        return [c.name for c in self.columns.values() if c.required]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        result: Dict[str, Any] = {
            "description": self.description,
            "columns": {name: col.to_dict() for name, col in self.columns.items()},
        }
        if self.depends_on:
            result["depends_on"] = list(self.depends_on)
        return result

    @classmethod
    def from_dict(cls, name: str, data: Dict[str, Any]) -> "TargetTable":
        """Create from dictionary representation."""
        columns = {
            col_name: TargetColumn.from_dict(col_name, col_data)
            for col_name, col_data in data.get("columns", {}).items()
        }
        return cls(
            name=name,
            columns=columns,
            description=data.get("description", ""),
            depends_on=list(data.get("depends_on", [])),
        )


@dataclass
class TargetSchema:
    """
    Versioned declaration of the migration target.

    Injected into the mapping engine and executor so that several schema
    versions can coexist across tenants and migrations.
    """
    name: str
    version: str
    tables: Dict[str, TargetTable] = field(default_factory=dict)

    @property
    def schema_id(self) -> str:
        return f"{self.name}@{self.version}"

    def get_table(self, table_name: str) -> Optional[TargetTable]:
        return self.tables.get(table_name)

    def get_column(self, table_name: str, column_name: str) -> Optional[TargetColumn]:
        table = self.tables.get(table_name)
        if not table:
            return None
        return table.columns.get(column_name)

    def iter_columns(self):
        """Yield (table, column) pairs in declaration order."""
        for table in self.tables.values():
            for column in table.columns.values():
                yield table, column

    def write_order(self, table_names: List[str]) -> List[str]:
        """
        Order tables so that every table comes after the tables it depends on.

        Dependencies outside ``table_names`` are ignored. Among tables whose
        dependencies are satisfied the given order is kept.

        Raises:
            ValidationError: the dependencies form a cycle
        """
        pending = list(dict.fromkeys(table_names))
        ordered: List[str] = []
        while pending:
            for name in pending:
                table = self.tables.get(name)
                parents = table.depends_on if table else []
                if all(p in ordered or p not in pending for p in parents):
                    ordered.append(name)
                    pending.remove(name)
                    break
            else:
                raise ValidationError(
                    f"Table dependencies form a cycle: {', '.join(pending)}",
                    details={"tables": pending},
                )
        return ordered

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "name": self.name,
            "version": self.version,
            "tables": {name: table.to_dict() for name, table in self.tables.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TargetSchema":
        """Create from dictionary representation."""
        tables = {
            name: TargetTable.from_dict(name, table_data)
            for name, table_data in data.get("tables", {}).items()
        }
        return cls(
            name=data.get("name", "target"),
            version=str(data.get("version", "1")),
            tables=tables,
        )

    @classmethod
    def from_json_file(cls, file_path: str) -> "TargetSchema":
        """Load schema from JSON file."""
        with open(file_path, 'r') as f:
            data = json.load(f)
        return cls.from_dict(data)
