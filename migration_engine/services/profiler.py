"""Source profiler: infers a pattern/statistics profile ("DNA") from raw rows."""

import hashlib
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from ..config import ProfilerSettings
from ..models.dna import ColumnDNA, DataPattern, InferredType, SourceDNA
from ..models.values import Row, TaggedValue
from .similarity import normalize_column_name

logger = logging.getLogger(__name__)

MATCHER_VERSION = "2024.2"

US_STATES: Dict[str, str] = {
    "alabama": "AL", "alaska": "AK", "arizona": "AZ", "arkansas": "AR",
    "california": "CA", "colorado": "CO", "connecticut": "CT", "delaware": "DE",
    "district of columbia": "DC", "florida": "FL", "georgia": "GA", "hawaii": "HI",
    "idaho": "ID", "illinois": "IL", "indiana": "IN", "iowa": "IA", "kansas": "KS",
    "kentucky": "KY", "louisiana": "LA", "maine": "ME", "maryland": "MD",
    "massachusetts": "MA", "michigan": "MI", "minnesota": "MN", "mississippi": "MS",
    "missouri": "MO", "montana": "MT", "nebraska": "NE", "nevada": "NV",
    "new hampshire": "NH", "new jersey": "NJ", "new mexico": "NM", "new york": "NY",
    "north carolina": "NC", "north dakota": "ND", "ohio": "OH", "oklahoma": "OK",
    "oregon": "OR", "pennsylvania": "PA", "rhode island": "RI",
    "south carolina": "SC", "south dakota": "SD", "tennessee": "TN", "texas": "TX",
    "utah": "UT", "vermont": "VT", "virginia": "VA", "washington": "WA",
    "west virginia": "WV", "wisconsin": "WI", "wyoming": "WY", "puerto rico": "PR",
}
STATE_CODES = frozenset(US_STATES.values())

FHIR_RESOURCE_TYPES = (
    "Patient|Observation|Condition|MedicationRequest|Procedure|AllergyIntolerance|"
    "Immunization|DiagnosticReport|Encounter|CarePlan|Practitioner|Organization|"
    "Location|Device|Specimen|ServiceRequest|ClinicalImpression|Goal|RiskAssessment|"
    "FamilyMemberHistory"
)

SOURCE_SYSTEM_MARKERS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("EPIC", ("epic", "myc", "ser_")),
    ("CERNER", ("cerner", "millennium", "prsnl_")),
    ("MEDITECH", ("meditech", "mt_", "mtweb")),
    ("ATHENAHEALTH", ("athena", "ath_")),
    ("ALLSCRIPTS", ("allscripts", "touchworks")),
)


def _regex(*patterns: str, flags: int = 0) -> Callable[[str], bool]:
    compiled = [re.compile(p, flags) for p in patterns]
    return lambda value: any(rx.search(value) for rx in compiled)


def is_valid_npi(value: str) -> bool:
    """
    Validate a National Provider Identifier.

    The check digit is the Luhn check over the card-issuer prefix 80840
    followed by the first nine digits.
    """
    if not re.fullmatch(r"\d{10}", value or ""):
        return False
    digits = [int(c) for c in "80840" + value]
    total = 0
    for position, digit in enumerate(reversed(digits)):
        if position % 2 == 1:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
    return total % 10 == 0


@dataclass(frozen=True)
class PatternMatcher:
    pattern: DataPattern
    accepts: Callable[[str], bool]


# Priority order matters: the first matcher over the floor wins.
MATCHERS: Tuple[PatternMatcher, ...] = (
    PatternMatcher(DataPattern.NPI, is_valid_npi),
    PatternMatcher(DataPattern.FHIR_REFERENCE, _regex(
        r"^(Patient|Practitioner|Organization|Location|Encounter|Observation|Condition|Procedure)/[a-zA-Z0-9-]+$",
        r"^urn:uuid:[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$",
    )),
    PatternMatcher(DataPattern.FHIR_RESOURCE_TYPE, _regex(rf"^({FHIR_RESOURCE_TYPES})$")),
    PatternMatcher(DataPattern.EMAIL, _regex(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")),
    PatternMatcher(DataPattern.ID_UUID, _regex(
        r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", flags=re.I,
    )),
    PatternMatcher(DataPattern.SSN, _regex(r"^\d{3}-\d{2}-\d{4}$", r"^XXX-XX-\d{4}$")),
    PatternMatcher(DataPattern.DATE_ISO, _regex(r"^\d{4}-\d{2}-\d{2}(T\d{2}:\d{2}(:\d{2})?)?")),
    PatternMatcher(DataPattern.DATE, _regex(
        r"^\d{1,2}/\d{1,2}/\d{2,4}$",
        r"^\d{1,2}-\d{1,2}-\d{2,4}$",
        r"^(Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)[a-z]*\.?\s+\d{1,2},?\s+\d{4}$",
        flags=re.I,
    )),
    PatternMatcher(DataPattern.PHONE, _regex(
        r"^\(?(\d{3})\)?[-.\s]?(\d{3})[-.\s]?(\d{4})$",
        r"^\+?1[-.\s]?\(?(\d{3})\)?[-.\s]?(\d{3})[-.\s]?(\d{4})$",
    )),
    PatternMatcher(DataPattern.NDC, _regex(
        r"^\d{4}-\d{4}-\d{2}$", r"^\d{5}-\d{3}-\d{2}$", r"^\d{5}-\d{4}-\d$", r"^\d{11}$",
    )),
    PatternMatcher(DataPattern.LOINC, _regex(r"^\d{1,5}-\d$", r"^LP\d{5,7}-\d$")),
    PatternMatcher(DataPattern.ICD10, _regex(r"^[A-TV-Z]\d{2}(\.\d{1,4})?$", r"^[A-Z]\d{2}\.\d{1,2}$")),
    PatternMatcher(DataPattern.ZIP, _regex(r"^\d{5}(-\d{4})?$")),
    PatternMatcher(DataPattern.CPT, _regex(r"^\d{5}$")),
    PatternMatcher(DataPattern.RXNORM, _regex(r"^\d{5,7}$")),
    PatternMatcher(DataPattern.SNOMED_CT, _regex(r"^\d{6,18}$")),
    PatternMatcher(DataPattern.STATE_CODE, lambda v: v in STATE_CODES),
    PatternMatcher(DataPattern.STATE_NAME, lambda v: v.lower() in US_STATES),
    PatternMatcher(DataPattern.BOOLEAN, _regex(r"^(yes|no|true|false|1|0|y|n|t|f)$", flags=re.I)),
    PatternMatcher(DataPattern.CURRENCY, _regex(r"^-?\$\d{1,3}(,?\d{3})*(\.\d{2})?$", r"^-?\d+(,\d{3})*\.\d{2}$")),
    PatternMatcher(DataPattern.PERCENTAGE, _regex(r"^-?\d{1,3}(\.\d+)?\s?%$")),
    PatternMatcher(DataPattern.NAME_FULL, _regex(
        r"^[A-Z][a-zA-Z'-]+,\s*[A-Z][a-zA-Z'-]+", r"^[A-Z][a-z]+\s+[A-Z][a-zA-Z'-]+$",
    )),
    PatternMatcher(DataPattern.ID_NUMERIC, _regex(r"^\d+$")),
    PatternMatcher(DataPattern.ID_ALPHANUMERIC, _regex(r"^(?=.*\d)[A-Z0-9-]{4,20}$", flags=re.I)),
    PatternMatcher(DataPattern.CODE, _regex(r"^[A-Z_]{2,20}$")),
    PatternMatcher(DataPattern.NAME_FIRST, _regex(r"^[A-Z][a-z]{1,20}$")),
    PatternMatcher(DataPattern.NAME_LAST, _regex(r"^[A-Z][a-zA-Z'-]{1,30}$")),
    PatternMatcher(DataPattern.TEXT_SHORT, lambda v: 0 < len(v) <= 50),
    PatternMatcher(DataPattern.TEXT_LONG, lambda v: len(v) > 50),
)

PATTERN_ORDER: Tuple[DataPattern, ...] = tuple(DataPattern)

_INFERRED_TYPES = {
    DataPattern.ID_NUMERIC: InferredType.NUMBER,
    DataPattern.CURRENCY: InferredType.NUMBER,
    DataPattern.PERCENTAGE: InferredType.NUMBER,
    DataPattern.BOOLEAN: InferredType.BOOLEAN,
    DataPattern.DATE: InferredType.DATE,
    DataPattern.DATE_ISO: InferredType.DATE,
}


def detect_source_system(column_names: Iterable[str]) -> Optional[str]:
    """Guess the originating record system from vendor-specific column names."""
    lowered = [name.lower() for name in column_names]
    for system, markers in SOURCE_SYSTEM_MARKERS:
        if any(marker in name for name in lowered for marker in markers):
            return system
    return None


class SourceProfiler:
    """
    Builds a SourceDNA from raw rows.

    Supports:
    - Pattern detection over a fixed, versioned matcher table
    - Null / uniqueness / length statistics
    - Structure hash and pattern signature vector for similarity search
    - Source-system detection from column naming conventions

    Profiling is a pure function of the rows and the matcher version.
    """

    def __init__(self, settings: Optional[ProfilerSettings] = None):
        self.settings = settings or ProfilerSettings()
        self.matcher_version = MATCHER_VERSION

    def generate_dna(
        self,
        rows: Sequence[Any],
        source_system: Optional[str] = None,
        source_type: str = "csv"
    ) -> SourceDNA:
        """
        Profile a dataset.

        Args:
            rows: Ordered rows, either Row objects or string-keyed dicts
            source_system: Declared source system name, if known
            source_type: Kind of upload (csv, json, ...)

        Returns:
            An immutable SourceDNA
        """
        tagged = [r if isinstance(r, Row) else Row.from_raw(r, number=i) for i, r in enumerate(rows, 1)]
        column_names = self._collect_column_names(tagged)

        columns = tuple(
            self.analyze_column(name, [row.get_value(name) for row in tagged])
            for name in column_names
        )

        detected = source_system or detect_source_system(column_names)
        dna = SourceDNA(
            source_system=detected,
            source_type=source_type,
            column_count=len(columns),
            row_count=len(tagged),
            columns=columns,
            structure_hash=self._structure_hash(columns),
            signature_vector=self._signature_vector(columns),
            matcher_version=self.matcher_version,
        )

        logger.info(
            f"Profiled {dna.row_count} rows x {dna.column_count} columns"
            f" (source system: {dna.source_system or 'unknown'})"
        )
        return dna

    def analyze_column(self, name: str, values: List[TaggedValue]) -> ColumnDNA:
        """Compute the DNA of a single column."""
        total = len(values)
        texts = [v.as_text() for v in values if not v.is_null]
        samples = texts[:self.settings.sample_size]

        primary, confidence, candidates = self.detect_pattern(samples)

        null_count = total - len(texts)
        avg_length = sum(len(t) for t in texts) / len(texts) if texts else 0.0

        return ColumnDNA(
            original_name=name,
            normalized_name=normalize_column_name(name),
            primary_pattern=primary,
            pattern_confidence=round(confidence, 4),
            candidate_patterns=candidates,
            sample_values=tuple(samples[:self.settings.sample_value_count]),
            null_percentage=null_count / total if total else 0.0,
            unique_percentage=len(set(texts)) / total if total else 0.0,
            avg_length=round(avg_length, 4),
            data_type_inferred=_INFERRED_TYPES.get(primary, InferredType.STRING),
        )

    def detect_pattern(
        self,
        samples: List[str]
    ) -> Tuple[DataPattern, float, Tuple[DataPattern, ...]]:
        """
        Run matchers in priority order over sampled values.

        Returns:
            (primary pattern, its confidence, every pattern over the floor)
        """
        if not samples:
            return DataPattern.UNKNOWN, 0.0, ()

        floor = self.settings.pattern_floor
        primary: Optional[DataPattern] = None
        primary_confidence = 0.0
        candidates: List[DataPattern] = []

        for matcher in MATCHERS:
            matched = sum(1 for value in samples if matcher.accepts(value))
            confidence = matched / len(samples)
            if confidence >= floor:
                candidates.append(matcher.pattern)
                if primary is None:
                    primary = matcher.pattern
                    primary_confidence = confidence

        if primary is None:
            avg_length = sum(len(s) for s in samples) / len(samples)
            primary = DataPattern.TEXT_LONG if avg_length > 50 else DataPattern.TEXT_SHORT
            primary_confidence = 0.5

        return primary, primary_confidence, tuple(candidates)

    def _collect_column_names(self, rows: List[Row]) -> List[str]:
        names: List[str] = []
        seen = set()
        for row in rows:
            for name in row:
                if name not in seen:
                    seen.add(name)
                    names.append(name)
        return names

    def _structure_hash(self, columns: Tuple[ColumnDNA, ...]) -> str:
        parts = sorted(f"{c.normalized_name}:{c.primary_pattern.value}" for c in columns)
        return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()

    def _signature_vector(self, columns: Tuple[ColumnDNA, ...]) -> Tuple[float, ...]:
        weights = {p: 0.0 for p in PATTERN_ORDER}
        for col in columns:
            weights[col.primary_pattern] += col.pattern_confidence or 0.5
        vector = [weights[p] for p in PATTERN_ORDER]
        norm = math.sqrt(sum(v * v for v in vector))
        if norm == 0:
            return tuple(vector)
        return tuple(round(v / norm, 6) for v in vector)
