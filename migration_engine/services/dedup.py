"""Duplicate identity detection and resolution."""

import logging
import re
import threading
from dataclasses import dataclass
from datetime import datetime
from itertools import combinations
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

from dateutil import parser as date_parser

from ..config import DedupSettings, IdentityFields
from ..errors import AlreadyResolvedError, ConflictError, NotFoundError, ValidationError
from ..loaders.base import BaseLoader
from ..models.dedup import DedupCandidate, Resolution
from ..models.snapshot import TableRows
from ..storage import MigrationRepository
from .similarity import (
    levenshtein,
    levenshtein_similarity,
    normalize_person_name,
    soundex,
    trigram_similarity,
)

logger = logging.getLogger(__name__)

_GMAIL_DOMAINS = {"gmail.com", "googlemail.com"}


def name_similarity(left: str, right: str) -> float:
    """Equal normalized names score 1.0; otherwise Soundex bonus plus edit and trigram overlap."""
    a = normalize_person_name(left)
    b = normalize_person_name(right)
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0

    score = 0.0
    if soundex(a) == soundex(b):
        score += 0.3
    score += levenshtein_similarity(a, b) * 0.35
    score += trigram_similarity(a, b) * 0.35
    return min(1.0, score)


def normalize_dob(value: Any) -> Optional[str]:
    if value is None or str(value).strip() == "":
        return None
    text = str(value).strip()
    try:
        return date_parser.parse(text).date().isoformat()
    except (ValueError, OverflowError):
        return text


def normalize_phone_digits(value: Any) -> str:
    digits = re.sub(r"\D", "", str(value or ""))
    if len(digits) == 11 and digits.startswith("1"):
        digits = digits[1:]
    return digits


def phone_similarity(left: Any, right: Any) -> float:
    """1 - min(1, 5 * edits / length) over digits-only numbers."""
    a = normalize_phone_digits(left)
    b = normalize_phone_digits(right)
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    edits = levenshtein(a, b)
    return max(0.0, 1.0 - min(1.0, 5.0 * edits / max(len(a), len(b))))


def normalize_email(value: Any) -> Tuple[str, str]:
    """(local part, domain) with case folded, plus-tags dropped and gmail dots ignored."""
    text = str(value or "").strip().lower()
    local, _, domain = text.partition("@")
    local = local.split("+", 1)[0]
    if domain in _GMAIL_DOMAINS:
        local = local.replace(".", "")
        domain = "gmail.com"
    return local, domain


def email_similarity(left: Any, right: Any) -> float:
    a_local, a_domain = normalize_email(left)
    b_local, b_domain = normalize_email(right)
    if not a_local or not b_local:
        return 0.0
    if a_local == b_local and a_domain == b_domain:
        return 1.0
    if a_local == b_local:
        return 0.6
    return 0.0


@dataclass
class MatchResult:
    overall_similarity: float
    name_similarity: Optional[float] = None
    dob_match: Optional[bool] = None
    phone_similarity: Optional[float] = None
    email_similarity: Optional[float] = None


class DeduplicationEngine:
    """
    Flags and resolves probable duplicate identities in target tables.

    Supports:
    - Weighted identity matching on name, date of birth, phone and email
    - Candidates from uniqueness conflicts reported by the target store
    - Optional auto-merge above a configured threshold (off by default)
    - Exactly-once resolution with merge into the surviving record

    overall = sum(w_i * sim_i) / sum(w_i), over the identity fields present
    in both records.
    """

    def __init__(
        self,
        loader: BaseLoader,
        repository: MigrationRepository,
        settings: Optional[DedupSettings] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.loader = loader
        self.repository = repository
        self.settings = settings or DedupSettings()
        self._clock = clock or datetime.utcnow
        self._lock = threading.Lock()

    def identity_fields(self, table: str) -> Optional[IdentityFields]:
        return self.settings.identity_tables.get(table)

    def compare(self, a: Dict[str, Any], b: Dict[str, Any], fields: IdentityFields) -> Optional[MatchResult]:
        """
        Compare two records on their identity fields.

        Returns:
            MatchResult, or None when the records share no identity field
        """
        weights = 0.0
        weighted = 0.0
        result = MatchResult(overall_similarity=0.0)

        name_a = " ".join(str(a.get(f) or "") for f in fields.name_fields).strip()
        name_b = " ".join(str(b.get(f) or "") for f in fields.name_fields).strip()
        if name_a and name_b:
            result.name_similarity = round(name_similarity(name_a, name_b), 4)
            weights += self.settings.name_weight
            weighted += self.settings.name_weight * result.name_similarity

        if fields.dob_field:
            dob_a = normalize_dob(a.get(fields.dob_field))
            dob_b = normalize_dob(b.get(fields.dob_field))
            if dob_a and dob_b:
                result.dob_match = dob_a == dob_b
                weights += self.settings.dob_weight
                weighted += self.settings.dob_weight * (1.0 if result.dob_match else 0.0)

        if fields.phone_field and a.get(fields.phone_field) and b.get(fields.phone_field):
            result.phone_similarity = round(phone_similarity(a[fields.phone_field], b[fields.phone_field]), 4)
            weights += self.settings.phone_weight
            weighted += self.settings.phone_weight * result.phone_similarity

        if fields.email_field and a.get(fields.email_field) and b.get(fields.email_field):
            result.email_similarity = round(email_similarity(a[fields.email_field], b[fields.email_field]), 4)
            weights += self.settings.email_weight
            weighted += self.settings.email_weight * result.email_similarity

        if weights == 0:
            return None
        result.overall_similarity = round(weighted / weights, 4)
        return result

    def scan_table(
        self,
        batch_id: str,
        table: str,
        new_keys: Optional[Iterable[str]] = None,
        rows: Optional[TableRows] = None
    ) -> List[DedupCandidate]:
        """
        Flag duplicate pairs in one table.

        Args:
            batch_id: Batch the scan belongs to
            table: Target table with configured identity fields
            new_keys: Only pairs touching these row keys are compared
            rows: Table contents; read from the loader when omitted

        Returns:
            Newly created candidates
        """
        fields = self.identity_fields(table)
        if fields is None:
            return []

        rows = dict(rows if rows is not None else self.loader.read_table(table))
        focus: Optional[Set[str]] = set(new_keys) if new_keys is not None else None
        known = self._known_pairs(table)
        merged_away: Set[str] = set()

        created = []
        for key_a, key_b in combinations(sorted(rows), 2):
            if key_a in merged_away or key_b in merged_away:
                continue
            if focus is not None and key_a not in focus and key_b not in focus:
                continue
            if frozenset((key_a, key_b)) in known:
                continue
            match = self.compare(rows[key_a], rows[key_b], fields)
            if match is None or match.overall_similarity < self.settings.review_threshold:
                continue
            candidate = self._flag(batch_id, table, key_a, rows[key_a], key_b, rows[key_b], match, "weighted_identity")
            created.append(candidate)

            if candidate.resolution == Resolution.MERGE_A:
                # later pairs compare against the merged survivor, never the deleted row
                merged_away.add(key_b)
                rows[key_a] = self.loader.get_row(table, key_a) or rows[key_a]

        if created:
            logger.info(f"Flagged {len(created)} duplicate candidates in {table}")
        return created

    def record_conflict(
        self,
        batch_id: str,
        table: str,
        row_key: str,
        values: Dict[str, Any],
        existing_key: Optional[str]
    ) -> DedupCandidate:
        """Record a store-reported identity collision as a candidate awaiting review."""
        existing = self.loader.get_row(table, existing_key) if existing_key else None
        fields = self.identity_fields(table) or IdentityFields()
        match = self.compare(existing or {}, values, fields) if existing else None

        candidate = DedupCandidate(
            batch_id=batch_id,
            target_table=table,
            record_a_id=existing_key or "",
            record_a_data=existing or {},
            record_b_id=row_key,
            record_b_data=dict(values),
            overall_similarity=match.overall_similarity if match else 1.0,
            name_similarity=match.name_similarity if match else None,
            dob_match=match.dob_match if match else None,
            phone_similarity=match.phone_similarity if match else None,
            email_similarity=match.email_similarity if match else None,
            match_method="unique_conflict",
            created_at=self._clock(),
        )
        self.repository.save_candidate(candidate)
        logger.info(f"Conflict on {table} row {row_key} routed to duplicate review against {existing_key}")
        return candidate

    def resolve(self, candidate_id: str, resolution: Resolution, resolved_by: str) -> DedupCandidate:
        """
        Resolve a pending candidate exactly once.

        Args:
            candidate_id: Candidate to resolve
            resolution: merge_a, merge_b or keep_both
            resolved_by: Identity of the resolver

        Raises:
            NotFoundError: unknown candidate, or the surviving row is gone
            AlreadyResolvedError: the candidate already has a resolution
            ValidationError: resolution is pending or resolver missing
        """
        resolution = Resolution(resolution)
        if resolution == Resolution.PENDING:
            raise ValidationError("Resolution must be merge_a, merge_b or keep_both")
        if not resolved_by or not resolved_by.strip():
            raise ValidationError("resolve requires the resolver identity")

        with self._lock:
            candidate = self.repository.get_candidate(candidate_id)
            if candidate is None:
                raise NotFoundError(f"Duplicate candidate not found: {candidate_id}")
            if not candidate.is_pending:
                raise AlreadyResolvedError(
                    f"Candidate {candidate_id} already resolved as {candidate.resolution.value}",
                    details={"resolution": candidate.resolution.value},
                )

            # a unique conflict row was never written; only its candidate data exists
            unwritten_b = candidate.record_b_data if candidate.match_method == "unique_conflict" else None
            if resolution == Resolution.MERGE_A:
                self._merge(candidate.target_table, candidate.record_a_id, None,
                            candidate.record_b_id, candidate.record_b_data)
            elif resolution == Resolution.MERGE_B:
                self._merge(candidate.target_table, candidate.record_b_id, unwritten_b,
                            candidate.record_a_id, candidate.record_a_data)

            candidate.resolution = resolution
            candidate.resolved_by = resolved_by
            candidate.resolved_at = self._clock()
            self.repository.save_candidate(candidate)

        logger.info(f"Candidate {candidate_id} resolved as {resolution.value} by {resolved_by}")
        return candidate

    def pending_candidates(self, batch_id: Optional[str] = None) -> List[DedupCandidate]:
        return self.repository.list_candidates(batch_id=batch_id, pending_only=True)

    def _flag(
        self,
        batch_id: str,
        table: str,
        key_a: str,
        data_a: Dict[str, Any],
        key_b: str,
        data_b: Dict[str, Any],
        match: MatchResult,
        method: str
    ) -> DedupCandidate:
        candidate = DedupCandidate(
            batch_id=batch_id,
            target_table=table,
            record_a_id=key_a,
            record_a_data=dict(data_a),
            record_b_id=key_b,
            record_b_data=dict(data_b),
            overall_similarity=match.overall_similarity,
            name_similarity=match.name_similarity,
            dob_match=match.dob_match,
            phone_similarity=match.phone_similarity,
            email_similarity=match.email_similarity,
            match_method=method,
            created_at=self._clock(),
        )
        self.repository.save_candidate(candidate)

        if self.settings.auto_merge_enabled and match.overall_similarity >= self.settings.auto_merge_threshold:
            candidate.requires_human_review = False
            self.resolve(candidate.candidate_id, Resolution.MERGE_A, "system:auto-merge")

        return candidate

    def _merge(
        self,
        table: str,
        survivor_key: str,
        survivor_fallback: Optional[Dict[str, Any]],
        loser_key: str,
        loser_data: Dict[str, Any]
    ) -> None:
        """
        Coalesce the loser's non-null fields into the survivor, then delete the loser.

        The survivor is written before the loser is deleted, so a failed write
        leaves both rows in place. ``survivor_fallback`` is used only for a
        conflicting row that never reached the store.

        Raises:
            NotFoundError: the survivor row is gone from the store
        """
        survivor = self.loader.get_row(table, survivor_key)
        if survivor is None:
            if survivor_fallback is None:
                raise NotFoundError(f"Survivor row {survivor_key} no longer exists in {table}")
            survivor = dict(survivor_fallback)
        loser = self.loader.get_row(table, loser_key) or dict(loser_data)

        merged = dict(survivor)
        for column, value in loser.items():
            if merged.get(column) in (None, "") and value not in (None, ""):
                merged[column] = value

        try:
            self.loader.upsert_row(table, survivor_key, merged)
        except ConflictError as e:
            if e.existing_key != loser_key:
                raise
            # the loser holds a unique value the survivor takes over
            self.loader.delete_row(table, loser_key)
            try:
                self.loader.upsert_row(table, survivor_key, merged)
            except Exception:
                self.loader.upsert_row(table, loser_key, loser)
                raise
            return

        self.loader.delete_row(table, loser_key)

    def _known_pairs(self, table: str) -> Set[frozenset]:
        return {
            frozenset((c.record_a_id, c.record_b_id))
            for c in self.repository.list_candidates()
            if c.target_table == table
        }
