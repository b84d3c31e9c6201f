"""Thread-safe repository for batches, failures, lineage, candidates, snapshots and retries."""

import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import MigrationEngineError, ErrorKind
from .models.dedup import DedupCandidate
from .models.migration import MigrationBatch
from .models.quality import QualityScore
from .models.record import LineageRecord, RowFailure
from .models.retry import RetryQueueItem, RetryStatus
from .models.snapshot import MigrationSnapshot, RollbackEvent

logger = logging.getLogger(__name__)


class MigrationRepository:
    """
    In-memory store of everything the engine persists.

    Supports:
    - Batches, row failures and quality scores
    - Append-only lineage with filtered queries
    - Duplicate candidates, snapshots and rollback events
    - Retry items, upserted by row key
    - Optional JSON batch reports written to an output directory
    """

    def __init__(self, output_dir: Optional[str] = None):
        self._lock = threading.RLock()
        self.output_dir = Path(output_dir) if output_dir else None
        if self.output_dir:
            self.output_dir.mkdir(parents=True, exist_ok=True)

        self._batches: Dict[str, MigrationBatch] = {}
        self._failures: Dict[str, List[RowFailure]] = {}
        self._lineage: List[LineageRecord] = []
        self._candidates: Dict[str, DedupCandidate] = {}
        self._quality: Dict[str, QualityScore] = {}
        self._snapshots: Dict[str, MigrationSnapshot] = {}
        self._rollbacks: List[RollbackEvent] = []
        self._retries: Dict[str, RetryQueueItem] = {}
        self._retry_keys: Dict[str, str] = {}  # operation key -> retry id

    # =========================================================================
    # Batches
    # =========================================================================

    def save_batch(self, batch: MigrationBatch) -> None:
        with self._lock:
            self._batches[batch.batch_id] = batch

    def get_batch(self, batch_id: str) -> Optional[MigrationBatch]:
        with self._lock:
            return self._batches.get(batch_id)

    def list_batches(self) -> List[MigrationBatch]:
        with self._lock:
            return sorted(self._batches.values(), key=lambda b: b.started_at, reverse=True)

    def add_failure(self, failure: RowFailure) -> None:
        with self._lock:
            self._failures.setdefault(failure.batch_id, []).append(failure)

    def list_failures(self, batch_id: str) -> List[RowFailure]:
        with self._lock:
            return sorted(self._failures.get(batch_id, []), key=lambda f: f.source_row)

    def save_quality_score(self, score: QualityScore) -> None:
        """Store the one quality score of a settled batch."""
        with self._lock:
            if score.batch_id in self._quality:
                raise MigrationEngineError(
                    f"Batch {score.batch_id} already has a quality score",
                    kind=ErrorKind.INVALID_STATE,
                )
            self._quality[score.batch_id] = score

    def get_quality_score(self, batch_id: str) -> Optional[QualityScore]:
        with self._lock:
            return self._quality.get(batch_id)

    # =========================================================================
    # Lineage
    # =========================================================================

    def add_lineage(self, records: List[LineageRecord]) -> None:
        with self._lock:
            self._lineage.extend(records)

    def query_lineage(
        self,
        batch_id: Optional[str] = None,
        source_row: Optional[int] = None,
        target_table: Optional[str] = None,
        source_column: Optional[str] = None,
        target_row_key: Optional[str] = None
    ) -> List[LineageRecord]:
        """Return lineage records matching every given filter."""
        with self._lock:
            records = list(self._lineage)

        return [
            r for r in records
            if (batch_id is None or r.batch_id == batch_id)
            and (source_row is None or r.source_row == source_row)
            and (target_table is None or r.target_table == target_table)
            and (source_column is None or r.source_column == source_column)
            and (target_row_key is None or r.target_row_key == target_row_key)
        ]

    # =========================================================================
    # Duplicate candidates
    # =========================================================================

    def save_candidate(self, candidate: DedupCandidate) -> None:
        with self._lock:
            self._candidates[candidate.candidate_id] = candidate

    def get_candidate(self, candidate_id: str) -> Optional[DedupCandidate]:
        with self._lock:
            return self._candidates.get(candidate_id)

    def list_candidates(
        self,
        batch_id: Optional[str] = None,
        pending_only: bool = False
    ) -> List[DedupCandidate]:
        with self._lock:
            candidates = list(self._candidates.values())
        return [
            c for c in candidates
            if (batch_id is None or c.batch_id == batch_id)
            and (not pending_only or c.is_pending)
        ]

    # =========================================================================
    # Snapshots and rollbacks
    # =========================================================================

    def save_snapshot(self, snapshot: MigrationSnapshot) -> None:
        with self._lock:
            self._snapshots[snapshot.snapshot_id] = snapshot

    def get_snapshot(self, snapshot_id: str) -> Optional[MigrationSnapshot]:
        with self._lock:
            return self._snapshots.get(snapshot_id)

    def delete_snapshot(self, snapshot_id: str) -> bool:
        with self._lock:
            return self._snapshots.pop(snapshot_id, None) is not None

    def list_snapshots(self, batch_id: Optional[str] = None) -> List[MigrationSnapshot]:
        with self._lock:
            snapshots = list(self._snapshots.values())
        snapshots = [s for s in snapshots if batch_id is None or s.migration_batch_id == batch_id]
        return sorted(snapshots, key=lambda s: s.created_at, reverse=True)

    def add_rollback(self, event: RollbackEvent) -> None:
        with self._lock:
            self._rollbacks.append(event)

    def list_rollbacks(self, snapshot_id: Optional[str] = None) -> List[RollbackEvent]:
        with self._lock:
            return [e for e in self._rollbacks if snapshot_id is None or e.snapshot_id == snapshot_id]

    # =========================================================================
    # Retry items
    # =========================================================================

    def upsert_retry_item(self, item: RetryQueueItem) -> RetryQueueItem:
        """
        Insert a retry item, or return the live one for the same operation.

        Re-enqueuing an operation that is still pending is a no-op.
        """
        with self._lock:
            existing_id = self._retry_keys.get(item.operation_key)
            existing = self._retries.get(existing_id) if existing_id else None
            if existing is not None and not existing.status.is_terminal:
                return existing
            self._retries[item.retry_id] = item
            self._retry_keys[item.operation_key] = item.retry_id
            return item

    def save_retry_item(self, item: RetryQueueItem) -> None:
        with self._lock:
            self._retries[item.retry_id] = item

    def get_retry_item(self, retry_id: str) -> Optional[RetryQueueItem]:
        with self._lock:
            return self._retries.get(retry_id)

    def list_retry_items(
        self,
        batch_id: Optional[str] = None,
        status: Optional[RetryStatus] = None
    ) -> List[RetryQueueItem]:
        with self._lock:
            items = list(self._retries.values())
        items = [
            i for i in items
            if (batch_id is None or i.migration_batch_id == batch_id)
            and (status is None or i.status == status)
        ]
        return sorted(items, key=lambda i: i.created_at)

    # =========================================================================
    # Reports
    # =========================================================================

    def batch_report(self, batch_id: str) -> Dict[str, Any]:
        """Everything known about one batch, as plain data."""
        with self._lock:
            batch = self._batches.get(batch_id)
            if batch is None:
                return {}
            score = self._quality.get(batch_id)
            return {
                "batch": batch.to_dict(),
                "quality": score.to_dict() if score else None,
                "failures": [f.to_dict() for f in self.list_failures(batch_id)],
                "dedup_candidates": [c.to_dict() for c in self.list_candidates(batch_id)],
                "retries": [i.to_dict() for i in self.list_retry_items(batch_id)],
            }

    def save_report(self, batch_id: str) -> Optional[Path]:
        """Write the batch report to the output directory, when one is configured."""
        if not self.output_dir:
            return None

        filepath = self.output_dir / f"migration_report_{batch_id}_{datetime.utcnow().strftime('%Y%m%d_%H%M%S')}.json"
        with open(filepath, 'w') as f:
            json.dump(self.batch_report(batch_id), f, indent=2, default=str)
        logger.info(f"Saved migration report to {filepath}")
        return filepath
