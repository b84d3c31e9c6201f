"""Migration executor - applies confirmed mappings to a dataset."""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from .config import EngineConfig, ExecutionOptions
from .errors import (
    ConflictError,
    MigrationEngineError,
    NotFoundError,
    ReviewError,
    SnapshotError,
    TableLockedError,
    TransientInfraError,
)
from .loaders.base import BaseLoader
from .models.dna import SourceDNA
from .models.mapping import ConfirmedMapping
from .models.migration import BatchStatus, MigrationBatch
from .models.record import FieldViolation, RowFailure, TransformationStep
from .models.retry import RetryQueueItem, RetryStatus
from .models.schema import TargetSchema
from .models.snapshot import SnapshotType
from .models.values import Row
from .services.conditional import ConditionalMappingEvaluator
from .services.dedup import DeduplicationEngine
from .services.lineage import LineageTracker
from .services.mapping_engine import MigrationHistory
from .services.quality import QualityInputs, QualityScorer
from .services.retry_queue import RetryQueue
from .services.review import ConfirmedMappingSet, ReviewSession, ReviewState
from .services.snapshots import SnapshotManager, TableLockManager
from .services.transformer import TransformEngine, value_hash
from .services.validator import RecordValidator
from .storage import MigrationRepository

logger = logging.getLogger(__name__)

UPSERT_OPERATION = "upsert_row"


def row_key_for(batch_id: str, source_row: int) -> str:
    """Stable target key of one source row; makes every write an idempotent upsert."""
    return f"{batch_id}-{source_row:06d}"


@dataclass
class _CellTrail:
    source_column: str
    target_table: str
    target_column: str
    source_value: Any
    target_value: Any
    steps: List[TransformationStep]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_column": self.source_column,
            "target_table": self.target_table,
            "target_column": self.target_column,
            "source_value": self.source_value,
            "target_value": self.target_value,
            "steps": [s.to_dict() for s in self.steps],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "_CellTrail":
        return cls(
            source_column=data["source_column"],
            target_table=data["target_table"],
            target_column=data["target_column"],
            source_value=data.get("source_value"),
            target_value=data.get("target_value"),
            steps=[TransformationStep.from_dict(s) for s in data.get("steps", [])],
        )


@dataclass
class _BatchRun:
    """Runtime state of one batch, alive until the batch is finalized."""
    batch: MigrationBatch
    dna: SourceDNA
    rows: List[Dict[str, Any]]
    confirmed: ConfirmedMappingSet
    options: ExecutionOptions
    review_session: Optional[ReviewSession] = None
    quality_inputs: QualityInputs = field(default_factory=QualityInputs)
    processed: Set[int] = field(default_factory=set)
    written_keys: Dict[str, Set[str]] = field(default_factory=dict)
    late_keys: Dict[str, Set[str]] = field(default_factory=dict)
    cancel_event: threading.Event = field(default_factory=threading.Event)
    lock: threading.RLock = field(default_factory=threading.RLock)
    advancing: bool = False
    lease_held: bool = False
    dedup_scanned: bool = False
    finalized: bool = False


class MigrationExecutor:
    """
    Executes confirmed mappings against a target store.

    Handles:
    - Pre-migration snapshot as a hard barrier before any write
    - Chunked, bounded-concurrency row processing (resumable via advance)
    - Transform, validate and idempotent upsert per row, parent tables first
    - Conditional rules that reroute or skip a mapped cell per row
    - Routing: validation → permanent failure, transient → retry queue,
      conflict → duplicate review
    - Lineage, deduplication and quality scoring
    - Cancellation between rows and settlement of retried rows
    """

    def __init__(
        self,
        loader: BaseLoader,
        target_schema: TargetSchema,
        config: Optional[EngineConfig] = None,
        repository: Optional[MigrationRepository] = None,
        history: Optional[MigrationHistory] = None,
        locks: Optional[TableLockManager] = None,
        transformer: Optional[TransformEngine] = None,
        validator: Optional[RecordValidator] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Initialize the executor and the services it orchestrates.

        Args:
            loader: Target store
            target_schema: Target schema the mappings point into
            config: Engine configuration
            repository: Persisted engine state
            history: Corpus that learns from executed migrations
            locks: Table lease manager shared with the snapshot manager
            transformer: Transform engine (custom transforms may be registered)
            validator: Record validator (custom rules may be registered)
            clock: Time source, injectable for tests
        """
        self.loader = loader
        self.target_schema = target_schema
        self.config = config or EngineConfig()
        self.repository = repository or MigrationRepository(self.config.output_dir)
        self.history = history
        self.locks = locks or TableLockManager()
        self.transformer = transformer or TransformEngine()
        self.validator = validator or RecordValidator()
        self._clock = clock or datetime.utcnow

        self.snapshots = SnapshotManager(
            loader, self.repository, self.locks, self.config.snapshots, clock=self._clock
        )
        self.retry_queue = RetryQueue(self.repository, self.config.retry, clock=self._clock)
        self.dedup = DeduplicationEngine(loader, self.repository, self.config.dedup, clock=self._clock)
        self.quality = QualityScorer(self.config.quality, self.validator)
        self.lineage = LineageTracker(self.repository, self.config.lineage_flush_size)
        self.conditional = ConditionalMappingEvaluator(self.config.conditional_mappings)

        self.retry_queue.register_handler(UPSERT_OPERATION, self._retry_upsert)
        self.retry_queue.add_listener(self._on_retry_settled)

        self._runs: Dict[str, _BatchRun] = {}
        self._runs_lock = threading.Lock()

    # =========================================================================
    # Public API
    # =========================================================================

    def execute(
        self,
        dna: SourceDNA,
        rows: List[Dict[str, Any]],
        confirmed: ConfirmedMappingSet,
        options: Optional[ExecutionOptions] = None,
        review_session: Optional[ReviewSession] = None
    ) -> MigrationBatch:
        """Start a batch and process every row."""
        batch = self.start(dna, rows, confirmed, options, review_session)
        return self.advance(batch.batch_id)

    def start(
        self,
        dna: SourceDNA,
        rows: List[Dict[str, Any]],
        confirmed: ConfirmedMappingSet,
        options: Optional[ExecutionOptions] = None,
        review_session: Optional[ReviewSession] = None
    ) -> MigrationBatch:
        """
        Create a batch and pass the snapshot barrier. No rows are processed.

        Args:
            dna: Profile of the source dataset
            rows: Raw source rows
            confirmed: Sealed output of the review gate
            options: Execution switches; config.execution by default
            review_session: Session to move to executing/completed

        Returns:
            The new MigrationBatch

        Raises:
            ReviewError: mappings did not come from a confirmed review
            ValidationError: a conditional rule or table dependency is invalid
            SnapshotError: the pre-migration snapshot failed (batch is FAILED)
        """
        if not isinstance(confirmed, ConfirmedMappingSet):
            raise ReviewError("Execution requires a ConfirmedMappingSet from a completed review")

        options = options or self.config.execution
        if review_session is not None and not options.dry_run and review_session.state != ReviewState.CONFIRMED:
            raise ReviewError(
                f"Review {review_session.review_id} is {review_session.state.value}, expected confirmed"
            )
        self._check_targets(confirmed)
        tables = self._batch_tables(confirmed, options)

        batch = MigrationBatch(
            source_system=dna.source_system,
            source_file=options.source_file,
            record_count=len(rows),
            status=BatchStatus.DRY_RUN if options.dry_run else BatchStatus.PROCESSING,
            dry_run=options.dry_run,
            started_at=self._clock(),
            review_id=confirmed.review_id,
            schema_id=confirmed.schema_id or self.target_schema.schema_id,
            tables=tables,
        )
        self.repository.save_batch(batch)
        run = _BatchRun(
            batch=batch,
            dna=dna,
            rows=list(rows),
            confirmed=confirmed,
            options=options,
            review_session=review_session,
            written_keys={t: set() for t in tables},
            late_keys={t: set() for t in tables},
        )
        with self._runs_lock:
            self._runs[batch.batch_id] = run

        logger.info(
            f"Starting batch {batch.batch_id}: {batch.record_count} rows into "
            f"{', '.join(tables)}{' (dry run)' if options.dry_run else ''}"
        )

        if options.dry_run:
            return batch

        if options.create_pre_migration_snapshot:
            try:
                snapshot = self.snapshots.create_snapshot(
                    tables, snapshot_type=SnapshotType.PRE_MIGRATION, batch_id=batch.batch_id
                )
            except SnapshotError as e:
                self._fail(run, "snapshot", e)
                raise
            batch.snapshot_id = snapshot.snapshot_id

        try:
            self.locks.acquire_shared(batch.batch_id, tables)
        except TableLockedError as e:
            self._fail(run, "lease", e)
            raise
        run.lease_held = True

        if review_session is not None:
            review_session.mark_executing(batch.batch_id)

        self.repository.save_batch(batch)
        return batch

    def advance(self, batch_id: str, max_rows: Optional[int] = None) -> MigrationBatch:
        """
        Process the next rows of a batch.

        Args:
            batch_id: Batch to advance
            max_rows: Process at most this many rows; all remaining by default

        Returns:
            The batch after this step
        """
        run = self._find_run(batch_id)
        if run is None:
            return self._settled_batch(batch_id)
        batch = run.batch

        with run.lock:
            if run.finalized or batch.is_terminal or run.advancing:
                return batch
            run.advancing = True

        try:
            start = batch.rows_processed
            end = len(run.rows) if max_rows is None else min(len(run.rows), start + max_rows)
            chunk_size = max(1, run.options.chunk_size)

            with ThreadPoolExecutor(max_workers=max(1, run.options.worker_count)) as pool:
                for chunk_start in range(start, end, chunk_size):
                    if run.cancel_event.is_set():
                        break
                    indexes = range(chunk_start, min(end, chunk_start + chunk_size))
                    list(pool.map(lambda i: self._process_row(run, i), indexes))
                    logger.debug(f"Batch {batch_id}: {batch.rows_processed}/{batch.record_count} rows processed")

        except Exception as e:
            logger.error(f"Batch {batch_id} aborted: {e}")
            self._fail(run, "processing", e)
            raise

        finally:
            with run.lock:
                run.advancing = False

        if run.cancel_event.is_set():
            self._apply_cancellation(run)
        self._after_progress(run)
        return batch

    def cancel(self, batch_id: str) -> MigrationBatch:
        """
        Stop a batch between rows.

        Rows already committed stay committed; every unprocessed row becomes
        a permanent "cancelled" failure. A batch that already settled is
        returned unchanged.
        """
        run = self._find_run(batch_id)
        if run is None:
            return self._settled_batch(batch_id)
        run.cancel_event.set()
        logger.warning(f"Cancellation requested for batch {batch_id}")

        with run.lock:
            advancing = run.advancing
        if not advancing:
            self._apply_cancellation(run)
            self._after_progress(run)
        return run.batch

    def process_retries(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Run due retries; settled rows update their batches."""
        return self.retry_queue.process_due(now)

    def get_batch(self, batch_id: str) -> MigrationBatch:
        batch = self.repository.get_batch(batch_id)
        if batch is None:
            raise NotFoundError(f"Batch not found: {batch_id}")
        return batch

    # =========================================================================
    # Row processing
    # =========================================================================

    def _process_row(self, run: _BatchRun, index: int) -> None:
        """Transform, validate and write one source row."""
        source_row = index + 1
        batch_id = run.batch.batch_id
        if run.cancel_event.is_set():
            return

        try:
            row = Row.from_raw(run.rows[index], source_row)
        except (ValueError, AttributeError) as e:
            self._record_failure(run, index, RowFailure(
                batch_id=batch_id,
                source_row=source_row,
                error_kind="validation",
                error_code="invalid_source_value",
                message=str(e),
            ))
            return

        try:
            values, trails = self._transform_row(
                row, run.confirmed.active_mappings, run.options.enable_conditional_mappings
            )
        except Exception as e:
            self._record_failure(run, index, RowFailure(
                batch_id=batch_id,
                source_row=source_row,
                error_kind="validation",
                error_code="transform_failed",
                message=str(e),
            ))
            return

        violations: List[FieldViolation] = []
        for table_name, table_values in values.items():
            table = self.target_schema.get_table(table_name)
            table_violations = self.validator.validate_record(table, table_values)
            if run.options.enable_quality_scoring:
                self.quality.observe(run.quality_inputs, table, table_values, table_violations)
            violations.extend(table_violations)

        row_key = row_key_for(batch_id, source_row)

        if violations:
            self._record_lineage(run, source_row, row_key, trails, validation_passed=False)
            self._record_failure(run, index, RowFailure(
                batch_id=batch_id,
                source_row=source_row,
                error_kind="validation",
                error_code="validation_failed",
                message="; ".join(f"{v.table}.{v.column}: {v.message}" for v in violations),
                target_table=violations[0].table,
                violations=violations,
            ))
            return

        if run.options.dry_run:
            self._record_success(run, index)
            return

        tables = [t for t in run.batch.tables if t in values]
        written: List[str] = []
        for position, table_name in enumerate(tables):
            try:
                self.loader.upsert_row(table_name, row_key, values[table_name])
                written.append(table_name)
                with run.lock:
                    run.written_keys[table_name].add(row_key)

            except ConflictError as e:
                # the row waits in duplicate review, nothing was written
                self.dedup.record_conflict(batch_id, table_name, row_key, values[table_name], e.existing_key)

            except TransientInfraError as e:
                remaining = {t: values[t] for t in tables[position:]}
                if not run.options.enable_retry_logic:
                    self._record_failure(run, index, RowFailure(
                        batch_id=batch_id,
                        source_row=source_row,
                        error_kind=e.kind.value,
                        error_code="transient_failure",
                        message=str(e),
                        target_table=table_name,
                    ))
                    return
                self._enqueue_retry(run, index, row_key, remaining, trails, e)
                self._record_lineage(run, source_row, row_key, trails, tables=written)
                return

            except Exception as e:
                kind = e.kind.value if isinstance(e, MigrationEngineError) else "store_error"
                logger.error(f"Batch {batch_id} row {source_row}: write to {table_name} failed: {e}")
                self._record_failure(run, index, RowFailure(
                    batch_id=batch_id,
                    source_row=source_row,
                    error_kind=kind,
                    error_code="write_failed",
                    message=str(e),
                    target_table=table_name,
                ))
                return

        self._record_lineage(run, source_row, row_key, trails, tables=written)
        self._record_success(run, index)

    def _transform_row(
        self,
        row: Row,
        mappings: List[ConfirmedMapping],
        use_rules: bool = True
    ) -> Tuple[Dict[str, Dict[str, Any]], List[_CellTrail]]:
        """Apply every active mapping; values are grouped by target table."""
        data = row.to_dict()
        values: Dict[str, Dict[str, Any]] = {}
        trails: List[_CellTrail] = []

        for mapping in mappings:
            target = (mapping.target_table, mapping.target_column, mapping.transform)
            rule = None
            if use_rules:
                target, rule = self.conditional.route(mapping, row)
                if target is None:
                    continue
            table_name, column_name, transform = target

            source_value = row.get_value(mapping.source_column).value
            result, steps = self.transformer.apply(source_value, transform, data=data)
            if rule is not None:
                steps = steps + [TransformationStep(
                    step=len(steps) + 1,
                    transform=f"rule:{rule.rule_id}",
                    before_hash=value_hash(result),
                    after_hash=value_hash(result),
                )]

            table_values = values.setdefault(table_name, {})
            if result is None and table_values.get(column_name) is not None:
                continue
            table_values[column_name] = result
            trails.append(_CellTrail(
                source_column=mapping.source_column,
                target_table=table_name,
                target_column=column_name,
                source_value=source_value,
                target_value=result,
                steps=steps,
            ))

        return values, trails

    def _record_success(self, run: _BatchRun, index: int) -> None:
        with run.lock:
            run.batch.success_count += 1
            run.processed.add(index)
            run.batch.rows_processed = len(run.processed)

    def _record_failure(self, run: _BatchRun, index: Optional[int], failure: RowFailure) -> None:
        self.repository.add_failure(failure)
        with run.lock:
            run.batch.error_count += 1
            if index is not None:
                run.processed.add(index)
                run.batch.rows_processed = len(run.processed)
        logger.warning(
            f"Batch {failure.batch_id} row {failure.source_row} failed ({failure.error_code}): {failure.message}"
        )
        if run.options.stop_on_error and failure.error_kind != "cancelled" and not run.cancel_event.is_set():
            logger.warning(f"Batch {failure.batch_id}: stopping after the first failed row")
            run.cancel_event.set()

    def _record_lineage(
        self,
        run: _BatchRun,
        source_row: int,
        row_key: str,
        trails: List[_CellTrail],
        validation_passed: bool = True,
        tables: Optional[List[str]] = None
    ) -> None:
        if not run.options.enable_lineage_tracking or run.options.dry_run:
            return
        for trail in trails:
            if tables is not None and trail.target_table not in tables:
                continue
            self.lineage.record_cell(
                batch_id=run.batch.batch_id,
                source_row=source_row,
                source_column=trail.source_column,
                target_table=trail.target_table,
                target_column=trail.target_column,
                target_row_key=row_key,
                source_value=trail.source_value,
                target_value=trail.target_value,
                transformations=trail.steps,
                validation_passed=validation_passed,
                source_file=run.options.source_file,
            )

    # =========================================================================
    # Retries
    # =========================================================================

    def _enqueue_retry(
        self,
        run: _BatchRun,
        index: int,
        row_key: str,
        remaining: Dict[str, Dict[str, Any]],
        trails: List[_CellTrail],
        error: TransientInfraError
    ) -> None:
        tables = list(remaining.keys())
        item = RetryQueueItem(
            migration_batch_id=run.batch.batch_id,
            failed_operation=UPSERT_OPERATION,
            target_table=tables[0],
            row_key=row_key,
            source_row_numbers=[index + 1],
            payload={
                "tables": remaining,
                "cells": [t.to_dict() for t in trails if t.target_table in remaining],
            },
            error_code=error.kind.value,
            error_message=str(error),
            max_attempts=self.config.retry.max_attempts,
        )
        with run.lock:
            run.batch.pending_retry_count += 1
            run.processed.add(index)
            run.batch.rows_processed = len(run.processed)
        self.retry_queue.enqueue(item)

    def _retry_upsert(self, item: RetryQueueItem) -> None:
        """Retry handler: re-run the remaining upserts of a row."""
        tables: Dict[str, Dict[str, Any]] = item.payload.get("tables", {})
        locked = [t for t in tables if self.locks.is_exclusively_locked(t)]
        if locked:
            raise TransientInfraError(f"Tables under rollback: {', '.join(locked)}")

        for table_name, values in tables.items():
            try:
                self.loader.upsert_row(table_name, item.row_key, values)
            except ConflictError as e:
                self.dedup.record_conflict(item.migration_batch_id, table_name, item.row_key, values, e.existing_key)
                continue
            run = self._runs.get(item.migration_batch_id)
            if run is not None:
                with run.lock:
                    run.late_keys.setdefault(table_name, set()).add(item.row_key)

    def _on_retry_settled(self, item: RetryQueueItem) -> None:
        """Settlement listener: fold a terminal retry item back into its batch."""
        run = self._runs.get(item.migration_batch_id)
        if run is None:
            return
        if run.finalized:
            # a failed batch only waits for its outstanding retries to drain
            with run.lock:
                run.batch.pending_retry_count -= 1
                drained = run.batch.pending_retry_count <= 0
            self.repository.save_batch(run.batch)
            if drained:
                self._forget(run)
            return

        source_row = item.source_row_numbers[0] if item.source_row_numbers else 0
        if item.status == RetryStatus.SUCCEEDED:
            cells = [_CellTrail.from_dict(c) for c in item.payload.get("cells", [])]
            self._record_lineage(run, source_row, item.row_key, cells)
            with run.lock:
                run.batch.pending_retry_count -= 1
                run.batch.success_count += 1
        else:
            self.repository.add_failure(RowFailure(
                batch_id=run.batch.batch_id,
                source_row=source_row,
                error_kind="transient_infra",
                error_code=f"retry_{item.status.value}",
                message=item.error_message or f"Retry {item.status.value} after {item.attempt_number} attempts",
                target_table=item.target_table,
            ))
            with run.lock:
                run.batch.pending_retry_count -= 1
                run.batch.error_count += 1
            logger.warning(f"Batch {run.batch.batch_id} row {source_row} failed after retries ({item.status.value})")

        self._after_progress(run)

    # =========================================================================
    # Settlement
    # =========================================================================

    def _apply_cancellation(self, run: _BatchRun) -> None:
        with run.lock:
            if run.finalized:
                return
            unprocessed = [i for i in range(len(run.rows)) if i not in run.processed]
            run.batch.cancelled = True

            for index in unprocessed:
                self._record_failure(run, index, RowFailure(
                    batch_id=run.batch.batch_id,
                    source_row=index + 1,
                    error_kind="cancelled",
                    error_code="cancelled",
                    message="Batch cancelled before the row was processed",
                ))
        logger.warning(f"Batch {run.batch.batch_id} cancelled with {len(unprocessed)} unprocessed rows")

    def _after_progress(self, run: _BatchRun) -> None:
        """Move the batch forward once rows are processed and retries settle."""
        with run.lock:
            if run.finalized or run.advancing:
                self.repository.save_batch(run.batch)
                return
            all_processed = len(run.processed) == len(run.rows)
            settled = run.batch.pending_retry_count == 0
            first_scan = all_processed and not run.dedup_scanned
            if first_scan:
                run.dedup_scanned = True

        if not all_processed:
            self.repository.save_batch(run.batch)
            return

        if first_scan and run.options.enable_deduplication and not run.options.dry_run:
            self._scan_duplicates(run, run.written_keys)

        if not settled:
            # lease stays held until the retries settle
            run.batch.status = BatchStatus.AWAITING_RETRY
            self.repository.save_batch(run.batch)
            logger.info(f"Batch {run.batch.batch_id} awaiting {run.batch.pending_retry_count} retries")
            return

        self._finalize(run)

    def _scan_duplicates(self, run: _BatchRun, keys: Dict[str, Set[str]]) -> None:
        for table, table_keys in keys.items():
            if table_keys and self.dedup.identity_fields(table) is not None:
                self.dedup.scan_table(run.batch.batch_id, table, new_keys=set(table_keys))

    def _finalize(self, run: _BatchRun) -> None:
        with run.lock:
            if run.finalized:
                return
            run.finalized = True

        batch = run.batch
        try:
            if run.options.enable_deduplication and not run.options.dry_run:
                self._scan_duplicates(run, run.late_keys)

            self.lineage.flush()

            if run.options.enable_quality_scoring:
                score = self.quality.score(
                    batch.batch_id,
                    batch.record_count,
                    run.quality_inputs,
                    self.repository.list_candidates(batch_id=batch.batch_id),
                )
                self.repository.save_quality_score(score)

            batch.status = (
                BatchStatus.COMPLETED if batch.error_count == 0
                else BatchStatus.COMPLETED_WITH_ERRORS
            )
            if not run.options.dry_run:
                if self.history is not None:
                    self.history.record(run.dna, run.confirmed.mappings, migration_id=batch.batch_id)
                if run.review_session is not None:
                    run.review_session.mark_completed()

        except Exception as e:
            logger.error(f"Finalizing batch {batch.batch_id} failed: {e}")
            batch.status = BatchStatus.FAILED
            batch.errors.append({
                "phase": "finalize",
                "error": str(e),
                "timestamp": self._clock().isoformat(),
            })

        finally:
            batch.completed_at = self._clock()
            self._release_lease(run)
            self.repository.save_batch(batch)
            self.repository.save_report(batch.batch_id)
            self._forget(run)

        logger.info(
            f"Batch {batch.batch_id} {batch.status.value}: {batch.success_count} succeeded, "
            f"{batch.error_count} failed of {batch.record_count}"
        )

    def _fail(self, run: _BatchRun, phase: str, error: Exception) -> None:
        batch = run.batch
        with run.lock:
            run.finalized = True
            batch.status = BatchStatus.FAILED
            batch.completed_at = self._clock()
            batch.errors.append({
                "phase": phase,
                "error": str(error),
                "timestamp": self._clock().isoformat(),
            })
            drained = batch.pending_retry_count <= 0
        self._release_lease(run)
        self.lineage.flush()
        self.repository.save_batch(batch)
        self.repository.save_report(batch.batch_id)
        if drained:
            self._forget(run)
        logger.error(f"Batch {batch.batch_id} failed during {phase}: {error}")

    def _release_lease(self, run: _BatchRun) -> None:
        with run.lock:
            if not run.lease_held:
                return
            run.lease_held = False
        self.locks.release_shared(run.batch.batch_id)

    def _forget(self, run: _BatchRun) -> None:
        """Drop the runtime state of a settled batch; the repository keeps the record."""
        with self._runs_lock:
            self._runs.pop(run.batch.batch_id, None)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _find_run(self, batch_id: str) -> Optional[_BatchRun]:
        with self._runs_lock:
            return self._runs.get(batch_id)

    def _settled_batch(self, batch_id: str) -> MigrationBatch:
        batch = self.repository.get_batch(batch_id)
        if batch is None or not batch.is_terminal:
            raise NotFoundError(f"Batch not found or not running in this process: {batch_id}")
        return batch

    def _batch_tables(self, confirmed: ConfirmedMappingSet, options: ExecutionOptions) -> List[str]:
        """Every table the batch may write, parents before children."""
        tables = list(confirmed.target_tables)
        if options.enable_conditional_mappings:
            for table in self.conditional.check_targets(self.target_schema, confirmed.active_mappings):
                if table not in tables:
                    tables.append(table)
        return self.target_schema.write_order(tables)

    def _check_targets(self, confirmed: ConfirmedMappingSet) -> None:
        unknown = [
            f"{m.target_table}.{m.target_column}"
            for m in confirmed.active_mappings
            if self.target_schema.get_column(m.target_table, m.target_column) is None
        ]
        if unknown:
            raise ReviewError(f"Confirmed mappings target unknown columns: {', '.join(unknown)}")
