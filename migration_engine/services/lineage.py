"""Lineage tracking: an append-only trail from source cells to target cells."""

import logging
import threading
from typing import Any, List, Optional, Sequence

from ..models.record import LineageRecord, TransformationStep
from ..storage import MigrationRepository
from .transformer import value_hash

logger = logging.getLogger(__name__)


class LineageTracker:
    """
    Buffers lineage records and flushes them to the repository.

    Records are flushed every ``flush_size`` appends and on ``flush()``.
    """

    def __init__(self, repository: MigrationRepository, flush_size: int = 100):
        self.repository = repository
        self.flush_size = flush_size
        self._buffer: List[LineageRecord] = []
        self._lock = threading.Lock()

    def record_cell(
        self,
        batch_id: str,
        source_row: int,
        source_column: str,
        target_table: str,
        target_column: str,
        target_row_key: str,
        source_value: Any,
        target_value: Any,
        transformations: Sequence[TransformationStep] = (),
        validation_passed: bool = True,
        source_file: Optional[str] = None
    ) -> LineageRecord:
        """Append one source cell → target cell record."""
        record = LineageRecord(
            batch_id=batch_id,
            source_row=source_row,
            source_column=source_column,
            target_table=target_table,
            target_column=target_column,
            target_row_key=target_row_key,
            source_value_hash=value_hash(source_value),
            target_value_hash=value_hash(target_value),
            transformations=tuple(transformations),
            validation_passed=validation_passed,
            source_file=source_file,
        )

        to_flush = None
        with self._lock:
            self._buffer.append(record)
            if len(self._buffer) >= self.flush_size:
                to_flush, self._buffer = self._buffer, []

        if to_flush:
            self.repository.add_lineage(to_flush)
        return record

    def flush(self) -> int:
        """Write buffered records; returns how many were written."""
        with self._lock:
            to_flush, self._buffer = self._buffer, []
        if to_flush:
            self.repository.add_lineage(to_flush)
            logger.debug(f"Flushed {len(to_flush)} lineage records")
        return len(to_flush)

    @property
    def buffered(self) -> int:
        with self._lock:
            return len(self._buffer)

    def query(
        self,
        batch_id: Optional[str] = None,
        source_row: Optional[int] = None,
        target_table: Optional[str] = None,
        source_column: Optional[str] = None
    ) -> List[LineageRecord]:
        """Query flushed lineage. Call flush() first to include buffered records."""
        return self.repository.query_lineage(
            batch_id=batch_id,
            source_row=source_row,
            target_table=target_table,
            source_column=source_column,
        )
