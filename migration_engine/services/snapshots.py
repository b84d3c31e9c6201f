"""Point-in-time snapshots of target tables and approved rollbacks."""

import copy
import json
import logging
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Set

from ..config import SnapshotSettings
from ..errors import (
    ErrorKind,
    NotFoundError,
    RollbackPreconditionError,
    SnapshotError,
    TableLockedError,
)
from ..loaders.base import BaseLoader
from ..models.snapshot import (
    MigrationSnapshot,
    RollbackEvent,
    SnapshotType,
    TableRows,
    default_snapshot_name,
    new_snapshot_id,
)
from ..storage import MigrationRepository

logger = logging.getLogger(__name__)


class TableLockManager:
    """
    Table leases shared by migrations and taken exclusively by snapshots and rollbacks.

    Any number of migration batches may hold shared leases on a table at
    once; an exclusive lease excludes everything else.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._shared: Dict[str, Set[str]] = {}  # table -> owners
        self._exclusive: Dict[str, str] = {}  # table -> owner

    def acquire_shared(self, owner: str, tables: Iterable[str]) -> None:
        tables = list(tables)
        with self._lock:
            locked = [t for t in tables if t in self._exclusive]
            if locked:
                raise TableLockedError(
                    f"Tables locked by {self._exclusive[locked[0]]}: {', '.join(locked)}",
                    details={"tables": locked},
                )
            for table in tables:
                self._shared.setdefault(table, set()).add(owner)

    def release_shared(self, owner: str) -> None:
        with self._lock:
            for owners in self._shared.values():
                owners.discard(owner)

    def acquire_exclusive(self, owner: str, tables: Iterable[str]) -> None:
        tables = list(tables)
        with self._lock:
            busy = [
                t for t in tables
                if t in self._exclusive or (self._shared.get(t, set()) - {owner})
            ]
            if busy:
                raise TableLockedError(
                    f"Tables in use: {', '.join(busy)}",
                    details={"tables": busy},
                )
            for table in tables:
                self._exclusive[table] = owner

    def release_exclusive(self, owner: str) -> None:
        with self._lock:
            for table in [t for t, o in self._exclusive.items() if o == owner]:
                del self._exclusive[table]

    @contextmanager
    def exclusive(self, owner: str, tables: Iterable[str]):
        self.acquire_exclusive(owner, tables)
        try:
            yield
        finally:
            self.release_exclusive(owner)

    def shared_holders(self, tables: Iterable[str]) -> List[str]:
        with self._lock:
            holders = set()
            for table in tables:
                holders |= self._shared.get(table, set())
            return sorted(holders)

    def is_exclusively_locked(self, table: str) -> bool:
        with self._lock:
            return table in self._exclusive


class SnapshotManager:
    """
    Captures and restores target table state.

    Supports:
    - Deep, consistent snapshots under an exclusive table lease
    - Durable persistence to the repository and an optional JSON directory
    - Approved, all-or-nothing rollback with an audit event
    - Retention-based expiry
    """

    def __init__(
        self,
        loader: BaseLoader,
        repository: MigrationRepository,
        locks: Optional[TableLockManager] = None,
        settings: Optional[SnapshotSettings] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.loader = loader
        self.repository = repository
        self.locks = locks or TableLockManager()
        self.settings = settings or SnapshotSettings()
        self._clock = clock or datetime.utcnow
        self.storage_dir = Path(self.settings.storage_dir) if self.settings.storage_dir else None

    def create_snapshot(
        self,
        tables: Iterable[str],
        name: Optional[str] = None,
        snapshot_type: SnapshotType = SnapshotType.PRE_MIGRATION,
        batch_id: Optional[str] = None
    ) -> MigrationSnapshot:
        """
        Capture the current contents of the given tables.

        The snapshot is durably stored before this returns.

        Args:
            tables: Target tables to capture
            name: Snapshot name, Snapshot_YYYYMMDD_HHMMSS by default
            snapshot_type: Why the snapshot was taken
            batch_id: Migration batch the snapshot belongs to

        Returns:
            The immutable MigrationSnapshot

        Raises:
            SnapshotError: if the tables cannot be locked, read or persisted
        """
        tables = list(dict.fromkeys(tables))
        snapshot_id = new_snapshot_id()
        now = self._clock()

        try:
            with self.locks.exclusive(f"snapshot:{snapshot_id}", tables):
                data: Dict[str, TableRows] = {
                    table: copy.deepcopy(self.loader.read_table(table)) for table in tables
                }
        except SnapshotError:
            raise
        except Exception as e:
            logger.error(f"Snapshot capture failed for {', '.join(tables)}: {e}")
            raise SnapshotError(f"Snapshot capture failed: {e}") from e

        try:
            serialized = json.dumps(data, default=str)
        except (TypeError, ValueError) as e:
            raise SnapshotError(f"Snapshot data is not serializable: {e}") from e

        retention = self.settings.retention_days
        snapshot = MigrationSnapshot(
            snapshot_id=snapshot_id,
            snapshot_name=name or default_snapshot_name(now),
            snapshot_type=snapshot_type,
            tables_included=tuple(tables),
            snapshot_data=data,
            total_rows=sum(len(rows) for rows in data.values()),
            size_bytes=len(serialized.encode("utf-8")),
            created_at=now,
            expires_at=now + timedelta(days=retention) if retention else None,
            migration_batch_id=batch_id,
        )

        self._persist(snapshot)
        logger.info(
            f"Created snapshot {snapshot.snapshot_name} ({snapshot_id}): "
            f"{snapshot.total_rows} rows across {len(tables)} tables, {snapshot.size_bytes} bytes"
        )
        return snapshot

    def get_snapshot(self, snapshot_id: str) -> MigrationSnapshot:
        snapshot = self.repository.get_snapshot(snapshot_id)
        if snapshot is None:
            raise NotFoundError(f"Snapshot not found: {snapshot_id}")
        return snapshot

    def list_snapshots(self, batch_id: Optional[str] = None, include_expired: bool = True) -> List[MigrationSnapshot]:
        now = self._clock()
        return [
            s for s in self.repository.list_snapshots(batch_id)
            if include_expired or not s.is_expired(now)
        ]

    def delete_snapshot(self, snapshot_id: str) -> bool:
        deleted = self.repository.delete_snapshot(snapshot_id)
        if self.storage_dir:
            path = self._snapshot_path(snapshot_id)
            if path.exists():
                path.unlink()
        if deleted:
            logger.info(f"Deleted snapshot {snapshot_id}")
        return deleted

    def purge_expired(self) -> int:
        """Delete every snapshot past its retention window."""
        now = self._clock()
        expired = [s.snapshot_id for s in self.repository.list_snapshots() if s.is_expired(now)]
        for snapshot_id in expired:
            self.delete_snapshot(snapshot_id)
        return len(expired)

    def load_persisted(self) -> int:
        """Reload snapshots written by earlier processes from the storage directory."""
        if not self.storage_dir or not self.storage_dir.exists():
            return 0

        loaded = 0
        for path in sorted(self.storage_dir.glob("*.json")):
            with open(path, 'r') as f:
                snapshot = MigrationSnapshot.from_dict(json.load(f))
            if self.repository.get_snapshot(snapshot.snapshot_id) is None:
                self.repository.save_snapshot(snapshot)
                loaded += 1
        return loaded

    def list_rollbacks(self, snapshot_id: Optional[str] = None) -> List[RollbackEvent]:
        return self.repository.list_rollbacks(snapshot_id)

    def rollback(self, snapshot_id: str, reason: str, approved_by: Optional[str]) -> RollbackEvent:
        """
        Restore every table in a snapshot to its captured contents.

        Args:
            snapshot_id: Snapshot to restore
            reason: Why the rollback is happening
            approved_by: Identity of the approver (required)

        Returns:
            The RollbackEvent audit record

        Raises:
            RollbackPreconditionError: approver missing, snapshot missing or
                expired, or a migration holds one of the tables
            SnapshotError: a table could not be restored; tables already
                replaced are put back as they were
        """
        if not approved_by or not approved_by.strip():
            raise RollbackPreconditionError(
                "Rollback requires an approver",
                kind=ErrorKind.APPROVER_REQUIRED,
            )

        snapshot = self.repository.get_snapshot(snapshot_id)
        if snapshot is None or snapshot.is_expired(self._clock()):
            raise RollbackPreconditionError(
                f"Snapshot not found or expired: {snapshot_id}",
                kind=ErrorKind.SNAPSHOT_NOT_FOUND,
            )

        tables = list(snapshot.tables_included)
        holders = self.locks.shared_holders(tables)
        if holders:
            raise RollbackPreconditionError(
                f"Migration in progress on snapshot tables: {', '.join(holders)}",
                kind=ErrorKind.CONCURRENT_MIGRATION_IN_PROGRESS,
                details={"batches": holders},
            )

        owner = f"rollback:{snapshot_id}"
        try:
            self.locks.acquire_exclusive(owner, tables)
        except TableLockedError as e:
            raise RollbackPreconditionError(
                str(e),
                kind=ErrorKind.CONCURRENT_MIGRATION_IN_PROGRESS,
                details=e.details,
            ) from e

        started = time.monotonic()
        try:
            backups = {table: self.loader.read_table(table) for table in tables}
            replaced: List[str] = []
            try:
                for table in tables:
                    self.loader.replace_table(table, copy.deepcopy(snapshot.snapshot_data.get(table, {})))
                    replaced.append(table)
            except Exception as e:
                logger.error(f"Rollback of {snapshot_id} failed on {table}: {e}; restoring {len(replaced)} tables")
                self._restore(replaced, backups)
                raise SnapshotError(f"Rollback failed on {table}; no tables were changed: {e}") from e
        finally:
            self.locks.release_exclusive(owner)

        rows_deleted = sum(
            len(set(backups[t]) - set(snapshot.snapshot_data.get(t, {}))) for t in tables
        )
        event = RollbackEvent(
            snapshot_id=snapshot_id,
            reason=reason,
            approved_by=approved_by,
            tables_restored=tuple(tables),
            rows_restored=snapshot.total_rows,
            rows_deleted=rows_deleted,
            duration_ms=int((time.monotonic() - started) * 1000),
            created_at=self._clock(),
        )
        self.repository.add_rollback(event)
        logger.warning(
            f"Rolled back {len(tables)} tables to snapshot {snapshot.snapshot_name} "
            f"(approved by {approved_by}): {event.rows_restored} rows restored, {rows_deleted} deleted"
        )
        return event

    def _restore(self, tables: List[str], backups: Dict[str, TableRows]) -> None:
        for table in tables:
            try:
                self.loader.replace_table(table, backups[table])
            except Exception as e:
                logger.error(f"Could not restore {table} after failed rollback: {e}")

    def _persist(self, snapshot: MigrationSnapshot) -> None:
        self.repository.save_snapshot(snapshot)
        if not self.storage_dir:
            return

        try:
            self.storage_dir.mkdir(parents=True, exist_ok=True)
            with open(self._snapshot_path(snapshot.snapshot_id), 'w') as f:
                json.dump(snapshot.to_dict(include_data=True), f, indent=2, default=str)
        except OSError as e:
            self.repository.delete_snapshot(snapshot.snapshot_id)
            raise SnapshotError(f"Snapshot persistence failed: {e}") from e

    def _snapshot_path(self, snapshot_id: str) -> Path:
        return self.storage_dir / f"{snapshot_id}.json"
