"""In-memory target store."""

import copy
import json
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .base import BaseLoader
from ..errors import ConflictError, MigrationEngineError, TransientInfraError
from ..models.snapshot import TableRows

logger = logging.getLogger(__name__)


@dataclass
class _InjectedFailure:
    operation: str
    table: Optional[str]
    remaining: int
    error: Callable[[str], Exception]


class InMemoryLoader(BaseLoader):
    """
    Target store kept in process memory.

    Supports:
    - Unique columns per table (collisions raise ConflictError)
    - Failure injection per operation, for exercising retry and rollback paths
    - Loading from and saving to a JSON file
    """

    def __init__(
        self,
        tables: Optional[Dict[str, TableRows]] = None,
        unique_columns: Optional[Dict[str, List[str]]] = None,
        target_service: str = "memory"
    ):
        """
        Initialize the store.

        Args:
            tables: Initial contents, table -> row key -> values
            unique_columns: Table -> columns whose non-null values must be unique
            target_service: Name used in logs
        """
        super().__init__(target_service)
        self._tables: Dict[str, TableRows] = copy.deepcopy(tables) if tables else {}
        self.unique_columns = unique_columns or {}
        self._failures: List[_InjectedFailure] = []
        self._lock = threading.RLock()

    def inject_failures(
        self,
        operation: str,
        table: Optional[str] = None,
        count: int = 1,
        error: Optional[Callable[[str], Exception]] = None
    ) -> None:
        """
        Make the next ``count`` calls of an operation fail.

        Args:
            operation: read, upsert, delete or replace
            table: Restrict to one table; None matches every table
            count: Number of failing calls
            error: Factory building the exception from a message
        """
        with self._lock:
            self._failures.append(_InjectedFailure(
                operation=operation,
                table=table,
                remaining=count,
                error=error or TransientInfraError,
            ))

    def clear_failures(self) -> None:
        with self._lock:
            self._failures = []

    def _maybe_fail(self, operation: str, table: str) -> None:
        for failure in self._failures:
            if failure.remaining <= 0 or failure.operation != operation:
                continue
            if failure.table is not None and failure.table != table:
                continue
            failure.remaining -= 1
            raise failure.error(f"Injected {operation} failure on {table}")

    def read_table(self, table: str) -> TableRows:
        with self._lock:
            self._maybe_fail("read", table)
            return copy.deepcopy(self._tables.get(table, {}))

    def upsert_row(self, table: str, row_key: str, values: Dict[str, Any]) -> bool:
        with self._lock:
            self._maybe_fail("upsert", table)
            rows = self._tables.setdefault(table, {})

            for column in self.unique_columns.get(table, []):
                value = values.get(column)
                if value is None:
                    continue
                for existing_key, existing in rows.items():
                    if existing_key != row_key and existing.get(column) == value:
                        raise ConflictError(
                            f"{table}.{column} value already exists in row {existing_key}",
                            table=table,
                            existing_key=existing_key,
                        )

            created = row_key not in rows
            rows[row_key] = copy.deepcopy(values)
            return created

    def delete_row(self, table: str, row_key: str) -> bool:
        with self._lock:
            self._maybe_fail("delete", table)
            return self._tables.get(table, {}).pop(row_key, None) is not None

    def replace_table(self, table: str, rows: TableRows) -> None:
        with self._lock:
            self._maybe_fail("replace", table)
            self._tables[table] = copy.deepcopy(rows)

    def list_tables(self) -> List[str]:
        with self._lock:
            return list(self._tables.keys())

    def dump(self) -> Dict[str, TableRows]:
        with self._lock:
            return copy.deepcopy(self._tables)

    def save_to_json(self, file_path: str) -> None:
        with open(file_path, 'w') as f:
            json.dump(self.dump(), f, indent=2, default=str)

    @classmethod
    def from_json_file(
        cls,
        file_path: str,
        unique_columns: Optional[Dict[str, List[str]]] = None
    ) -> "InMemoryLoader":
        """Load store contents from a JSON file written by save_to_json."""
        with open(file_path, 'r') as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise MigrationEngineError(f"Target store file {file_path} must contain a JSON object")
        return cls(tables=data, unique_columns=unique_columns, target_service=file_path)
