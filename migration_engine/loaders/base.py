"""Base loader interface for target stores."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
import copy
import logging

from ..models.snapshot import TableRows

logger = logging.getLogger(__name__)


class BaseLoader(ABC):
    """
    Base class for target stores.

    Loaders are the engine's only write boundary. Rows are addressed by a
    stable row key so every write is an idempotent upsert.

    Errors raised by implementations:
    - TransientInfraError for retryable infrastructure failures
    - ConflictError when a write collides with an existing identity
    - ValidationError when the store rejects the row permanently
    """

    def __init__(self, target_service: str):
        """
        Initialize the loader.

        Args:
            target_service: Name of the target store, used in logs
        """
        self.target_service = target_service

    @abstractmethod
    def read_table(self, table: str) -> TableRows:
        """
        Read every row of a table.

        Returns:
            Dictionary of row key -> column values
        """
        pass

    @abstractmethod
    def upsert_row(self, table: str, row_key: str, values: Dict[str, Any]) -> bool:
        """
        Insert or replace one row.

        Returns:
            True if the row was created, False if an existing row was replaced
        """
        pass

    @abstractmethod
    def delete_row(self, table: str, row_key: str) -> bool:
        """
        Delete one row.

        Returns:
            True if a row was deleted
        """
        pass

    @abstractmethod
    def replace_table(self, table: str, rows: TableRows) -> None:
        """Replace the full contents of a table."""
        pass

    @abstractmethod
    def list_tables(self) -> List[str]:
        pass

    def get_row(self, table: str, row_key: str) -> Optional[Dict[str, Any]]:
        row = self.read_table(table).get(row_key)
        return copy.deepcopy(row) if row is not None else None

    def count_rows(self, table: str) -> int:
        return len(self.read_table(table))

    def validate_connection(self) -> bool:
        """Validate the connection to the target store."""
        return True
