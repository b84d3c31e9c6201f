"""REST target store (PostgREST-style table endpoints)."""

import time
import logging
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry
from typing import Any, Dict, List, Optional

from .base import BaseLoader
from ..errors import ConflictError, TransientInfraError, ValidationError
from ..models.snapshot import TableRows

logger = logging.getLogger(__name__)


class APILoader(BaseLoader):
    """
    Target store behind a REST API with one endpoint per table.

    Supports:
    - Bearer, basic or custom-header authentication
    - Transport retries through urllib3 Retry on 429/5xx
    - Client-side rate limiting

    HTTP outcomes map onto engine errors: connection failures, timeouts,
    429 and 5xx raise TransientInfraError; 409 raises ConflictError; other
    4xx raise ValidationError.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        auth_type: str = "bearer",  # bearer, basic, header
        auth_header: str = "Authorization",
        key_column: str = "row_key",
        rate_limit: float = 10.0,
        timeout: float = 30.0,
        max_retries: int = 3,
        backoff_factor: float = 1.0,
        endpoints: Optional[Dict[str, str]] = None,
        target_service: str = "rest"
    ):
        """
        Initialize the API loader.

        Args:
            base_url: Base URL for the API
            api_key: API key for authentication
            auth_type: Type of authentication
            auth_header: Header name for "header" authentication
            key_column: Column carrying the row key in the remote table
            rate_limit: Max requests per second
            timeout: Request timeout in seconds
            max_retries: Transport-level retries per request
            backoff_factor: urllib3 backoff factor between transport retries
            endpoints: Mapping of table -> endpoint path
            target_service: Name used in logs
        """
        super().__init__(target_service)
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.auth_type = auth_type
        self.auth_header = auth_header
        self.key_column = key_column
        self.rate_limit = rate_limit
        self.timeout = timeout
        self.endpoints = endpoints or {}
        self._last_request_time = 0.0
        self._session = self._create_session(max_retries, backoff_factor)

    def _create_session(self, max_retries: int, backoff_factor: float) -> requests.Session:
        """Create a requests session with authentication and retries."""
        session = requests.Session()

        if self.api_key:
            if self.auth_type == "bearer":
                session.headers["Authorization"] = f"Bearer {self.api_key}"
            elif self.auth_type == "basic":
                import base64
                credentials = base64.b64encode(f"{self.api_key}:".encode()).decode()
                session.headers["Authorization"] = f"Basic {credentials}"
            elif self.auth_type == "header":
                session.headers[self.auth_header] = self.api_key

        session.headers["Content-Type"] = "application/json"

        retries = Retry(
            total=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=None,
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retries)
        session.mount("https://", adapter)
        session.mount("http://", adapter)

        return session

    def _rate_limit_wait(self):
        """Wait to respect rate limits."""
        if self.rate_limit > 0:
            elapsed = time.time() - self._last_request_time
            wait_time = (1.0 / self.rate_limit) - elapsed
            if wait_time > 0:
                time.sleep(wait_time)
        self._last_request_time = time.time()

    def _get_endpoint(self, table: str) -> str:
        """Get the API endpoint for a table."""
        if table in self.endpoints:
            return self.endpoints[table]
        return f"/{table}"

    def _request(self, method: str, table: str, **kwargs) -> requests.Response:
        url = f"{self.base_url}{self._get_endpoint(table)}"
        self._rate_limit_wait()

        try:
            response = self._session.request(method, url, timeout=self.timeout, **kwargs)
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            raise TransientInfraError(f"{method} {url} failed: {e}")
        except requests.exceptions.RetryError as e:
            raise TransientInfraError(f"{method} {url} exhausted transport retries: {e}")

        status = response.status_code
        if status == 409:
            raise ConflictError(
                f"{method} {url} conflicted with an existing row",
                table=table,
                existing_key=self._conflicting_key(response),
            )
        if status == 429 or status >= 500:
            raise TransientInfraError(
                f"{method} {url} returned {status}",
                details={"status_code": status},
            )
        if status >= 400:
            raise ValidationError(
                f"{method} {url} rejected with {status}: {response.text[:200]}",
                details={"status_code": status},
            )
        return response

    def _conflicting_key(self, response: requests.Response) -> Optional[str]:
        try:
            data = response.json()
        except ValueError:
            return None
        if not isinstance(data, dict):
            return None
        key = data.get(self.key_column)
        return str(key) if key else None

    def read_table(self, table: str) -> TableRows:
        response = self._request("GET", table)
        rows: TableRows = {}
        for item in response.json() if response.text else []:
            row = dict(item)
            key = row.pop(self.key_column, None)
            if key is None:
                logger.warning(f"Skipping {table} row without {self.key_column}")
                continue
            rows[str(key)] = row
        return rows

    def upsert_row(self, table: str, row_key: str, values: Dict[str, Any]) -> bool:
        response = self._request(
            "POST",
            table,
            json={**values, self.key_column: row_key},
            headers={"Prefer": "resolution=merge-duplicates,return=representation"},
        )
        return response.status_code == 201

    def delete_row(self, table: str, row_key: str) -> bool:
        response = self._request(
            "DELETE",
            table,
            params={self.key_column: f"eq.{row_key}"},
            headers={"Prefer": "return=representation"},
        )
        if not response.text:
            return response.status_code in (200, 204)
        return bool(response.json())

    def replace_table(self, table: str, rows: TableRows) -> None:
        self._request("DELETE", table, params={self.key_column: "not.is.null"})
        if rows:
            self._request(
                "POST",
                table,
                json=[{**values, self.key_column: key} for key, values in rows.items()],
            )
        logger.info(f"Replaced {table} on {self.base_url} with {len(rows)} rows")

    def list_tables(self) -> List[str]:
        return list(self.endpoints.keys())

    def validate_connection(self) -> bool:
        """Validate the connection to the API."""
        try:
            response = self._session.get(self.base_url, timeout=self.timeout)
            return response.status_code < 500
        except requests.exceptions.RequestException as e:
            logger.error(f"Connection validation failed: {e}")
            return False
