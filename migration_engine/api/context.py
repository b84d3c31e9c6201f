"""Engine context shared by the API routes."""

from typing import Optional
from fastapi import HTTPException

from ..errors import ErrorKind, MigrationEngineError
from ..executor import MigrationExecutor

_STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.SNAPSHOT_NOT_FOUND: 404,
    ErrorKind.ALREADY_RESOLVED: 409,
    ErrorKind.CONCURRENT_MIGRATION_IN_PROGRESS: 409,
    ErrorKind.TABLE_LOCKED: 409,
    ErrorKind.INVALID_STATE: 409,
    ErrorKind.APPROVER_REQUIRED: 400,
    ErrorKind.VALIDATION: 400,
    ErrorKind.REVIEW_REQUIRED: 400,
    ErrorKind.TRANSIENT_INFRA: 503,
    ErrorKind.SNAPSHOT: 500,
}


class EngineContext:
    """Holds the executor the API reads from and acts through."""

    def __init__(self):
        self._executor: Optional[MigrationExecutor] = None

    def configure(self, executor: MigrationExecutor) -> None:
        self._executor = executor

    @property
    def executor(self) -> MigrationExecutor:
        if self._executor is None:
            raise HTTPException(status_code=503, detail="Migration engine not configured")
        return self._executor


def http_error(error: MigrationEngineError) -> HTTPException:
    """Map an engine error onto an HTTP status."""
    return HTTPException(
        status_code=_STATUS_BY_KIND.get(error.kind, 400),
        detail=error.to_dict(),
    )


engine_context = EngineContext()
