"""Snapshot and rollback endpoints."""

from typing import Optional
from fastapi import APIRouter

from ..context import engine_context, http_error
from ..models import (
    SnapshotResponse,
    SnapshotListResponse,
    RollbackRequest,
    RollbackEventResponse,
    RollbackListResponse,
)
from ...errors import MigrationEngineError

router = APIRouter()
rollbacks_router = APIRouter()


@router.get("", response_model=SnapshotListResponse)
async def list_snapshots(batch_id: Optional[str] = None):
    """List snapshots, newest first."""
    snapshots = engine_context.executor.snapshots.list_snapshots(batch_id)
    return SnapshotListResponse(
        snapshots=[SnapshotResponse(**s.to_dict()) for s in snapshots],
        total=len(snapshots),
    )


@router.get("/{snapshot_id}", response_model=SnapshotResponse)
async def get_snapshot(snapshot_id: str):
    """Get snapshot metadata."""
    try:
        snapshot = engine_context.executor.snapshots.get_snapshot(snapshot_id)
    except MigrationEngineError as e:
        raise http_error(e)
    return SnapshotResponse(**snapshot.to_dict())


@router.post("/{snapshot_id}/rollback", response_model=RollbackEventResponse)
async def rollback_snapshot(snapshot_id: str, data: RollbackRequest):
    """Restore the snapshot's tables. Requires an approver."""
    try:
        event = engine_context.executor.snapshots.rollback(
            snapshot_id, data.reason, data.approved_by
        )
    except MigrationEngineError as e:
        raise http_error(e)
    return RollbackEventResponse(**event.to_dict())


@rollbacks_router.get("", response_model=RollbackListResponse)
async def list_rollbacks(snapshot_id: Optional[str] = None):
    """List rollback audit events."""
    events = engine_context.executor.snapshots.list_rollbacks(snapshot_id)
    return RollbackListResponse(
        rollbacks=[RollbackEventResponse(**e.to_dict()) for e in events],
        total=len(events),
    )
