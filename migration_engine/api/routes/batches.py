"""Batch status, quality, failure and lineage endpoints."""

from typing import Optional
from fastapi import APIRouter, HTTPException

from ..context import engine_context, http_error
from ..models import (
    BatchResponse,
    BatchListResponse,
    QualityScoreResponse,
    RowFailureResponse,
    FailureListResponse,
    LineageRecordResponse,
    LineageListResponse,
)
from ...errors import MigrationEngineError

router = APIRouter()


def _get_batch_or_404(batch_id: str):
    batch = engine_context.executor.repository.get_batch(batch_id)
    if not batch:
        raise HTTPException(status_code=404, detail="Batch not found")
    return batch


@router.get("", response_model=BatchListResponse)
async def list_batches():
    """List all migration batches, newest first."""
    batches = engine_context.executor.repository.list_batches()
    return BatchListResponse(
        batches=[BatchResponse(**b.to_dict()) for b in batches],
        total=len(batches),
    )


@router.get("/{batch_id}", response_model=BatchResponse)
async def get_batch(batch_id: str):
    """Get a batch's status and counters."""
    return BatchResponse(**_get_batch_or_404(batch_id).to_dict())


@router.get("/{batch_id}/quality", response_model=QualityScoreResponse)
async def get_quality(batch_id: str):
    """Get the quality score of a settled batch."""
    _get_batch_or_404(batch_id)
    score = engine_context.executor.repository.get_quality_score(batch_id)
    if not score:
        raise HTTPException(status_code=404, detail="Quality score not available")
    return QualityScoreResponse(**score.to_dict())


@router.get("/{batch_id}/failures", response_model=FailureListResponse)
async def list_failures(batch_id: str):
    """List permanent row failures of a batch."""
    _get_batch_or_404(batch_id)
    failures = engine_context.executor.repository.list_failures(batch_id)
    return FailureListResponse(
        failures=[RowFailureResponse(**f.to_dict()) for f in failures],
        total=len(failures),
    )


@router.get("/{batch_id}/lineage", response_model=LineageListResponse)
async def list_lineage(
    batch_id: str,
    source_row: Optional[int] = None,
    target_table: Optional[str] = None,
    source_column: Optional[str] = None
):
    """Query lineage records of a batch."""
    _get_batch_or_404(batch_id)
    executor = engine_context.executor
    executor.lineage.flush()
    records = executor.lineage.query(
        batch_id=batch_id,
        source_row=source_row,
        target_table=target_table,
        source_column=source_column,
    )
    return LineageListResponse(
        records=[LineageRecordResponse(**r.to_dict()) for r in records],
        total=len(records),
    )


@router.post("/{batch_id}/cancel", response_model=BatchResponse)
async def cancel_batch(batch_id: str):
    """Cancel a running batch."""
    _get_batch_or_404(batch_id)
    try:
        batch = engine_context.executor.cancel(batch_id)
    except MigrationEngineError as e:
        raise http_error(e)
    return BatchResponse(**batch.to_dict())
