"""Duplicate candidate endpoints."""

from typing import Optional
from fastapi import APIRouter

from ..context import engine_context, http_error
from ..models import DedupCandidateResponse, DedupListResponse, ResolveRequest
from ...errors import MigrationEngineError
from ...models.dedup import Resolution

router = APIRouter()


@router.get("", response_model=DedupListResponse)
async def list_candidates(batch_id: Optional[str] = None, pending_only: bool = False):
    """List duplicate candidates."""
    candidates = engine_context.executor.repository.list_candidates(
        batch_id=batch_id, pending_only=pending_only
    )
    return DedupListResponse(
        candidates=[DedupCandidateResponse(**c.to_dict()) for c in candidates],
        total=len(candidates),
    )


@router.post("/{candidate_id}/resolve", response_model=DedupCandidateResponse)
async def resolve_candidate(candidate_id: str, data: ResolveRequest):
    """Resolve a pending candidate. A second resolution is rejected with 409."""
    try:
        candidate = engine_context.executor.dedup.resolve(
            candidate_id, Resolution(data.resolution.value), data.resolved_by
        )
    except MigrationEngineError as e:
        raise http_error(e)
    return DedupCandidateResponse(**candidate.to_dict())
