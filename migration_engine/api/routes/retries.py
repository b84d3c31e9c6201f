"""Retry queue endpoints."""

from datetime import timezone
from typing import Optional
from fastapi import APIRouter

from ..context import engine_context
from ..models import (
    RetryItemResponse,
    RetryListResponse,
    RetryProcessRequest,
    RetryProcessResponse,
    RetryStatusEnum,
)
from ...models.retry import RetryStatus

router = APIRouter()


@router.get("", response_model=RetryListResponse)
async def list_retries(batch_id: Optional[str] = None, status: Optional[RetryStatusEnum] = None):
    """List retry queue items."""
    items = engine_context.executor.retry_queue.list_items(
        batch_id=batch_id,
        status=RetryStatus(status.value) if status else None,
    )
    return RetryListResponse(
        items=[RetryItemResponse(**i.to_dict()) for i in items],
        total=len(items),
    )


@router.post("/process", response_model=RetryProcessResponse)
async def process_retries(data: Optional[RetryProcessRequest] = None):
    """Attempt every due retry (for an external scheduler)."""
    now = data.now if data else None
    if now is not None and now.tzinfo is not None:
        now = now.astimezone(timezone.utc).replace(tzinfo=None)
    stats = engine_context.executor.process_retries(now)
    return RetryProcessResponse(**stats)
