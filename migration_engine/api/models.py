"""Pydantic models for API requests and responses."""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
from enum import Enum
from datetime import datetime


class BatchStatusEnum(str, Enum):
    DRY_RUN = "dry_run"
    PROCESSING = "processing"
    AWAITING_RETRY = "awaiting_retry"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"


class ResolutionEnum(str, Enum):
    MERGE_A = "merge_a"
    MERGE_B = "merge_b"
    KEEP_BOTH = "keep_both"


class RetryStatusEnum(str, Enum):
    PENDING = "pending"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"


# Request Models
class ResolveRequest(BaseModel):
    resolution: ResolutionEnum
    resolved_by: str


class RollbackRequest(BaseModel):
    reason: str = ""
    approved_by: Optional[str] = None


class RetryProcessRequest(BaseModel):
    now: Optional[datetime] = None


# Response Models
class BatchResponse(BaseModel):
    batch_id: str
    source_system: Optional[str] = None
    source_file: Optional[str] = None
    record_count: int
    success_count: int
    error_count: int
    pending_retry_count: int
    rows_processed: int
    status: BatchStatusEnum
    dry_run: bool = False
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None
    snapshot_id: Optional[str] = None
    review_id: Optional[str] = None
    schema_id: Optional[str] = None
    tables: List[str] = Field(default_factory=list)
    cancelled: bool = False
    errors: List[Dict[str, Any]] = Field(default_factory=list)


class BatchListResponse(BaseModel):
    batches: List[BatchResponse]
    total: int


class QualityScoreResponse(BaseModel):
    batch_id: str
    overall_score: float
    completeness_score: float
    accuracy_score: float
    consistency_score: float
    uniqueness_score: float
    grade: str
    recommendations: List[str] = Field(default_factory=list)
    ready_for_production: bool
    created_at: datetime


class FieldViolationResponse(BaseModel):
    column: str
    message: str
    rule: str
    value: Optional[Any] = None
    table: Optional[str] = None


class RowFailureResponse(BaseModel):
    failure_id: str
    batch_id: str
    source_row: int
    error_kind: str
    error_code: str
    message: str
    target_table: Optional[str] = None
    violations: List[FieldViolationResponse] = Field(default_factory=list)
    created_at: datetime


class FailureListResponse(BaseModel):
    failures: List[RowFailureResponse]
    total: int


class TransformationStepResponse(BaseModel):
    step: int
    transform: str
    before_hash: str
    after_hash: str


class LineageRecordResponse(BaseModel):
    lineage_id: str
    batch_id: str
    source_file: Optional[str] = None
    source_row: int
    source_column: str
    target_table: str
    target_column: str
    target_row_key: str
    source_value_hash: str
    target_value_hash: str
    transformations: List[TransformationStepResponse] = Field(default_factory=list)
    validation_passed: bool
    created_at: datetime


class LineageListResponse(BaseModel):
    records: List[LineageRecordResponse]
    total: int


class DedupCandidateResponse(BaseModel):
    candidate_id: str
    batch_id: str
    target_table: str
    record_a_id: str
    record_a_data: Dict[str, Any]
    record_b_id: str
    record_b_data: Dict[str, Any]
    overall_similarity: float
    field_similarities: Dict[str, Any]
    match_method: str
    resolution: str
    requires_human_review: bool
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    created_at: datetime


class DedupListResponse(BaseModel):
    candidates: List[DedupCandidateResponse]
    total: int


class SnapshotResponse(BaseModel):
    snapshot_id: str
    migration_batch_id: Optional[str] = None
    snapshot_name: str
    snapshot_type: str
    tables_included: List[str]
    total_rows: int
    size_bytes: int
    created_at: datetime
    expires_at: Optional[datetime] = None


class SnapshotListResponse(BaseModel):
    snapshots: List[SnapshotResponse]
    total: int


class RollbackEventResponse(BaseModel):
    rollback_id: str
    snapshot_id: str
    reason: str
    approved_by: str
    tables_restored: List[str]
    rows_restored: int
    rows_deleted: int
    duration_ms: int
    created_at: datetime


class RollbackListResponse(BaseModel):
    rollbacks: List[RollbackEventResponse]
    total: int


class RetryItemResponse(BaseModel):
    retry_id: str
    migration_batch_id: str
    failed_operation: str
    target_table: str
    row_key: str
    source_row_numbers: List[int] = Field(default_factory=list)
    error_code: str = ""
    error_message: str = ""
    attempt_number: int
    max_attempts: int
    next_retry_at: Optional[datetime] = None
    status: RetryStatusEnum
    created_at: datetime
    last_attempt_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class RetryListResponse(BaseModel):
    items: List[RetryItemResponse]
    total: int


class RetryProcessResponse(BaseModel):
    processed: int
    succeeded: int
    rescheduled: int
    exhausted: int
