from pydantic import BaseModel, Field, ConfigDict
from datetime import datetime
from typing import Any, Optional, List

from repositories.db_models import (
    FlaggedRevisionStatus,
    ModerationActionType,
    QueueItemStatus,
    QueuePriority,
    QueueType,
    RevisionCategory,
)


# Pagination
class Pagination(BaseModel):
    page: int
    page_size: int
    total: int
    total_pages: int

    @classmethod
    def build(cls, page: int, page_size: int, total: int) -> "Pagination":
        return cls(
            page=page,
            page_size=page_size,
            total=total,
            total_pages=(total + page_size - 1) // page_size if page_size else 0,
        )


# Queue Schemas
class QueueItemCreate(BaseModel):
    queue_type: QueueType
    content_type: str = Field(..., min_length=1, max_length=50)
    content_id: str = Field(..., min_length=1, max_length=64)
    priority: QueuePriority = QueuePriority.MEDIUM
    assigned_to: Optional[int] = None
    notes: Optional[str] = Field(None, max_length=5000)
    subject_user_id: Optional[int] = None


class QueueItemUpdate(BaseModel):
    priority: Optional[QueuePriority] = None
    assigned_to: Optional[int] = None
    notes: Optional[str] = Field(None, max_length=5000)
    status: Optional[QueueItemStatus] = None
    expected_version: Optional[int] = None


class QueueItemAssign(BaseModel):
    moderator_id: int
    expected_version: Optional[int] = None


class QueueItem(BaseModel):
    id: int
    queue_type: QueueType
    content_type: str
    content_id: str
    status: QueueItemStatus
    priority: QueuePriority
    assigned_to: Optional[int] = None
    notes: Optional[str] = None
    subject_user_id: Optional[int] = None
    report_count: int = 0
    reporter_ids: List[int] = []
    version: int
    created_at: datetime
    updated_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ModerationActionRecord(BaseModel):
    id: int
    queue_item_id: int
    actor_id: int
    action_type: ModerationActionType
    reason: Optional[str] = None
    details: dict[str, Any] = {}
    escalated: bool
    resulting_status: QueueItemStatus
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class QueueItemDetail(QueueItem):
    actions: List[ModerationActionRecord] = []


class QueueItemListResponse(BaseModel):
    items: List[QueueItem]
    pagination: Pagination


class QueueCountsResponse(BaseModel):
    queues: dict[str, int]
    total_pending: int
    urgent_count: int
    has_urgent: bool


# Report Schemas
class ReportCreate(BaseModel):
    content_type: str = Field(..., min_length=1, max_length=50)
    content_id: str = Field(..., min_length=1, max_length=64)
    subject_user_id: Optional[int] = None
    reason: Optional[str] = Field(None, max_length=2000)


# Decision Schemas
class DecisionCreate(BaseModel):
    queue_item_id: int
    # Plain string so unknown actions surface as InvalidAction
    action: str
    reason: Optional[str] = Field(None, max_length=5000)
    metadata: dict[str, Any] = {}
    expected_version: Optional[int] = None


class DecisionResponse(BaseModel):
    ok: bool = True
    queue_item: QueueItem
    action: ModerationActionRecord


# Bulk Schemas
class BulkDecisionItem(BaseModel):
    # Required fields are checked by the bulk processor so a missing field
    # rejects the whole batch with a ValidationError body.
    queue_item_id: Optional[int] = None
    action: Optional[str] = None
    performed_by: Optional[int] = None
    justification: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None
    expected_version: Optional[int] = None


class BulkDecisionRequest(BaseModel):
    items: List[BulkDecisionItem]


class BulkItemFailure(BaseModel):
    queue_item_id: Optional[int] = None
    error: str
    message: str

    model_config = ConfigDict(from_attributes=True)


class BulkDecisionResponse(BaseModel):
    processed: int
    succeeded: int
    failed: List[BulkItemFailure]

    model_config = ConfigDict(from_attributes=True)


# Audit Schemas
class AuditLogEntry(BaseModel):
    id: int
    actor_id: Optional[int] = None
    action: str
    target_type: str
    target_id: str
    reason: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias="details")
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuditLogListResponse(BaseModel):
    entries: List[AuditLogEntry]
    total: int
    skip: int
    limit: int


class AuditHealthResponse(BaseModel):
    dispatch_mode: str
    failure_count: int
    dropped_count: int
    queued_count: int
    buffered_count: int


# Revision Workflow Schemas
class RevisionFlagCreate(BaseModel):
    article_id: int
    revision_id: int
    flag_reason: str = Field(..., min_length=1, max_length=2000)
    category: RevisionCategory
    priority: QueuePriority = QueuePriority.MEDIUM
    notes: Optional[str] = Field(None, max_length=5000)


class RevisionAssign(BaseModel):
    expert_id: int
    expected_version: Optional[int] = None


class RevisionApprove(BaseModel):
    expected_version: Optional[int] = None


class RevisionRollback(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)
    expected_version: Optional[int] = None


class FlaggedRevision(BaseModel):
    id: int
    article_id: int
    revision_id: int
    queue_item_id: Optional[int] = None
    status: FlaggedRevisionStatus
    category: RevisionCategory
    priority: QueuePriority
    flag_reason: str
    flagged_by: int
    assigned_to: Optional[int] = None
    approved_by: Optional[int] = None
    approved_at: Optional[datetime] = None
    rolled_back_by: Optional[int] = None
    rolled_back_at: Optional[datetime] = None
    rollback_reason: Optional[str] = None
    rollback_revision_id: Optional[int] = None
    version: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class FlaggedRevisionListResponse(BaseModel):
    items: List[FlaggedRevision]
    pagination: Pagination


class FlaggedRevisionStatsResponse(BaseModel):
    total_flagged: int
    total_assigned: int
    total_pending: int
    total_approved: int
    total_rolled_back: int
    pending_by_category: dict[str, int]
    pending_by_priority: dict[str, int]
    avg_processing_hours: float
    oldest_pending: Optional[FlaggedRevision] = None

    model_config = ConfigDict(from_attributes=True)

