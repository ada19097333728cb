"""
Router for admin moderation endpoints: queue, decisions and bulk decisions.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

import authentication.auth as auth
import models.schemas as schemas
import repositories.db_models as db_models
from helpers.pagination import PaginationPage, PaginationPageSize
from helpers.rate_limiter import limiter
from repositories.database import get_db
from services.audit_service import AuditService
from services.bulk_decision_service import BulkDecisionService
from services.decision_service import DecisionRequest, DecisionService
from services.queue_service import QueueService
from services.rate_limit import RateLimitAction, RateLimitService

router = APIRouter(prefix="/admin/moderation", tags=["admin-moderation"])


# ============================================================================
# Queue Endpoints
# ============================================================================


@router.get("/queue-items", response_model=schemas.QueueItemListResponse)
def list_queue_items(
    queue_type: Optional[db_models.QueueType] = None,
    status: Optional[db_models.QueueItemStatus] = None,
    sort_by: str = "priority",
    sort_order: str = "desc",
    page: PaginationPage = 1,
    page_size: PaginationPageSize = 20,
    db: Session = Depends(get_db),
    current_user: db_models.User = Depends(auth.get_moderator_user),
) -> dict:
    """
    List queue items.

    Ordered by priority (urgent first), then oldest first, unless
    sort_by=created_at is given.
    """
    items, total = QueueService.list_items(
        db,
        queue_type=queue_type,
        status=status,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        page_size=page_size,
    )
    return {
        "items": items,
        "pagination": schemas.Pagination.build(page, page_size, total),
    }


@router.post(
    "/queue-items",
    response_model=schemas.QueueItem,
    status_code=status.HTTP_201_CREATED,
)
def create_queue_item(
    item_data: schemas.QueueItemCreate,
    db: Session = Depends(get_db),
    current_user: db_models.User = Depends(auth.get_moderator_user),
) -> db_models.QueueItem:
    """Add content to a review queue."""
    return QueueService.add_item(
        db,
        queue_type=item_data.queue_type,
        content_type=item_data.content_type,
        content_id=item_data.content_id,
        priority=item_data.priority,
        assigned_to=item_data.assigned_to,
        notes=item_data.notes,
        subject_user_id=item_data.subject_user_id,
        actor_id=current_user.id,
    )


@router.get("/queue-items/{queue_item_id}", response_model=schemas.QueueItemDetail)
def get_queue_item(
    queue_item_id: int,
    db: Session = Depends(get_db),
    current_user: db_models.User = Depends(auth.get_moderator_user),
) -> dict:
    """Get a queue item with its decision history."""
    item = QueueService.get_item(db, queue_item_id)
    actions = QueueService.get_history(db, queue_item_id)
    return {
        **schemas.QueueItem.model_validate(item).model_dump(),
        "actions": [
            schemas.ModerationActionRecord.model_validate(action) for action in actions
        ],
    }


@router.patch("/queue-items/{queue_item_id}", response_model=schemas.QueueItem)
def update_queue_item(
    queue_item_id: int,
    update_data: schemas.QueueItemUpdate,
    db: Session = Depends(get_db),
    current_user: db_models.User = Depends(auth.get_moderator_user),
) -> db_models.QueueItem:
    """
    Update priority, assignee, notes or status of an active queue item.

    Terminal statuses are rejected; close items with a decision.
    """
    changes = update_data.model_dump(exclude_unset=True)
    expected_version = changes.pop("expected_version", None)
    return QueueService.update_item(
        db,
        queue_item_id,
        expected_version=expected_version,
        actor_id=current_user.id,
        **changes,
    )


@router.post("/queue-items/{queue_item_id}/assign", response_model=schemas.QueueItem)
def assign_queue_item(
    queue_item_id: int,
    assign_data: schemas.QueueItemAssign,
    db: Session = Depends(get_db),
    current_user: db_models.User = Depends(auth.get_moderator_user),
) -> db_models.QueueItem:
    """Assign a queue item to a moderator and move it into review."""
    return QueueService.assign(
        db,
        queue_item_id,
        moderator_id=assign_data.moderator_id,
        actor_id=current_user.id,
        actor_roles=auth.get_user_roles(current_user),
        expected_version=assign_data.expected_version,
    )


@router.get("/queue-counts", response_model=schemas.QueueCountsResponse)
def get_queue_counts(
    db: Session = Depends(get_db),
    current_user: db_models.User = Depends(auth.get_moderator_user),
) -> dict:
    """Active item counts per queue."""
    counts = QueueService.count_by_queue_type(db)
    return {
        "queues": {queue_type.value: count for queue_type, count in counts.queues.items()},
        "total_pending": counts.total_pending,
        "urgent_count": counts.urgent_count,
        "has_urgent": counts.has_urgent,
    }


# ============================================================================
# Decision Endpoints
# ============================================================================


@router.post("/decision", response_model=schemas.DecisionResponse)
def decide(
    decision: schemas.DecisionCreate,
    db: Session = Depends(get_db),
    current_user: db_models.User = Depends(auth.get_current_active_user),
) -> dict:
    """
    Apply a moderation decision to a queue item.

    approve/reject/suspend close the item; warn/mute/shadowban leave it
    triaged for follow-up. Setting metadata.escalate_to_senior keeps the
    item open regardless of action.
    """
    result = DecisionService.decide(
        db,
        DecisionRequest(
            queue_item_id=decision.queue_item_id,
            action=decision.action,
            actor_id=current_user.id,
            actor_roles=auth.get_user_roles(current_user),
            reason=decision.reason,
            metadata=decision.metadata,
            expected_version=decision.expected_version,
        ),
    )
    return {
        "ok": True,
        "queue_item": result.queue_item,
        "action": result.action_record,
    }


@router.post("/bulk-decision", response_model=schemas.BulkDecisionResponse)
@limiter.limit("10/minute")
def bulk_decision(
    request: Request,
    bulk_request: schemas.BulkDecisionRequest,
    db: Session = Depends(get_db),
    current_user: db_models.User = Depends(auth.get_moderator_user),
) -> schemas.BulkDecisionResponse:
    """
    Apply many decisions at once.

    Each item succeeds or fails on its own; failures are reported with
    their error code in input order.
    """
    RateLimitService.enforce(current_user.id, RateLimitAction.BULK_DECISION)
    result = BulkDecisionService.process(
        db,
        [item.model_dump() for item in bulk_request.items],
        requested_by=current_user.id,
    )
    return schemas.BulkDecisionResponse.model_validate(result)


@router.get("/audit/health", response_model=schemas.AuditHealthResponse)
def get_audit_health(
    db: Session = Depends(get_db),
    current_user: db_models.User = Depends(auth.get_moderator_user),
) -> dict:
    """Audit delivery health: failures, drops and queued entries."""
    return AuditService.health(db)


@router.get("/scheduler")
def get_scheduler_status(
    current_user: db_models.User = Depends(auth.get_admin_user),
) -> dict:
    """
    Get background scheduler status.

    Admin only endpoint to check the audit flush and rate-limit cleanup jobs.
    """
    from core.scheduler import get_scheduler_status

    return get_scheduler_status()
