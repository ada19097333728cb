"""
Routers for the wiki revision review workflow.

``router`` serves contributors flagging revisions; ``admin_router`` serves
reviewers (Admin, Moderator, Expert).
"""

from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

import authentication.auth as auth
import models.schemas as schemas
import repositories.db_models as db_models
from helpers.pagination import get_page_params
from repositories.database import get_db
from services.revision_workflow_service import RevisionWorkflowService

router = APIRouter(prefix="/revisions", tags=["revisions"])
admin_router = APIRouter(prefix="/admin/revisions", tags=["admin-revisions"])


@router.post(
    "/flag",
    response_model=schemas.FlaggedRevision,
    status_code=status.HTTP_201_CREATED,
)
def flag_revision(
    flag_data: schemas.RevisionFlagCreate,
    db: Session = Depends(get_db),
    current_user: db_models.User = Depends(auth.get_current_active_user),
) -> db_models.FlaggedRevision:
    """Flag a revision for expert review."""
    return RevisionWorkflowService.flag_revision(
        db,
        article_id=flag_data.article_id,
        revision_id=flag_data.revision_id,
        flagged_by=current_user.id,
        flag_reason=flag_data.flag_reason,
        category=flag_data.category,
        priority=flag_data.priority,
        notes=flag_data.notes,
    )


@admin_router.get("/flagged", response_model=schemas.FlaggedRevisionListResponse)
def list_flagged_revisions(
    status: Optional[db_models.FlaggedRevisionStatus] = None,
    category: Optional[db_models.RevisionCategory] = None,
    priority: Optional[db_models.QueuePriority] = None,
    article_id: Optional[int] = None,
    assigned_to: Optional[int] = None,
    pagination: tuple[int, int] = Depends(get_page_params),
    db: Session = Depends(get_db),
    current_user: db_models.User = Depends(auth.get_reviewer_user),
) -> dict:
    """List flagged revisions, highest priority first then oldest first."""
    page, page_size = pagination
    items, total = RevisionWorkflowService.list_flagged(
        db,
        status=status,
        category=category,
        priority=priority,
        article_id=article_id,
        assigned_to=assigned_to,
        page=page,
        page_size=page_size,
    )
    return {
        "items": items,
        "pagination": schemas.Pagination.build(page, page_size, total),
    }


@admin_router.get(
    "/flagged/stats", response_model=schemas.FlaggedRevisionStatsResponse
)
def get_flagged_revision_stats(
    db: Session = Depends(get_db),
    current_user: db_models.User = Depends(auth.get_reviewer_user),
) -> schemas.FlaggedRevisionStatsResponse:
    """Workload summary for the review queue."""
    return schemas.FlaggedRevisionStatsResponse.model_validate(
        RevisionWorkflowService.get_stats(db)
    )


@admin_router.post("/{flagged_revision_id}/assign", response_model=schemas.FlaggedRevision)
def assign_flagged_revision(
    flagged_revision_id: int,
    assign_data: schemas.RevisionAssign,
    db: Session = Depends(get_db),
    current_user: db_models.User = Depends(auth.get_current_active_user),
) -> db_models.FlaggedRevision:
    """Assign a flagged revision to a verified expert."""
    return RevisionWorkflowService.assign(
        db,
        flagged_revision_id,
        expert_id=assign_data.expert_id,
        actor_id=current_user.id,
        actor_roles=auth.get_user_roles(current_user),
        expected_version=assign_data.expected_version,
    )


@admin_router.post("/{flagged_revision_id}/approve", response_model=schemas.FlaggedRevision)
def approve_flagged_revision(
    flagged_revision_id: int,
    approve_data: Optional[schemas.RevisionApprove] = None,
    db: Session = Depends(get_db),
    current_user: db_models.User = Depends(auth.get_current_active_user),
) -> db_models.FlaggedRevision:
    """Approve a flagged revision as the article's stable version."""
    return RevisionWorkflowService.approve(
        db,
        flagged_revision_id,
        actor_id=current_user.id,
        actor_roles=auth.get_user_roles(current_user),
        expected_version=approve_data.expected_version if approve_data else None,
    )


@admin_router.post("/{flagged_revision_id}/rollback", response_model=schemas.FlaggedRevision)
def rollback_flagged_revision(
    flagged_revision_id: int,
    rollback_data: schemas.RevisionRollback,
    db: Session = Depends(get_db),
    current_user: db_models.User = Depends(auth.get_current_active_user),
) -> db_models.FlaggedRevision:
    """Restore the article's latest stable content as a new revision."""
    return RevisionWorkflowService.rollback(
        db,
        flagged_revision_id,
        reason=rollback_data.reason,
        actor_id=current_user.id,
        actor_roles=auth.get_user_roles(current_user),
        expected_version=rollback_data.expected_version,
    )
