"""
Router for user content reports.
"""

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

import authentication.auth as auth
import models.schemas as schemas
import repositories.db_models as db_models
from helpers.rate_limiter import limiter
from repositories.database import get_db
from services.queue_service import QueueService

router = APIRouter(prefix="/reports", tags=["reports"])


@router.post(
    "",
    response_model=schemas.QueueItem,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit("30/minute")
def report_content(
    request: Request,
    report: schemas.ReportCreate,
    db: Session = Depends(get_db),
    current_user: db_models.User = Depends(auth.get_current_active_user),
) -> db_models.QueueItem:
    """
    Report a piece of content for moderation.

    Repeat reports by the same user count once. Each user is limited to
    REPORT_RATE_LIMIT_MAX_ATTEMPTS reports per window.
    """
    return QueueService.ingest_report(
        db,
        reporter_id=current_user.id,
        content_type=report.content_type,
        content_id=report.content_id,
        subject_user_id=report.subject_user_id,
        reason=report.reason,
    )
