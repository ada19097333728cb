"""
Router for querying the audit log.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

import authentication.auth as auth
import models.schemas as schemas
import repositories.db_models as db_models
from helpers.pagination import PaginationLimit, PaginationSkip
from repositories.database import get_db
from services.audit_service import AuditService

router = APIRouter(prefix="/admin/audit", tags=["admin-audit"])


@router.get("", response_model=schemas.AuditLogListResponse)
def search_audit_log(
    actor_id: Optional[int] = None,
    action: Optional[str] = None,
    target_type: Optional[str] = None,
    target_id: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    skip: PaginationSkip = 0,
    limit: PaginationLimit = 50,
    db: Session = Depends(get_db),
    current_user: db_models.User = Depends(auth.get_admin_user),
) -> dict:
    """Search audit entries, newest first."""
    entries, total = AuditService.search(
        db,
        actor_id=actor_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        start_date=start_date,
        end_date=end_date,
        skip=skip,
        limit=limit,
    )
    return {
        "entries": [schemas.AuditLogEntry.model_validate(e) for e in entries],
        "total": total,
        "skip": skip,
        "limit": limit,
    }


@router.get("/actor/{actor_id}", response_model=list[schemas.AuditLogEntry])
def get_audit_by_actor(
    actor_id: int,
    skip: PaginationSkip = 0,
    limit: PaginationLimit = 50,
    db: Session = Depends(get_db),
    current_user: db_models.User = Depends(auth.get_admin_user),
) -> list:
    """Everything an actor did, newest first."""
    return AuditService.get_by_actor(db, actor_id, skip=skip, limit=limit)


@router.get(
    "/target/{target_type}/{target_id}",
    response_model=list[schemas.AuditLogEntry],
)
def get_audit_by_target(
    target_type: str,
    target_id: str,
    skip: PaginationSkip = 0,
    limit: PaginationLimit = 50,
    db: Session = Depends(get_db),
    current_user: db_models.User = Depends(auth.get_admin_user),
) -> list:
    """Everything done to a target, newest first."""
    return AuditService.get_by_target(
        db, target_type, target_id, skip=skip, limit=limit
    )
