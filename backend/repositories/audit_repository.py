"""
Audit Log Repository.

Provides data access for the append-only audit log and its durable
fallback queue.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from repositories import db_models
from repositories.base import BaseRepository


class AuditLogRepository(BaseRepository[db_models.AuditLog]):
    """Repository for audit log operations."""

    def __init__(self, db: Session):
        """Initialize repository."""
        super().__init__(db_models.AuditLog, db)

    def _build_query(
        self,
        actor_id: Optional[int] = None,
        action: Optional[str] = None,
        target_type: Optional[str] = None,
        target_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ):
        """Build filtered query for audit logs."""
        query = self.db.query(self.model)

        if actor_id is not None:
            query = query.filter(self.model.actor_id == actor_id)
        if action:
            query = query.filter(self.model.action == action)
        if target_type:
            query = query.filter(self.model.target_type == target_type)
        if target_id is not None:
            query = query.filter(self.model.target_id == str(target_id))
        if start_date:
            query = query.filter(self.model.created_at >= start_date)
        if end_date:
            query = query.filter(self.model.created_at <= end_date)

        return query

    def search(
        self,
        actor_id: Optional[int] = None,
        action: Optional[str] = None,
        target_type: Optional[str] = None,
        target_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> tuple[list[db_models.AuditLog], int]:
        """
        Search audit logs with filters, newest first.

        Args:
            actor_id: Filter by actor
            action: Filter by namespaced action key
            target_type: Filter by target type
            target_id: Filter by target ID
            start_date: Filter by start date
            end_date: Filter by end date
            skip: Number of records to skip
            limit: Maximum records to return

        Returns:
            Tuple of (matching entries, total count)
        """
        query = self._build_query(
            actor_id=actor_id,
            action=action,
            target_type=target_type,
            target_id=target_id,
            start_date=start_date,
            end_date=end_date,
        )
        total = query.count()
        entries = (
            query.order_by(self.model.created_at.desc(), self.model.id.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )
        return entries, total

    def get_by_actor(
        self, actor_id: int, skip: int = 0, limit: int = 100
    ) -> list[db_models.AuditLog]:
        """Get audit entries written by an actor, newest first."""
        entries, _ = self.search(actor_id=actor_id, skip=skip, limit=limit)
        return entries

    def get_by_target(
        self, target_type: str, target_id: str, skip: int = 0, limit: int = 100
    ) -> list[db_models.AuditLog]:
        """Get audit entries about a target, newest first."""
        entries, _ = self.search(
            target_type=target_type, target_id=target_id, skip=skip, limit=limit
        )
        return entries


class AuditQueueRepository(BaseRepository[db_models.AuditQueueEntry]):
    """Repository for the durable audit fallback queue."""

    def __init__(self, db: Session):
        """Initialize repository."""
        super().__init__(db_models.AuditQueueEntry, db)

    def get_batch(self, limit: int = 100) -> list[db_models.AuditQueueEntry]:
        """Get queued entries, oldest first."""
        return (
            self.db.query(self.model)
            .order_by(self.model.created_at.asc(), self.model.id.asc())
            .limit(limit)
            .all()
        )
