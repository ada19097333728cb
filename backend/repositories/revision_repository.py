"""
Repositories for wiki articles, revisions and flagged revisions.
"""

from typing import Optional

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from repositories.base import BaseRepository
from repositories.db_models import (
    PRIORITY_RANK,
    TERMINAL_REVISION_STATUSES,
    Article,
    FlaggedRevision,
    FlaggedRevisionStatus,
    QueuePriority,
    Revision,
    RevisionCategory,
    RevisionStatus,
)


class ArticleRepository(BaseRepository[Article]):
    """Repository for article data access."""

    def __init__(self, db: Session):
        super().__init__(Article, db)


class RevisionRepository(BaseRepository[Revision]):
    """Repository for revision data access."""

    def __init__(self, db: Session):
        super().__init__(Revision, db)

    def get_latest_stable(self, article_id: int) -> Optional[Revision]:
        """
        Get the most recent stable revision of an article.

        Args:
            article_id: ID of the article

        Returns:
            Stable revision with the highest rev number, None if none exists
        """
        return (
            self.db.query(Revision)
            .filter(
                Revision.article_id == article_id,
                Revision.status == RevisionStatus.STABLE,
            )
            .order_by(Revision.rev.desc())
            .first()
        )

    def count_for_article(self, article_id: int) -> int:
        """Count all revisions of an article."""
        return (
            self.db.query(func.count(Revision.id))
            .filter(Revision.article_id == article_id)
            .scalar()
            or 0
        )


class FlaggedRevisionRepository(BaseRepository[FlaggedRevision]):
    """Repository for flagged revision data access."""

    def __init__(self, db: Session):
        super().__init__(FlaggedRevision, db)

    def _active_filter(self):
        return FlaggedRevision.status.notin_(list(TERMINAL_REVISION_STATUSES))

    def get_active_for_revision(self, revision_id: int) -> Optional[FlaggedRevision]:
        """Get the non-terminal flag on a revision, if any."""
        return (
            self.db.query(FlaggedRevision)
            .filter(
                FlaggedRevision.revision_id == revision_id,
                self._active_filter(),
            )
            .first()
        )

    def get_by_queue_item_id(self, queue_item_id: int) -> Optional[FlaggedRevision]:
        return (
            self.db.query(FlaggedRevision)
            .filter(FlaggedRevision.queue_item_id == queue_item_id)
            .first()
        )

    def list_flagged(
        self,
        status: Optional[FlaggedRevisionStatus] = None,
        category: Optional[RevisionCategory] = None,
        priority: Optional[QueuePriority] = None,
        article_id: Optional[int] = None,
        assigned_to: Optional[int] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> tuple[list[FlaggedRevision], int]:
        """
        List flagged revisions, highest priority first then oldest first.

        Returns:
            Tuple of (items, total matching)
        """
        query = self.db.query(FlaggedRevision)

        if status:
            query = query.filter(FlaggedRevision.status == status)
        if category:
            query = query.filter(FlaggedRevision.category == category)
        if priority:
            query = query.filter(FlaggedRevision.priority == priority)
        if article_id is not None:
            query = query.filter(FlaggedRevision.article_id == article_id)
        if assigned_to is not None:
            query = query.filter(FlaggedRevision.assigned_to == assigned_to)

        total = query.count()

        rank = case(
            *[
                (FlaggedRevision.priority == value, order)
                for value, order in PRIORITY_RANK.items()
            ],
            else_=0,
        )
        items = (
            query.order_by(
                rank.desc(), FlaggedRevision.created_at.asc(), FlaggedRevision.id.asc()
            )
            .offset(skip)
            .limit(limit)
            .all()
        )
        return items, total

    def count_by_status(self) -> dict[FlaggedRevisionStatus, int]:
        rows = (
            self.db.query(FlaggedRevision.status, func.count(FlaggedRevision.id))
            .group_by(FlaggedRevision.status)
            .all()
        )
        return {status: count for status, count in rows}

    def count_pending_by_category(self) -> dict[RevisionCategory, int]:
        rows = (
            self.db.query(FlaggedRevision.category, func.count(FlaggedRevision.id))
            .filter(self._active_filter())
            .group_by(FlaggedRevision.category)
            .all()
        )
        return {category: count for category, count in rows}

    def count_pending_by_priority(self) -> dict[QueuePriority, int]:
        rows = (
            self.db.query(FlaggedRevision.priority, func.count(FlaggedRevision.id))
            .filter(self._active_filter())
            .group_by(FlaggedRevision.priority)
            .all()
        )
        return {priority: count for priority, count in rows}

    def get_oldest_pending(self) -> Optional[FlaggedRevision]:
        return (
            self.db.query(FlaggedRevision)
            .filter(self._active_filter())
            .order_by(FlaggedRevision.created_at.asc(), FlaggedRevision.id.asc())
            .first()
        )

    def get_processed(self) -> list[FlaggedRevision]:
        """Get all flagged revisions that reached a terminal status."""
        return (
            self.db.query(FlaggedRevision)
            .filter(FlaggedRevision.status.in_(list(TERMINAL_REVISION_STATUSES)))
            .all()
        )
