"""
Repository for moderation queue item operations.
"""

from typing import Optional

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from repositories.base import BaseRepository
from repositories.db_models import (
    PRIORITY_RANK,
    TERMINAL_QUEUE_STATUSES,
    ModerationAction,
    QueueItem,
    QueueItemStatus,
    QueuePriority,
    QueueType,
)

SORT_FIELDS = ("priority", "created_at")


def _priority_rank():
    """SQL expression mapping priority to its numeric rank."""
    return case(
        *[(QueueItem.priority == priority, rank) for priority, rank in PRIORITY_RANK.items()],
        else_=0,
    )


class QueueRepository(BaseRepository[QueueItem]):
    """Repository for queue item data access."""

    def __init__(self, db: Session):
        """
        Initialize queue repository.

        Args:
            db: Database session
        """
        super().__init__(QueueItem, db)

    def _active_filter(self):
        return QueueItem.status.notin_(list(TERMINAL_QUEUE_STATUSES))

    def get_active_for_content(
        self,
        content_type: str,
        content_id: str,
    ) -> Optional[QueueItem]:
        """
        Get the non-terminal queue item for a piece of content.

        Args:
            content_type: Type of content
            content_id: ID of the content

        Returns:
            Active queue item if one exists, None otherwise
        """
        return (
            self.db.query(QueueItem)
            .filter(
                QueueItem.content_type == content_type,
                QueueItem.content_id == content_id,
                self._active_filter(),
            )
            .first()
        )

    def list_items(
        self,
        queue_type: Optional[QueueType] = None,
        status: Optional[QueueItemStatus] = None,
        sort_by: str = "priority",
        sort_order: str = "desc",
        skip: int = 0,
        limit: int = 20,
    ) -> tuple[list[QueueItem], int]:
        """
        List queue items with filters, ordering and pagination.

        Default ordering is priority descending, then oldest first within a
        priority tier, with ID as a final tie-breaker. Sorting by
        ``created_at`` orders purely by age in the requested direction.

        Args:
            queue_type: Filter by queue type
            status: Filter by status
            sort_by: "priority" or "created_at"
            sort_order: "asc" or "desc"
            skip: Pagination offset
            limit: Pagination limit

        Returns:
            Tuple of (items, total matching)
        """
        query = self.db.query(QueueItem)

        if queue_type:
            query = query.filter(QueueItem.queue_type == queue_type)
        if status:
            query = query.filter(QueueItem.status == status)

        total = query.count()

        descending = sort_order == "desc"
        if sort_by == "created_at":
            created = (
                QueueItem.created_at.desc() if descending else QueueItem.created_at.asc()
            )
            order = [created, QueueItem.id.desc() if descending else QueueItem.id.asc()]
        else:
            rank = _priority_rank()
            order = [
                rank.desc() if descending else rank.asc(),
                QueueItem.created_at.asc(),
                QueueItem.id.asc(),
            ]

        items = query.order_by(*order).offset(skip).limit(limit).all()
        return items, total

    def count_active_by_queue_type(self) -> dict[QueueType, int]:
        """
        Count active items per queue type.

        Returns:
            Mapping of queue type to active item count (types with no items omitted)
        """
        rows = (
            self.db.query(QueueItem.queue_type, func.count(QueueItem.id))
            .filter(self._active_filter())
            .group_by(QueueItem.queue_type)
            .all()
        )
        return {queue_type: count for queue_type, count in rows}

    def count_active_urgent(self) -> int:
        """Count active items with urgent priority."""
        return (
            self.db.query(func.count(QueueItem.id))
            .filter(
                self._active_filter(),
                QueueItem.priority == QueuePriority.URGENT,
            )
            .scalar()
            or 0
        )

    def get_actions(self, queue_item_id: int) -> list[ModerationAction]:
        """
        Get the decision history of a queue item, oldest first.

        Args:
            queue_item_id: ID of the queue item

        Returns:
            List of moderation actions
        """
        return (
            self.db.query(ModerationAction)
            .filter(ModerationAction.queue_item_id == queue_item_id)
            .order_by(ModerationAction.created_at.asc(), ModerationAction.id.asc())
            .all()
        )
