"""
Service for the moderation queue store.

Holds queue items, enforces the one-active-item-per-content rule and
handles user reports that feed the queue.
"""

import enum
import json
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from loguru import logger
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from models.config import settings
from models.exceptions import (
    DuplicateActiveItemException,
    ForbiddenActionException,
    InternalErrorException,
    QueueItemNotFoundException,
    StaleQueueItemException,
    ValidationException,
)
from repositories.db_models import (
    PRIORITY_RANK,
    TERMINAL_QUEUE_STATUSES,
    ModerationAction,
    QueueItem,
    QueueItemStatus,
    QueuePriority,
    QueueType,
    Role,
    active_key_for,
)
from repositories.queue_repository import SORT_FIELDS, QueueRepository
from repositories.user_repository import UserRepository
from services.audit_service import AuditAction, AuditService
from services.rate_limit import RateLimitAction, RateLimitService
from services.role_service import MODERATION_ROLES, RoleService

# Distinct reporters needed to lift an item to each priority
REPORT_ESCALATION_THRESHOLDS: list[tuple[int, QueuePriority]] = [
    (10, QueuePriority.URGENT),
    (5, QueuePriority.HIGH),
    (2, QueuePriority.MEDIUM),
]

UPDATABLE_FIELDS = ("priority", "assigned_to", "notes", "status")
NON_NULLABLE_FIELDS = ("priority", "status")

MAX_REPORT_RETRIES = 3


@dataclass
class QueueCounts:
    queues: dict[QueueType, int] = field(default_factory=dict)
    total_pending: int = 0
    urgent_count: int = 0

    @property
    def has_urgent(self) -> bool:
        return self.urgent_count > 0


def priority_for_report_count(report_count: int) -> QueuePriority:
    """Priority implied by a number of distinct reporters."""
    for threshold, priority in REPORT_ESCALATION_THRESHOLDS:
        if report_count >= threshold:
            return priority
    return QueuePriority.LOW


def _higher_priority(a: QueuePriority, b: QueuePriority) -> QueuePriority:
    return a if PRIORITY_RANK[a] >= PRIORITY_RANK[b] else b


class QueueService:
    """Service for queue item operations."""

    @staticmethod
    def add_item(
        db: Session,
        queue_type: QueueType,
        content_type: str,
        content_id: int | str,
        priority: QueuePriority = QueuePriority.MEDIUM,
        assigned_to: Optional[int] = None,
        notes: Optional[str] = None,
        subject_user_id: Optional[int] = None,
        actor_id: Optional[int] = None,
    ) -> QueueItem:
        """
        Add a piece of content to a review queue.

        Args:
            db: Database session
            queue_type: Queue to route the item into
            content_type: Kind of content (e.g. "post", "article")
            content_id: ID of the content
            priority: Initial priority
            assigned_to: Optional moderator to assign immediately
            notes: Free-text notes
            subject_user_id: Author of the content, target of any sanction
            actor_id: User adding the item (None for system)

        Returns:
            Created queue item

        Raises:
            DuplicateActiveItemException: If the content already has an active item
        """
        content_id = str(content_id)
        repo = QueueRepository(db)

        if repo.get_active_for_content(content_type, content_id):
            raise DuplicateActiveItemException(content_type, content_id)

        item = QueueItem(
            queue_type=queue_type,
            content_type=content_type,
            content_id=content_id,
            status=QueueItemStatus.PENDING,
            priority=priority,
            assigned_to=assigned_to,
            notes=notes,
            subject_user_id=subject_user_id,
            active_key=active_key_for(content_type, content_id),
        )
        try:
            repo.create(item)
        except IntegrityError:
            # Lost the race against a concurrent insert for the same content
            db.rollback()
            raise DuplicateActiveItemException(content_type, content_id)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to create queue item for {content_type}:{content_id}: {e}")
            raise InternalErrorException() from e

        AuditService.record(
            db,
            actor_id=actor_id,
            action=AuditAction.QUEUE_ADD,
            target_type="queue_item",
            target_id=item.id,
            metadata={
                "queue_type": queue_type.value,
                "content_type": content_type,
                "content_id": content_id,
                "priority": priority.value,
            },
        )
        return item

    @staticmethod
    def ingest_report(
        db: Session,
        reporter_id: int,
        content_type: str,
        content_id: int | str,
        subject_user_id: Optional[int] = None,
        reason: Optional[str] = None,
        queue_type: QueueType = QueueType.REPORT,
    ) -> QueueItem:
        """
        Record a user report against a piece of content.

        Reuses the active queue item for the content when there is one,
        counting each reporter once. Priority rises with the number of
        distinct reporters and never drops.

        Args:
            db: Database session
            reporter_id: Reporting user
            content_type: Kind of content
            content_id: ID of the content
            subject_user_id: Author of the content
            reason: Report reason, appended to the item notes
            queue_type: Queue for a newly created item

        Returns:
            The queue item now tracking the content

        Raises:
            RateLimitExceededException: If the reporter is over the report limit
        """
        RateLimitService.enforce(reporter_id, RateLimitAction.REPORT)

        content_id = str(content_id)
        repo = QueueRepository(db)

        for _ in range(MAX_REPORT_RETRIES):
            item = repo.get_active_for_content(content_type, content_id)

            if item is None:
                item = QueueItem(
                    queue_type=queue_type,
                    content_type=content_type,
                    content_id=content_id,
                    status=QueueItemStatus.PENDING,
                    priority=QueuePriority.LOW,
                    subject_user_id=subject_user_id,
                    report_count=1,
                    reported_by=json.dumps([reporter_id]),
                    notes=reason,
                    active_key=active_key_for(content_type, content_id),
                )
                try:
                    return repo.create(item)
                except IntegrityError:
                    db.rollback()
                    continue

            reporters = item.reporter_ids
            if reporter_id in reporters:
                return item

            reporters.append(reporter_id)
            report_count = item.report_count + 1
            values: dict[str, Any] = {
                "reported_by": json.dumps(reporters),
                "report_count": report_count,
                "priority": _higher_priority(
                    item.priority, priority_for_report_count(report_count)
                ),
            }
            if reason:
                values["notes"] = f"{item.notes}\n{reason}" if item.notes else reason
            if subject_user_id is not None and item.subject_user_id is None:
                values["subject_user_id"] = subject_user_id

            if repo.compare_and_set(item.id, item.version, values):
                db.commit()
                db.refresh(item)
                logger.info(
                    f"Report added to queue item {item.id}",
                    queue_item_id=item.id,
                    report_count=report_count,
                )
                return item
            db.rollback()

        raise StaleQueueItemException(
            "Queue item is being updated concurrently. Please retry."
        )

    @staticmethod
    def list_items(
        db: Session,
        queue_type: Optional[QueueType] = None,
        status: Optional[QueueItemStatus] = None,
        sort_by: str = "priority",
        sort_order: str = "desc",
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> tuple[list[QueueItem], int]:
        """
        List queue items.

        Args:
            db: Database session
            queue_type: Filter by queue
            status: Filter by status
            sort_by: "priority" (default) or "created_at"
            sort_order: "desc" (default) or "asc"
            page: 1-based page number
            page_size: Items per page (capped at QUEUE_MAX_PAGE_SIZE)

        Returns:
            Tuple of (items, total)

        Raises:
            ValidationException: On an unknown sort field or order
        """
        if sort_by not in SORT_FIELDS:
            raise ValidationException(f"Cannot sort by '{sort_by}'")
        if sort_order not in ("asc", "desc"):
            raise ValidationException("sort_order must be 'asc' or 'desc'")
        if page < 1:
            raise ValidationException("page must be >= 1")

        page_size = min(
            page_size or settings.QUEUE_DEFAULT_PAGE_SIZE,
            settings.QUEUE_MAX_PAGE_SIZE,
        )
        return QueueRepository(db).list_items(
            queue_type=queue_type,
            status=status,
            sort_by=sort_by,
            sort_order=sort_order,
            skip=(page - 1) * page_size,
            limit=page_size,
        )

    @staticmethod
    def get_item(db: Session, queue_item_id: int) -> QueueItem:
        """
        Get a queue item.

        Raises:
            QueueItemNotFoundException: If the item does not exist
        """
        item = QueueRepository(db).get_by_id(queue_item_id)
        if not item:
            raise QueueItemNotFoundException(queue_item_id)
        return item

    @staticmethod
    def get_history(db: Session, queue_item_id: int) -> list[ModerationAction]:
        """Decision history of a queue item, oldest first."""
        QueueService.get_item(db, queue_item_id)
        return QueueRepository(db).get_actions(queue_item_id)

    @staticmethod
    def update_item(
        db: Session,
        queue_item_id: int,
        expected_version: Optional[int] = None,
        actor_id: Optional[int] = None,
        **changes: Any,
    ) -> QueueItem:
        """
        Apply a partial update to an active queue item.

        Accepts priority, assigned_to, notes and status. Status may only
        move between active states; closing an item is a decision and goes
        through DecisionService so it leaves an action record.

        Raises:
            QueueItemNotFoundException: If the item does not exist
            StaleQueueItemException: If the item is terminal or its version moved
            ValidationException: On unknown fields, nulls in required fields
                or a terminal status
        """
        unknown = set(changes) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationException(
                f"Cannot update field(s): {', '.join(sorted(unknown))}"
            )
        for name in NON_NULLABLE_FIELDS:
            if name in changes and changes[name] is None:
                raise ValidationException(f"{name} cannot be null")
        if changes.get("status") in TERMINAL_QUEUE_STATUSES:
            raise ValidationException(
                f"Status {changes['status'].value} is set by a moderation decision; "
                f"use POST /api/admin/moderation/decision"
            )

        repo = QueueRepository(db)
        item = QueueService.get_item(db, queue_item_id)
        if item.is_terminal:
            raise StaleQueueItemException(
                f"Queue item {queue_item_id} is {item.status.value} and can no longer change"
            )
        if expected_version is not None and expected_version != item.version:
            raise StaleQueueItemException()
        if not changes:
            return item

        try:
            if not repo.compare_and_set(item.id, item.version, dict(changes)):
                db.rollback()
                raise StaleQueueItemException()
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise InternalErrorException() from e

        db.refresh(item)
        AuditService.record(
            db,
            actor_id=actor_id,
            action=AuditAction.QUEUE_UPDATE,
            target_type="queue_item",
            target_id=item.id,
            metadata={
                name: value.value if isinstance(value, enum.Enum) else value
                for name, value in changes.items()
            },
        )
        return item

    @staticmethod
    def assign(
        db: Session,
        queue_item_id: int,
        moderator_id: int,
        actor_id: int,
        actor_roles: Iterable[Role],
        expected_version: Optional[int] = None,
    ) -> QueueItem:
        """
        Assign a queue item to a moderator and move it into review.

        Two concurrent assignments of the same item cannot both succeed:
        the loser gets a Conflict.

        Raises:
            ForbiddenActionException: If the actor is not Admin or Moderator
            ValidationException: If the assignee cannot moderate
            QueueItemNotFoundException: If the item does not exist
            StaleQueueItemException: If the item is terminal or changed
        """
        if not RoleService.has_any_role(actor_roles, MODERATION_ROLES):
            raise ForbiddenActionException("Only moderators can assign queue items")

        assignee = UserRepository(db).get_assignable_by_id(moderator_id)
        if not RoleService.has_any_role(
            RoleService.get_user_roles(assignee), MODERATION_ROLES
        ):
            raise ValidationException(f"User {moderator_id} cannot moderate")

        item = QueueService.get_item(db, queue_item_id)
        if item.is_terminal:
            raise StaleQueueItemException(
                f"Queue item {queue_item_id} is {item.status.value} and can no longer change"
            )
        version = expected_version if expected_version is not None else item.version

        try:
            updated = QueueRepository(db).compare_and_set(
                item.id,
                version,
                {"assigned_to": moderator_id, "status": QueueItemStatus.IN_REVIEW},
            )
            if not updated:
                db.rollback()
                raise StaleQueueItemException()
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise InternalErrorException() from e

        db.refresh(item)
        AuditService.record(
            db,
            actor_id=actor_id,
            action=AuditAction.MODERATION_ASSIGN,
            target_type="queue_item",
            target_id=item.id,
            metadata={"assigned_to": moderator_id},
        )
        return item

    @staticmethod
    def count_by_queue_type(db: Session) -> QueueCounts:
        """
        Count active items per queue.

        Every queue type appears in the result, with 0 when empty.
        """
        repo = QueueRepository(db)
        counts = repo.count_active_by_queue_type()
        queues = {queue_type: counts.get(queue_type, 0) for queue_type in QueueType}
        return QueueCounts(
            queues=queues,
            total_pending=sum(queues.values()),
            urgent_count=repo.count_active_urgent(),
        )
