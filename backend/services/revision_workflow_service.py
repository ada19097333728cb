"""
Service for the wiki revision review workflow.

A flagged revision moves flagged -> assigned -> approved, or from
flagged/assigned to rolled-back. Each transition is a compare-and-set on
the flagged revision's version, applied together with its queue item and
article changes in one transaction, then audited.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Optional

from loguru import logger
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from helpers.time_utils import ensure_utc, utc_now
from models.config import settings
from models.exceptions import (
    ArticleNotFoundException,
    DuplicateActiveItemException,
    FlaggedRevisionNotFoundException,
    ForbiddenActionException,
    InternalErrorException,
    InvalidExpertException,
    NoStableRevisionException,
    RevisionNotFoundException,
    StaleRevisionStateException,
    ValidationException,
)
from repositories.db_models import (
    FlaggedRevision,
    FlaggedRevisionStatus,
    QueueItem,
    QueueItemStatus,
    QueuePriority,
    QueueType,
    Revision,
    RevisionCategory,
    RevisionStatus,
    Role,
    active_key_for,
)
from repositories.queue_repository import QueueRepository
from repositories.revision_repository import (
    ArticleRepository,
    FlaggedRevisionRepository,
    RevisionRepository,
)
from repositories.user_repository import UserRepository
from services.audit_service import AuditAction, AuditService
from services.expert_directory import get_expert_directory
from services.rate_limit import RateLimitAction, RateLimitService
from services.role_service import MODERATION_ROLES, REVIEW_ROLES, RoleService

CATEGORY_QUEUES: dict[RevisionCategory, QueueType] = {
    RevisionCategory.HEALTH: QueueType.FLAGGED_HEALTH,
    RevisionCategory.COI: QueueType.COI_EDITS,
    RevisionCategory.NEW_PAGE: QueueType.NEW_PAGES,
    RevisionCategory.IMAGE: QueueType.IMAGE_REVIEWS,
}

ASSIGNABLE_STATUSES = frozenset(
    {FlaggedRevisionStatus.FLAGGED, FlaggedRevisionStatus.ASSIGNED}
)

REVISION_CONTENT_TYPE = "revision"
FLAGGED_REVISION_TARGET = "flagged_revision"


@dataclass
class FlaggedRevisionStats:
    total_flagged: int = 0
    total_assigned: int = 0
    total_pending: int = 0
    total_approved: int = 0
    total_rolled_back: int = 0
    pending_by_category: dict[str, int] = field(default_factory=dict)
    pending_by_priority: dict[str, int] = field(default_factory=dict)
    avg_processing_hours: float = 0.0
    oldest_pending: Optional[FlaggedRevision] = None


def queue_type_for(category: RevisionCategory) -> QueueType:
    return CATEGORY_QUEUES.get(category, QueueType.FLAGGED_REVISION)


def _require_review_role(actor_roles: Iterable[Role], verb: str) -> set[Role]:
    roles = set(actor_roles)
    if not RoleService.has_any_role(roles, REVIEW_ROLES):
        raise ForbiddenActionException(f"You do not have permission to {verb} revisions")
    return roles


def _processed_at(flagged: FlaggedRevision) -> Optional[datetime]:
    if flagged.status == FlaggedRevisionStatus.APPROVED:
        return flagged.approved_at
    return flagged.rolled_back_at


class RevisionWorkflowService:
    """Service for flagged revision review."""

    @staticmethod
    def get_flagged_revision(db: Session, flagged_revision_id: int) -> FlaggedRevision:
        """
        Raises:
            FlaggedRevisionNotFoundException: If it does not exist
        """
        flagged = FlaggedRevisionRepository(db).get_by_id(flagged_revision_id)
        if not flagged:
            raise FlaggedRevisionNotFoundException(flagged_revision_id)
        return flagged

    @staticmethod
    def _load_for_transition(
        db: Session,
        flagged_revision_id: int,
        allowed_statuses: Iterable[FlaggedRevisionStatus],
        expected_version: Optional[int],
    ) -> tuple[FlaggedRevision, int]:
        flagged = RevisionWorkflowService.get_flagged_revision(db, flagged_revision_id)
        if flagged.status not in set(allowed_statuses):
            raise StaleRevisionStateException(
                f"Flagged revision {flagged.id} is {flagged.status.value}"
            )
        version = expected_version if expected_version is not None else flagged.version
        return flagged, version

    @staticmethod
    def _transition_queue_item(
        db: Session, queue_item_id: Optional[int], values: dict[str, Any]
    ) -> None:
        """Stage a queue item update alongside a revision transition."""
        if queue_item_id is None:
            return
        repo = QueueRepository(db)
        item = repo.get_by_id(queue_item_id)
        if item is None or item.is_terminal:
            return
        if not repo.compare_and_set(item.id, item.version, values):
            raise StaleRevisionStateException(
                "Queue item was modified concurrently. Reload and retry."
            )

    @staticmethod
    def _commit_transition(db: Session, flagged: FlaggedRevision) -> None:
        try:
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Revision workflow write failed for {flagged.id}: {e}")
            raise InternalErrorException() from e
        db.refresh(flagged)

    @staticmethod
    def flag_revision(
        db: Session,
        article_id: int,
        revision_id: int,
        flagged_by: int,
        flag_reason: str,
        category: RevisionCategory,
        priority: QueuePriority = QueuePriority.MEDIUM,
        notes: Optional[str] = None,
    ) -> FlaggedRevision:
        """
        Flag a revision for review and queue it.

        Args:
            db: Database session
            article_id: Article the revision belongs to
            revision_id: Revision to review
            flagged_by: User flagging the revision
            flag_reason: Why the revision needs review
            category: Review category; decides the target queue
            priority: Initial priority
            notes: Notes copied onto the queue item

        Returns:
            The created flagged revision

        Raises:
            ArticleNotFoundException: If the article does not exist
            RevisionNotFoundException: If the revision is not part of the article
            DuplicateActiveItemException: If the revision is already under review
            RateLimitExceededException: If the user is flagging too often
        """
        if not flag_reason or not flag_reason.strip():
            raise ValidationException("flag_reason is required")

        article = ArticleRepository(db).get_by_id(article_id)
        if not article:
            raise ArticleNotFoundException(f"Article with ID {article_id} not found")
        revision = RevisionRepository(db).get_by_id(revision_id)
        if not revision or revision.article_id != article_id:
            raise RevisionNotFoundException(
                f"Revision {revision_id} not found on article {article_id}"
            )

        content_id = str(revision_id)
        if FlaggedRevisionRepository(db).get_active_for_revision(revision_id):
            raise DuplicateActiveItemException(REVISION_CONTENT_TYPE, content_id)

        RateLimitService.enforce(flagged_by, RateLimitAction.EDIT)

        queue_item = QueueItem(
            queue_type=queue_type_for(category),
            content_type=REVISION_CONTENT_TYPE,
            content_id=content_id,
            status=QueueItemStatus.PENDING,
            priority=priority,
            notes=notes or flag_reason,
            subject_user_id=revision.author_id,
            active_key=active_key_for(REVISION_CONTENT_TYPE, content_id),
        )
        flagged = FlaggedRevision(
            article_id=article_id,
            revision_id=revision_id,
            status=FlaggedRevisionStatus.FLAGGED,
            category=category,
            priority=priority,
            flag_reason=flag_reason,
            flagged_by=flagged_by,
        )
        try:
            db.add(queue_item)
            db.flush()
            flagged.queue_item_id = queue_item.id
            db.add(flagged)
            db.commit()
        except IntegrityError:
            db.rollback()
            raise DuplicateActiveItemException(REVISION_CONTENT_TYPE, content_id)
        except SQLAlchemyError as e:
            db.rollback()
            raise InternalErrorException() from e

        db.refresh(flagged)
        AuditService.record(
            db,
            actor_id=flagged_by,
            action=AuditAction.WIKI_FLAG,
            target_type=FLAGGED_REVISION_TARGET,
            target_id=flagged.id,
            reason=flag_reason,
            metadata={
                "article_id": article_id,
                "revision_id": revision_id,
                "category": category.value,
                "queue_item_id": queue_item.id,
            },
        )
        return flagged

    @staticmethod
    def assign(
        db: Session,
        flagged_revision_id: int,
        expert_id: int,
        actor_id: int,
        actor_roles: Iterable[Role],
        expected_version: Optional[int] = None,
    ) -> FlaggedRevision:
        """
        Assign a flagged revision to an expert.

        When expert verification is available the assignee must hold a
        verified, unexpired profile at the moment of assignment.

        Raises:
            ForbiddenActionException: If the actor cannot review revisions
            InvalidExpertException: If the assignee is not a verified expert
            FlaggedRevisionNotFoundException: If it does not exist
            StaleRevisionStateException: If it is terminal or changed concurrently
        """
        _require_review_role(actor_roles, "assign")

        if UserRepository(db).get_assignable_by_id(expert_id) is None:
            raise InvalidExpertException(expert_id)
        directory = get_expert_directory()
        if directory.available:
            profile = directory.get_expert_profile(db, expert_id)
            if profile is None or not profile.is_verified():
                raise InvalidExpertException(expert_id)

        flagged, version = RevisionWorkflowService._load_for_transition(
            db, flagged_revision_id, ASSIGNABLE_STATUSES, expected_version
        )

        repo = FlaggedRevisionRepository(db)
        try:
            if not repo.compare_and_set(
                flagged.id,
                version,
                {"status": FlaggedRevisionStatus.ASSIGNED, "assigned_to": expert_id},
            ):
                raise StaleRevisionStateException()
            RevisionWorkflowService._transition_queue_item(
                db,
                flagged.queue_item_id,
                {"status": QueueItemStatus.IN_REVIEW, "assigned_to": expert_id},
            )
        except StaleRevisionStateException:
            db.rollback()
            raise
        except SQLAlchemyError as e:
            db.rollback()
            raise InternalErrorException() from e
        RevisionWorkflowService._commit_transition(db, flagged)

        AuditService.record(
            db,
            actor_id=actor_id,
            action=AuditAction.WIKI_ASSIGN,
            target_type=FLAGGED_REVISION_TARGET,
            target_id=flagged.id,
            metadata={"expert_id": expert_id, "revision_id": flagged.revision_id},
        )
        return flagged

    @staticmethod
    def approve(
        db: Session,
        flagged_revision_id: int,
        actor_id: int,
        actor_roles: Iterable[Role],
        expected_version: Optional[int] = None,
    ) -> FlaggedRevision:
        """
        Approve a flagged revision as the article's stable version.

        An actor whose only reviewing role is Expert must be verified at
        the time of approval; the check reads the directory live.

        Raises:
            ForbiddenActionException: If the actor may not approve
            FlaggedRevisionNotFoundException: If it does not exist
            StaleRevisionStateException: If it is terminal or changed concurrently
        """
        roles = _require_review_role(actor_roles, "approve")
        if not RoleService.has_any_role(roles, MODERATION_ROLES):
            profile = get_expert_directory().get_expert_profile(db, actor_id)
            if profile is None or not profile.is_verified():
                raise ForbiddenActionException(
                    "Expert verification is missing, revoked or expired"
                )

        flagged, version = RevisionWorkflowService._load_for_transition(
            db, flagged_revision_id, ASSIGNABLE_STATUSES, expected_version
        )
        now = utc_now()

        repo = FlaggedRevisionRepository(db)
        try:
            if not repo.compare_and_set(
                flagged.id,
                version,
                {
                    "status": FlaggedRevisionStatus.APPROVED,
                    "approved_by": actor_id,
                    "approved_at": now,
                },
            ):
                raise StaleRevisionStateException()

            revision = RevisionRepository(db).get_by_id(flagged.revision_id)
            revision.status = RevisionStatus.STABLE
            revision.approved_by_id = actor_id
            revision.approved_at = now
            article = ArticleRepository(db).get_by_id(flagged.article_id)
            article.current_revision_id = revision.id

            RevisionWorkflowService._transition_queue_item(
                db,
                flagged.queue_item_id,
                {
                    "status": QueueItemStatus.RESOLVED,
                    "active_key": None,
                    "reviewed_at": now,
                },
            )
        except StaleRevisionStateException:
            db.rollback()
            raise
        except SQLAlchemyError as e:
            db.rollback()
            raise InternalErrorException() from e
        RevisionWorkflowService._commit_transition(db, flagged)

        AuditService.record(
            db,
            actor_id=actor_id,
            action=AuditAction.WIKI_APPROVE,
            target_type=FLAGGED_REVISION_TARGET,
            target_id=flagged.id,
            metadata={
                "article_id": flagged.article_id,
                "revision_id": flagged.revision_id,
            },
        )
        return flagged

    @staticmethod
    def rollback(
        db: Session,
        flagged_revision_id: int,
        reason: str,
        actor_id: int,
        actor_roles: Iterable[Role],
        expected_version: Optional[int] = None,
    ) -> FlaggedRevision:
        """
        Reject a flagged revision by restoring the latest stable content.

        History is never rewritten: the stable content is copied into a new
        revision, which is approved by the acting reviewer and becomes the
        article's current revision.

        Raises:
            ForbiddenActionException: If the actor cannot review revisions
            FlaggedRevisionNotFoundException: If it does not exist
            StaleRevisionStateException: If it is terminal or changed concurrently
            NoStableRevisionException: If the article has no stable revision
        """
        _require_review_role(actor_roles, "roll back")

        flagged, version = RevisionWorkflowService._load_for_transition(
            db, flagged_revision_id, ASSIGNABLE_STATUSES, expected_version
        )

        revision_repo = RevisionRepository(db)
        stable = revision_repo.get_latest_stable(flagged.article_id)
        if stable is None:
            raise NoStableRevisionException(flagged.article_id)

        now = utc_now()
        restored = Revision(
            article_id=flagged.article_id,
            rev=revision_repo.count_for_article(flagged.article_id) + 1,
            content_json=stable.content_json,
            infobox_json=stable.infobox_json,
            status=RevisionStatus.STABLE,
            author_id=actor_id,
            approved_by_id=actor_id,
            approved_at=now,
            created_at=now,
        )

        repo = FlaggedRevisionRepository(db)
        try:
            db.add(restored)
            db.flush()
            if not repo.compare_and_set(
                flagged.id,
                version,
                {
                    "status": FlaggedRevisionStatus.ROLLED_BACK,
                    "rolled_back_by": actor_id,
                    "rolled_back_at": now,
                    "rollback_reason": reason,
                    "rollback_revision_id": restored.id,
                },
            ):
                raise StaleRevisionStateException()

            article = ArticleRepository(db).get_by_id(flagged.article_id)
            article.current_revision_id = restored.id

            RevisionWorkflowService._transition_queue_item(
                db,
                flagged.queue_item_id,
                {
                    "status": QueueItemStatus.ROLLED_BACK,
                    "active_key": None,
                    "reviewed_at": now,
                },
            )
        except StaleRevisionStateException:
            db.rollback()
            raise
        except IntegrityError as e:
            # Another rollback claimed the same rev number
            db.rollback()
            raise StaleRevisionStateException() from e
        except SQLAlchemyError as e:
            db.rollback()
            raise InternalErrorException() from e
        RevisionWorkflowService._commit_transition(db, flagged)

        AuditService.record(
            db,
            actor_id=actor_id,
            action=AuditAction.WIKI_ROLLBACK,
            target_type=FLAGGED_REVISION_TARGET,
            target_id=flagged.id,
            reason=reason,
            metadata={
                "article_id": flagged.article_id,
                "revision_id": flagged.revision_id,
                "restored_from_revision_id": stable.id,
                "rollback_revision_id": flagged.rollback_revision_id,
            },
        )
        return flagged

    @staticmethod
    def list_flagged(
        db: Session,
        status: Optional[FlaggedRevisionStatus] = None,
        category: Optional[RevisionCategory] = None,
        priority: Optional[QueuePriority] = None,
        article_id: Optional[int] = None,
        assigned_to: Optional[int] = None,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> tuple[list[FlaggedRevision], int]:
        """List flagged revisions, highest priority first then oldest first."""
        if page < 1:
            raise ValidationException("page must be >= 1")
        page_size = min(
            page_size or settings.QUEUE_DEFAULT_PAGE_SIZE,
            settings.QUEUE_MAX_PAGE_SIZE,
        )
        return FlaggedRevisionRepository(db).list_flagged(
            status=status,
            category=category,
            priority=priority,
            article_id=article_id,
            assigned_to=assigned_to,
            skip=(page - 1) * page_size,
            limit=page_size,
        )

    @staticmethod
    def get_stats(db: Session) -> FlaggedRevisionStats:
        """
        Summarize the review workload.

        Processing time runs from flagging to approval or rollback.
        """
        repo = FlaggedRevisionRepository(db)
        by_status = repo.count_by_status()

        processed = repo.get_processed()
        hours = [
            (ensure_utc(_processed_at(fr)) - ensure_utc(fr.created_at)).total_seconds()
            / 3600
            for fr in processed
            if _processed_at(fr) is not None and fr.created_at is not None
        ]

        flagged = by_status.get(FlaggedRevisionStatus.FLAGGED, 0)
        assigned = by_status.get(FlaggedRevisionStatus.ASSIGNED, 0)
        return FlaggedRevisionStats(
            total_flagged=flagged,
            total_assigned=assigned,
            total_pending=flagged + assigned,
            total_approved=by_status.get(FlaggedRevisionStatus.APPROVED, 0),
            total_rolled_back=by_status.get(FlaggedRevisionStatus.ROLLED_BACK, 0),
            pending_by_category={
                category.value: count
                for category, count in repo.count_pending_by_category().items()
            },
            pending_by_priority={
                priority.value: count
                for priority, count in repo.count_pending_by_priority().items()
            },
            avg_processing_hours=round(sum(hours) / len(hours), 2) if hours else 0.0,
            oldest_pending=repo.get_oldest_pending(),
        )
