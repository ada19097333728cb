"""
Decision engine for moderation queue items.

A decision is validated, turned into an explicit outcome once, and then
applied atomically: the queue item transition, the action record and any
user sanction commit together or not at all. The audit entry is written
after the commit.
"""

import enum
import json
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Iterable, Optional, Union

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from helpers.time_utils import utc_now
from models.exceptions import (
    ForbiddenActionException,
    InternalErrorException,
    InvalidActionException,
    MissingMuteDaysException,
    QueueItemNotFoundException,
    StaleQueueItemException,
    ValidationException,
)
from repositories.db_models import (
    ModerationAction,
    ModerationActionType,
    QueueItem,
    QueueItemStatus,
    Role,
    SanctionType,
    UserSanction,
)
from repositories.queue_repository import QueueRepository
from repositories.revision_repository import FlaggedRevisionRepository
from repositories.sanction_repository import SanctionRepository
from repositories.user_repository import UserRepository
from services.audit_service import AuditAction, AuditService
from services.rate_limit import RateLimitAction, RateLimitService
from services.role_service import MODERATION_ROLES, RoleService


class TriageReason(str, enum.Enum):
    """Why a decided item stays open."""

    ESCALATED = "escalated"
    FOLLOW_UP = "follow-up"


@dataclass(frozen=True)
class Close:
    status: QueueItemStatus = QueueItemStatus.CLOSED


@dataclass(frozen=True)
class Reopen:
    reason: TriageReason
    status: QueueItemStatus = QueueItemStatus.TRIAGED


DecisionOutcome = Union[Close, Reopen]

CLOSING_ACTIONS = frozenset(
    {
        ModerationActionType.APPROVE,
        ModerationActionType.REJECT,
        ModerationActionType.SUSPEND,
    }
)

SANCTIONING_ACTIONS: dict[ModerationActionType, SanctionType] = {
    ModerationActionType.WARN: SanctionType.WARN,
    ModerationActionType.MUTE: SanctionType.MUTE,
    ModerationActionType.SHADOWBAN: SanctionType.SHADOWBAN,
    ModerationActionType.SUSPEND: SanctionType.SUSPEND,
}


@dataclass
class DecisionRequest:
    queue_item_id: int
    action: str
    actor_id: int
    actor_roles: Iterable[Role]
    reason: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    expected_version: Optional[int] = None


@dataclass
class DecisionResult:
    queue_item: QueueItem
    action_record: ModerationAction
    outcome: DecisionOutcome


def is_escalated(metadata: Optional[dict[str, Any]]) -> bool:
    return bool((metadata or {}).get("escalate_to_senior"))


def derive_outcome(
    action: ModerationActionType, metadata: Optional[dict[str, Any]] = None
) -> DecisionOutcome:
    """
    Decide whether an action closes its queue item.

    Escalation always keeps the item open for a senior reviewer, even for
    actions that would otherwise close it.
    """
    if is_escalated(metadata):
        return Reopen(TriageReason.ESCALATED)
    if action in CLOSING_ACTIONS:
        return Close()
    return Reopen(TriageReason.FOLLOW_UP)


def _positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 1


def parse_action(action: str | ModerationActionType) -> ModerationActionType:
    """
    Raises:
        InvalidActionException: If the action is unknown
    """
    if isinstance(action, ModerationActionType):
        return action
    try:
        return ModerationActionType(action)
    except ValueError:
        raise InvalidActionException(str(action))


class DecisionService:
    """Service for applying moderation decisions."""

    @staticmethod
    def validate(request: DecisionRequest) -> ModerationActionType:
        """
        Validate a request without touching storage.

        Checks run in order: role, action, action-specific metadata.

        Returns:
            The parsed action type
        """
        if not RoleService.has_any_role(request.actor_roles, MODERATION_ROLES):
            raise ForbiddenActionException(
                "Only moderators can decide on queue items"
            )

        action = parse_action(request.action)
        metadata = request.metadata or {}

        if action == ModerationActionType.MUTE and not _positive_int(
            metadata.get("mute_days")
        ):
            raise MissingMuteDaysException()

        if (
            action == ModerationActionType.SUSPEND
            and metadata.get("suspend_days") is not None
            and not _positive_int(metadata.get("suspend_days"))
        ):
            raise ValidationException("suspend_days must be an integer >= 1")

        return action

    @staticmethod
    def decide(
        db: Session,
        request: DecisionRequest,
        enforce_rate_limit: bool = True,
    ) -> DecisionResult:
        """
        Apply a moderation decision to a queue item.

        Args:
            db: Database session
            request: The decision
            enforce_rate_limit: Apply the per-moderator decision limit
                (disabled for items of a bulk request)

        Returns:
            DecisionResult with the refreshed item and recorded action

        Raises:
            ForbiddenActionException: If the actor is not Admin or Moderator
            InvalidActionException: If the action is unknown
            MissingMuteDaysException: If a mute lacks a valid duration
            RateLimitExceededException: If the actor is deciding too fast
            QueueItemNotFoundException: If the item does not exist
            ValidationException: If the item belongs to the revision workflow
            StaleQueueItemException: If the item is terminal or was changed
            InternalErrorException: If the write fails
        """
        action = DecisionService.validate(request)
        metadata = dict(request.metadata or {})

        if enforce_rate_limit:
            RateLimitService.enforce(request.actor_id, RateLimitAction.DECISION)

        repo = QueueRepository(db)
        item = repo.get_by_id(request.queue_item_id)
        if not item:
            raise QueueItemNotFoundException(request.queue_item_id)
        flagged = FlaggedRevisionRepository(db).get_by_queue_item_id(item.id)
        if flagged is not None:
            raise ValidationException(
                f"Queue item {item.id} tracks flagged revision {flagged.id}; "
                f"use /api/admin/revisions/{flagged.id}/approve or /rollback"
            )
        if item.is_terminal:
            raise StaleQueueItemException(
                f"Queue item {item.id} is already {item.status.value}"
            )
        version = (
            request.expected_version
            if request.expected_version is not None
            else item.version
        )

        outcome = derive_outcome(action, metadata)
        now = utc_now()
        values: dict[str, Any] = {"status": outcome.status, "reviewed_at": now}
        if isinstance(outcome, Close):
            values["active_key"] = None

        try:
            if not repo.compare_and_set(item.id, version, values):
                db.rollback()
                raise StaleQueueItemException()

            action_record = ModerationAction(
                queue_item_id=item.id,
                actor_id=request.actor_id,
                action_type=action,
                reason=request.reason,
                metadata_json=json.dumps(metadata) if metadata else None,
                escalated=isinstance(outcome, Reopen)
                and outcome.reason == TriageReason.ESCALATED,
                resulting_status=outcome.status,
                created_at=now,
            )
            db.add(action_record)

            if not action_record.escalated and action in SANCTIONING_ACTIONS:
                DecisionService._apply_sanction(
                    db, item, action, request, metadata, now
                )

            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            # bind() so braces in the driver message are not treated as placeholders
            logger.bind(queue_item_id=request.queue_item_id).error(
                f"Decision on queue item {request.queue_item_id} failed: {e}"
            )
            raise InternalErrorException() from e

        db.refresh(item)
        db.refresh(action_record)

        AuditService.record(
            db,
            actor_id=request.actor_id,
            action=AuditAction.moderation(action.value),
            target_type="queue_item",
            target_id=item.id,
            reason=request.reason,
            metadata={
                **metadata,
                "resulting_status": outcome.status.value,
                "subject_user_id": item.subject_user_id,
            },
        )

        return DecisionResult(
            queue_item=item,
            action_record=action_record,
            outcome=outcome,
        )

    @staticmethod
    def _apply_sanction(
        db: Session,
        item: QueueItem,
        action: ModerationActionType,
        request: DecisionRequest,
        metadata: dict[str, Any],
        now,
    ) -> Optional[UserSanction]:
        """Stage the user-side effect of a decision (caller commits)."""
        if item.subject_user_id is None:
            return None
        user = UserRepository(db).get_by_id(item.subject_user_id)
        if user is None:
            logger.warning(
                f"Queue item {item.id} references missing user {item.subject_user_id}"
            )
            return None

        expires_at = None
        if action == ModerationActionType.WARN:
            user.warning_count = (user.warning_count or 0) + 1
        elif action == ModerationActionType.MUTE:
            expires_at = now + timedelta(days=metadata["mute_days"])
            user.muted_until = expires_at
        elif action == ModerationActionType.SHADOWBAN:
            user.is_shadowbanned = True
        elif action == ModerationActionType.SUSPEND:
            suspend_days = metadata.get("suspend_days")
            if suspend_days:
                expires_at = now + timedelta(days=suspend_days)
            user.is_suspended = True
            user.suspended_until = expires_at

        sanction = UserSanction(
            user_id=user.id,
            sanction_type=SANCTIONING_ACTIONS[action],
            reason=request.reason,
            issued_by=request.actor_id,
            queue_item_id=item.id,
            issued_at=now,
            expires_at=expires_at,
        )
        SanctionRepository(db).add(sanction)
        return sanction
