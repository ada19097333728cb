"""
Tests for DecisionService.
"""

from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from helpers.time_utils import ensure_utc, utc_now
from models.config import settings
from models.exceptions import (
    ForbiddenActionException,
    InvalidActionException,
    MissingMuteDaysException,
    QueueItemNotFoundException,
    RateLimitExceededException,
    StaleQueueItemException,
    ValidationException,
)
from repositories.db_models import (
    AuditLog,
    ModerationAction,
    ModerationActionType,
    QueueItemStatus,
    QueueType,
    Role,
    SanctionType,
    UserSanction,
)
from repositories.sanction_repository import SanctionRepository
from services.audit_service import AuditService
from services.decision_service import (
    Close,
    DecisionRequest,
    DecisionService,
    Reopen,
    TriageReason,
    derive_outcome,
)
from services.queue_service import QueueService

MODERATOR_ROLES = {Role.USER, Role.MODERATOR}


def _request(item, actor, action, **kwargs) -> DecisionRequest:
    kwargs.setdefault("actor_roles", MODERATOR_ROLES)
    return DecisionRequest(
        queue_item_id=item.id if hasattr(item, "id") else item,
        action=action,
        actor_id=actor.id,
        **kwargs,
    )


class TestDeriveOutcome:
    """Tests for the outcome rule."""

    @pytest.mark.parametrize(
        "action",
        [
            ModerationActionType.APPROVE,
            ModerationActionType.REJECT,
            ModerationActionType.SUSPEND,
        ],
    )
    def test_closing_actions(self, action):
        assert derive_outcome(action) == Close()

    @pytest.mark.parametrize(
        "action",
        [
            ModerationActionType.WARN,
            ModerationActionType.MUTE,
            ModerationActionType.SHADOWBAN,
        ],
    )
    def test_follow_up_actions(self, action):
        assert derive_outcome(action) == Reopen(TriageReason.FOLLOW_UP)

    def test_escalation_overrides_closing(self):
        outcome = derive_outcome(
            ModerationActionType.APPROVE, {"escalate_to_senior": True}
        )

        assert outcome == Reopen(TriageReason.ESCALATED)
        assert outcome.status == QueueItemStatus.TRIAGED


class TestValidate:
    """Tests for request validation order and rules."""

    def test_regular_user_forbidden(self, queue_item, test_user):
        with pytest.raises(ForbiddenActionException):
            DecisionService.validate(
                _request(queue_item, test_user, "approve", actor_roles={Role.USER})
            )

    def test_role_checked_before_action(self, queue_item, test_user):
        with pytest.raises(ForbiddenActionException):
            DecisionService.validate(
                _request(queue_item, test_user, "obliterate", actor_roles={Role.EXPERT})
            )

    def test_unknown_action(self, queue_item, moderator_user):
        with pytest.raises(InvalidActionException):
            DecisionService.validate(_request(queue_item, moderator_user, "obliterate"))

    @pytest.mark.parametrize("metadata", [{}, {"mute_days": 0}, {"mute_days": "3"}, {"mute_days": True}])
    def test_mute_requires_positive_days(self, queue_item, moderator_user, metadata):
        with pytest.raises(MissingMuteDaysException):
            DecisionService.validate(
                _request(queue_item, moderator_user, "mute", metadata=metadata)
            )

    def test_mute_one_day_is_valid(self, queue_item, moderator_user):
        action = DecisionService.validate(
            _request(queue_item, moderator_user, "mute", metadata={"mute_days": 1})
        )

        assert action == ModerationActionType.MUTE

    def test_suspend_days_must_be_positive(self, queue_item, moderator_user):
        with pytest.raises(ValidationException):
            DecisionService.validate(
                _request(queue_item, moderator_user, "suspend", metadata={"suspend_days": -2})
            )

    def test_admin_may_decide(self, queue_item, admin_user):
        action = DecisionService.validate(
            _request(queue_item, admin_user, "reject", actor_roles={Role.USER, Role.ADMIN})
        )

        assert action == ModerationActionType.REJECT


class TestDecide:
    """Tests for applying decisions."""

    def test_approve_closes_item(self, db_session, queue_item, moderator_user):
        result = DecisionService.decide(
            db_session, _request(queue_item, moderator_user, "approve", reason="Fine")
        )

        assert result.queue_item.status == QueueItemStatus.CLOSED
        assert result.queue_item.active_key is None
        assert result.queue_item.version == 2
        assert result.action_record.action_type == ModerationActionType.APPROVE
        assert result.action_record.resulting_status == QueueItemStatus.CLOSED

    def test_warn_triages_and_sanctions(self, db_session, queue_item, moderator_user, test_user):
        result = DecisionService.decide(
            db_session, _request(queue_item, moderator_user, "warn", reason="Be nice")
        )

        assert result.queue_item.status == QueueItemStatus.TRIAGED
        assert result.queue_item.active_key == "post:101"
        db_session.refresh(test_user)
        assert test_user.warning_count == 1
        sanctions = SanctionRepository(db_session).get_for_queue_item(queue_item.id)
        assert [s.sanction_type for s in sanctions] == [SanctionType.WARN]

    def test_mute_sets_muted_until(self, db_session, queue_item, moderator_user, test_user):
        before = utc_now()

        DecisionService.decide(
            db_session,
            _request(queue_item, moderator_user, "mute", metadata={"mute_days": 3}),
        )

        db_session.refresh(test_user)
        muted_until = ensure_utc(test_user.muted_until)
        assert muted_until is not None
        assert 3 * 86400 - 60 < (muted_until - before).total_seconds() < 3 * 86400 + 60

    def test_shadowban(self, db_session, queue_item, moderator_user, test_user):
        DecisionService.decide(db_session, _request(queue_item, moderator_user, "shadowban"))

        db_session.refresh(test_user)
        assert test_user.is_shadowbanned is True

    def test_suspend_closes_and_suspends(self, db_session, queue_item, moderator_user, test_user):
        result = DecisionService.decide(
            db_session,
            _request(queue_item, moderator_user, "suspend", metadata={"suspend_days": 7}),
        )

        assert result.queue_item.status == QueueItemStatus.CLOSED
        db_session.refresh(test_user)
        assert test_user.is_suspended is True
        assert test_user.suspended_until is not None

    def test_escalated_decision_defers_sanction(
        self, db_session, queue_item, moderator_user, test_user
    ):
        result = DecisionService.decide(
            db_session,
            _request(
                queue_item,
                moderator_user,
                "suspend",
                metadata={"escalate_to_senior": True},
            ),
        )

        assert result.queue_item.status == QueueItemStatus.TRIAGED
        assert result.action_record.escalated is True
        db_session.refresh(test_user)
        assert test_user.is_suspended is False
        assert db_session.query(UserSanction).count() == 0

    def test_decision_is_audited(self, db_session, queue_item, moderator_user, test_user):
        DecisionService.decide(
            db_session,
            _request(queue_item, moderator_user, "reject", reason="Off-topic"),
        )

        entry = db_session.query(AuditLog).one()
        assert entry.action == "moderation:reject"
        assert entry.actor_id == moderator_user.id
        assert entry.target_type == "queue_item"
        assert entry.target_id == str(queue_item.id)
        assert entry.reason == "Off-topic"
        assert entry.details["resulting_status"] == "closed"
        assert entry.details["subject_user_id"] == test_user.id

    def test_triaged_item_can_be_decided_again(self, db_session, queue_item, moderator_user):
        DecisionService.decide(db_session, _request(queue_item, moderator_user, "warn"))
        result = DecisionService.decide(
            db_session, _request(queue_item, moderator_user, "approve")
        )

        assert result.queue_item.status == QueueItemStatus.CLOSED
        history = QueueService.get_history(db_session, queue_item.id)
        assert [a.action_type for a in history] == [
            ModerationActionType.WARN,
            ModerationActionType.APPROVE,
        ]

    def test_closed_item_is_stale(self, db_session, queue_item, moderator_user):
        DecisionService.decide(db_session, _request(queue_item, moderator_user, "approve"))

        with pytest.raises(StaleQueueItemException):
            DecisionService.decide(
                db_session, _request(queue_item, moderator_user, "reject")
            )

    def test_stale_expected_version(self, db_session, queue_item, moderator_user):
        with pytest.raises(StaleQueueItemException):
            DecisionService.decide(
                db_session,
                _request(queue_item, moderator_user, "approve", expected_version=9),
            )

        db_session.refresh(queue_item)
        assert queue_item.status == QueueItemStatus.PENDING
        assert db_session.query(ModerationAction).count() == 0

    def test_missing_item(self, db_session, moderator_user):
        with pytest.raises(QueueItemNotFoundException):
            DecisionService.decide(db_session, _request(4242, moderator_user, "approve"))

    def test_audit_failure_does_not_fail_decision(
        self, db_session, queue_item, moderator_user
    ):
        error = OperationalError("INSERT", {}, Exception("database is locked"))
        with (
            patch("services.audit_service._write_log", side_effect=error),
            patch("services.audit_service._write_queue_entry", side_effect=error),
        ):
            result = DecisionService.decide(
                db_session, _request(queue_item, moderator_user, "approve")
            )

        db_session.refresh(queue_item)
        assert queue_item.status == QueueItemStatus.CLOSED
        assert AuditService.health(db_session)["failure_count"] == 1

    def test_decisions_are_rate_limited(self, db_session, moderator_user, monkeypatch):
        monkeypatch.setattr(settings, "DECISION_RATE_LIMIT_MAX_ATTEMPTS", 1)
        first = QueueService.add_item(
            db_session, queue_type=QueueType.REPORT, content_type="post", content_id=1
        )
        second = QueueService.add_item(
            db_session, queue_type=QueueType.REPORT, content_type="post", content_id=2
        )

        DecisionService.decide(db_session, _request(first, moderator_user, "approve"))

        with pytest.raises(RateLimitExceededException):
            DecisionService.decide(db_session, _request(second, moderator_user, "approve"))

    def test_rate_limit_can_be_skipped(self, db_session, moderator_user, monkeypatch):
        monkeypatch.setattr(settings, "DECISION_RATE_LIMIT_MAX_ATTEMPTS", 1)
        items = [
            QueueService.add_item(
                db_session, queue_type=QueueType.REPORT, content_type="post", content_id=i
            )
            for i in range(3)
        ]

        for item in items:
            DecisionService.decide(
                db_session,
                _request(item, moderator_user, "approve"),
                enforce_rate_limit=False,
            )
