"""
Tests for BulkDecisionService.
"""

import pytest

from models.config import settings
from models.exceptions import BulkRequestValidationException
from repositories.db_models import AuditLog, QueueItemStatus, QueueType
from services.bulk_decision_service import BulkDecisionService, BulkItemFailure
from services.queue_service import QueueService


@pytest.fixture
def second_item(db_session, test_user):
    return QueueService.add_item(
        db_session,
        queue_type=QueueType.REPORT,
        content_type="comment",
        content_id="202",
        subject_user_id=test_user.id,
    )


def _item(queue_item_id, actor, action="approve", **extra):
    return {
        "queue_item_id": queue_item_id,
        "action": action,
        "performed_by": actor.id,
        "justification": "Reviewed in batch",
        **extra,
    }


class TestProcess:
    """Tests for BulkDecisionService.process."""

    def test_partial_failure_is_reported_per_item(
        self, db_session, queue_item, second_item, moderator_user
    ):
        result = BulkDecisionService.process(
            db_session,
            [
                _item(queue_item.id, moderator_user),
                _item(999, moderator_user),
                _item(second_item.id, moderator_user, action="reject"),
            ],
            requested_by=moderator_user.id,
        )

        assert result.processed == 3
        assert result.succeeded == 2
        assert result.failed == [
            BulkItemFailure(
                queue_item_id=999,
                error="NotFound",
                message="Queue item with ID 999 not found",
            )
        ]
        db_session.refresh(queue_item)
        db_session.refresh(second_item)
        assert queue_item.status == QueueItemStatus.CLOSED
        assert second_item.status == QueueItemStatus.CLOSED

    def test_failures_keep_input_order(self, db_session, queue_item, moderator_user):
        result = BulkDecisionService.process(
            db_session,
            [
                _item(998, moderator_user),
                _item(queue_item.id, moderator_user, action="mute"),
                _item(997, moderator_user),
            ],
        )

        assert [(f.queue_item_id, f.error) for f in result.failed] == [
            (998, "NotFound"),
            (queue_item.id, "ValidationError"),
            (997, "NotFound"),
        ]
        assert result.succeeded == 0

    def test_per_item_validation_errors(self, db_session, queue_item, moderator_user, test_user):
        result = BulkDecisionService.process(
            db_session,
            [
                _item(queue_item.id, test_user),
                _item(queue_item.id, moderator_user, action="obliterate"),
            ],
        )

        assert [f.error for f in result.failed] == ["Forbidden", "InvalidAction"]

    def test_same_item_twice_second_is_stale(self, db_session, queue_item, moderator_user):
        result = BulkDecisionService.process(
            db_session,
            [
                _item(queue_item.id, moderator_user),
                _item(queue_item.id, moderator_user, action="reject"),
            ],
        )

        assert result.succeeded == 1
        assert result.failed[0].error == "Conflict"

    def test_unknown_actor_fails_item(self, db_session, queue_item):
        result = BulkDecisionService.process(
            db_session,
            [
                {
                    "queue_item_id": queue_item.id,
                    "action": "approve",
                    "performed_by": 4242,
                    "justification": "x",
                }
            ],
        )

        assert result.failed[0].error == "Forbidden"

    def test_moderator_cannot_act_as_someone_else(
        self, db_session, queue_item, moderator_user, admin_user
    ):
        result = BulkDecisionService.process(
            db_session,
            [_item(queue_item.id, admin_user)],
            requested_by=moderator_user.id,
        )

        assert result.succeeded == 0
        assert result.failed[0].error == "Forbidden"
        db_session.refresh(queue_item)
        assert queue_item.status == QueueItemStatus.PENDING
        assert (
            db_session.query(AuditLog)
            .filter(AuditLog.action == "moderation:approve")
            .count()
            == 0
        )

    def test_admin_delegation_records_submitter(
        self, db_session, queue_item, moderator_user, admin_user
    ):
        result = BulkDecisionService.process(
            db_session,
            [_item(queue_item.id, moderator_user)],
            requested_by=admin_user.id,
        )

        assert result.succeeded == 1
        audit = (
            db_session.query(AuditLog)
            .filter(AuditLog.action == "moderation:approve")
            .one()
        )
        assert audit.actor_id == moderator_user.id
        assert audit.details["requested_by"] == admin_user.id

    def test_bulk_items_skip_decision_rate_limit(
        self, db_session, moderator_user, monkeypatch
    ):
        monkeypatch.setattr(settings, "DECISION_RATE_LIMIT_MAX_ATTEMPTS", 1)
        items = [
            QueueService.add_item(
                db_session, queue_type=QueueType.REPORT, content_type="post", content_id=i
            )
            for i in range(3)
        ]

        result = BulkDecisionService.process(
            db_session, [_item(item.id, moderator_user) for item in items]
        )

        assert result.succeeded == 3

    def test_summary_is_audited(self, db_session, queue_item, moderator_user):
        BulkDecisionService.process(
            db_session,
            [_item(queue_item.id, moderator_user), _item(999, moderator_user)],
            requested_by=moderator_user.id,
        )

        summary = (
            db_session.query(AuditLog)
            .filter(AuditLog.action == "moderation:bulk-decision")
            .one()
        )
        assert summary.target_type == "bulk_decision"
        assert summary.details["processed"] == 2
        assert summary.details["succeeded"] == 1
        assert summary.details["failed"] == 1
        assert summary.details["queue_item_ids"] == [queue_item.id, 999]


class TestRequestValidation:
    """The whole request is rejected only when it is malformed."""

    def test_empty_list(self, db_session):
        with pytest.raises(BulkRequestValidationException):
            BulkDecisionService.process(db_session, [])

    def test_not_a_list(self, db_session):
        with pytest.raises(BulkRequestValidationException):
            BulkDecisionService.process(db_session, {"queue_item_id": 1})

    @pytest.mark.parametrize(
        "missing", ["queue_item_id", "action", "performed_by", "justification"]
    )
    def test_missing_required_field(self, db_session, moderator_user, missing):
        item = _item(1, moderator_user)
        del item[missing]

        with pytest.raises(BulkRequestValidationException) as exc_info:
            BulkDecisionService.process(db_session, [item])

        assert missing in exc_info.value.message

    def test_blank_justification(self, db_session, moderator_user):
        item = _item(1, moderator_user, justification="")

        with pytest.raises(BulkRequestValidationException):
            BulkDecisionService.process(db_session, [item])

    def test_metadata_must_be_object(self, db_session, moderator_user):
        with pytest.raises(BulkRequestValidationException):
            BulkDecisionService.process(
                db_session, [_item(1, moderator_user, metadata=["mute_days", 3])]
            )

    def test_too_many_items(self, db_session, moderator_user, monkeypatch):
        monkeypatch.setattr(settings, "BULK_MAX_ITEMS", 2)

        with pytest.raises(BulkRequestValidationException):
            BulkDecisionService.process(
                db_session, [_item(i, moderator_user) for i in range(3)]
            )

    def test_malformed_request_changes_nothing(self, db_session, queue_item, moderator_user):
        with pytest.raises(BulkRequestValidationException):
            BulkDecisionService.process(
                db_session,
                [_item(queue_item.id, moderator_user), {"queue_item_id": 5}],
            )

        db_session.refresh(queue_item)
        assert queue_item.status == QueueItemStatus.PENDING
        assert db_session.query(AuditLog).count() == 0
