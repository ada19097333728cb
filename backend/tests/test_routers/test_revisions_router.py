"""
Tests for the revision review endpoints.
"""

import json

import pytest

from repositories.db_models import Article, Revision

ADMIN = "/api/admin/revisions"


@pytest.fixture
def flagged(client, auth_headers, article, pending_revision):
    response = client.post(
        "/api/revisions/flag",
        json={
            "article_id": article.id,
            "revision_id": pending_revision.id,
            "flag_reason": "Unsupported medical claim",
            "category": "health",
            "priority": "high",
        },
        headers=auth_headers,
    )
    assert response.status_code == 201
    return response.json()


class TestFlag:
    def test_flag_creates_queue_item(self, flagged, pending_revision):
        assert flagged["status"] == "flagged"
        assert flagged["category"] == "health"
        assert flagged["revision_id"] == pending_revision.id
        assert flagged["queue_item_id"] is not None
        assert flagged["version"] == 1

    def test_flag_twice_conflicts(self, client, auth_headers, flagged, article, pending_revision):
        response = client.post(
            "/api/revisions/flag",
            json={
                "article_id": article.id,
                "revision_id": pending_revision.id,
                "flag_reason": "Again",
                "category": "health",
            },
            headers=auth_headers,
        )

        assert response.status_code == 409
        assert response.json()["error"] == "DuplicateActiveItem"

    def test_blank_reason_rejected(self, client, auth_headers, article, pending_revision):
        response = client.post(
            "/api/revisions/flag",
            json={
                "article_id": article.id,
                "revision_id": pending_revision.id,
                "flag_reason": "",
                "category": "health",
            },
            headers=auth_headers,
        )

        assert response.status_code == 422


class TestReviewerEndpoints:
    def test_list_requires_reviewer(self, client, auth_headers):
        response = client.get(f"{ADMIN}/flagged", headers=auth_headers)

        assert response.status_code == 403
        assert response.json()["detail"] == "Reviewer permissions required"

    def test_expert_can_list(self, client, expert_auth_headers, flagged):
        response = client.get(f"{ADMIN}/flagged", headers=expert_auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert [item["id"] for item in data["items"]] == [flagged["id"]]
        assert data["pagination"]["total"] == 1

    def test_stats(self, client, moderator_auth_headers, flagged):
        response = client.get(f"{ADMIN}/flagged/stats", headers=moderator_auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["total_flagged"] == 1
        assert data["total_pending"] == 1
        assert data["pending_by_category"]["health"] == 1
        assert data["oldest_pending"]["id"] == flagged["id"]

    def test_assign_to_verified_expert(
        self, client, moderator_auth_headers, expert_user, flagged
    ):
        response = client.post(
            f"{ADMIN}/{flagged['id']}/assign",
            json={"expert_id": expert_user.id, "expected_version": 1},
            headers=moderator_auth_headers,
        )

        assert response.status_code == 200
        assert response.json()["status"] == "assigned"
        assert response.json()["assigned_to"] == expert_user.id

    def test_assign_to_unverified_user(
        self, client, moderator_auth_headers, other_user, flagged
    ):
        response = client.post(
            f"{ADMIN}/{flagged['id']}/assign",
            json={"expert_id": other_user.id},
            headers=moderator_auth_headers,
        )

        assert response.status_code == 404
        assert response.json()["error"] == "InvalidExpert"

    def test_assign_with_stale_version(
        self, client, moderator_auth_headers, expert_user, flagged
    ):
        response = client.post(
            f"{ADMIN}/{flagged['id']}/assign",
            json={"expert_id": expert_user.id, "expected_version": 5},
            headers=moderator_auth_headers,
        )

        assert response.status_code == 409
        assert response.json()["error"] == "Conflict"

    def test_unknown_flag(self, client, moderator_auth_headers):
        response = client.post(f"{ADMIN}/999/approve", headers=moderator_auth_headers)

        assert response.status_code == 404
        assert response.json()["error"] == "NotFound"

    def test_approve_without_body(
        self, client, db_session, expert_auth_headers, flagged, article, pending_revision
    ):
        response = client.post(
            f"{ADMIN}/{flagged['id']}/approve", headers=expert_auth_headers
        )

        assert response.status_code == 200
        assert response.json()["status"] == "approved"
        db_session.expire_all()
        assert db_session.get(Article, article.id).current_revision_id == pending_revision.id

    def test_regular_user_cannot_approve(self, client, auth_headers, flagged):
        response = client.post(
            f"{ADMIN}/{flagged['id']}/approve", json={}, headers=auth_headers
        )

        assert response.status_code == 403

    def test_rollback(self, client, db_session, moderator_auth_headers, flagged, article):
        response = client.post(
            f"{ADMIN}/{flagged['id']}/rollback",
            json={"reason": "Dangerous advice"},
            headers=moderator_auth_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "rolled-back"
        assert data["rollback_reason"] == "Dangerous advice"

        db_session.expire_all()
        restored = db_session.get(Revision, data["rollback_revision_id"])
        assert restored.rev == 3
        assert json.loads(restored.content_json) == {"body": "Vaccinate puppies."}
        assert db_session.get(Article, article.id).current_revision_id == restored.id

    def test_rollback_after_approval_conflicts(
        self, client, moderator_auth_headers, flagged
    ):
        client.post(f"{ADMIN}/{flagged['id']}/approve", headers=moderator_auth_headers)

        response = client.post(
            f"{ADMIN}/{flagged['id']}/rollback",
            json={"reason": "Too late"},
            headers=moderator_auth_headers,
        )

        assert response.status_code == 409


class TestQueueDecisionsOnFlaggedRevisions:
    def test_decision_endpoint_defers_to_revision_workflow(
        self, client, moderator_auth_headers, flagged, db_session
    ):
        response = client.post(
            "/api/admin/moderation/decision",
            json={"queue_item_id": flagged["queue_item_id"], "action": "approve"},
            headers=moderator_auth_headers,
        )

        assert response.status_code == 400
        assert response.json()["error"] == "ValidationError"
        assert f"/api/admin/revisions/{flagged['id']}/approve" in response.json()["detail"]

        listed = client.get(f"{ADMIN}/flagged", headers=moderator_auth_headers).json()
        assert listed["items"][0]["status"] == "flagged"

    def test_workflow_still_approves_afterwards(
        self, client, moderator_auth_headers, flagged
    ):
        client.post(
            "/api/admin/moderation/decision",
            json={"queue_item_id": flagged["queue_item_id"], "action": "approve"},
            headers=moderator_auth_headers,
        )

        response = client.post(
            f"{ADMIN}/{flagged['id']}/approve", headers=moderator_auth_headers
        )

        assert response.status_code == 200
        assert response.json()["status"] == "approved"
