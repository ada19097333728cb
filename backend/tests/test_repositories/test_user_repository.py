"""
Tests for UserRepository.
"""

from datetime import timedelta

from helpers.time_utils import utc_now
from repositories.user_repository import UserRepository


def test_assignable_excludes_inactive(db_session, make_user):
    user = make_user("gone", is_moderator=True, is_active=False)

    assert UserRepository(db_session).get_assignable_by_id(user.id) is None


def test_assignable_excludes_current_suspension(db_session, make_user):
    indefinite = make_user("banned", is_suspended=True)
    timed = make_user(
        "timeout", is_suspended=True, suspended_until=utc_now() + timedelta(days=2)
    )
    repo = UserRepository(db_session)

    assert repo.get_assignable_by_id(indefinite.id) is None
    assert repo.get_assignable_by_id(timed.id) is None


def test_assignable_after_suspension_expired(db_session, make_user):
    user = make_user(
        "back", is_suspended=True, suspended_until=utc_now() - timedelta(days=1)
    )

    assert UserRepository(db_session).get_assignable_by_id(user.id).id == user.id


def test_get_by_ids(db_session, test_user, other_user):
    repo = UserRepository(db_session)

    assert {u.id for u in repo.get_by_ids([test_user.id, other_user.id, 999])} == {
        test_user.id,
        other_user.id,
    }
    assert repo.get_by_ids([]) == []
