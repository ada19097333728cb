"""
Tests for BaseRepository.compare_and_set.
"""

from repositories.base import BaseRepository
from repositories.db_models import QueueItem, QueuePriority


class TestCompareAndSet:
    def test_matching_version_updates_and_bumps(self, db_session, queue_item):
        repo = BaseRepository(QueueItem, db_session)

        assert repo.compare_and_set(
            queue_item.id, 1, {"priority": QueuePriority.HIGH}
        )
        db_session.commit()

        db_session.refresh(queue_item)
        assert queue_item.priority == QueuePriority.HIGH
        assert queue_item.version == 2

    def test_stale_version_changes_nothing(self, db_session, queue_item):
        repo = BaseRepository(QueueItem, db_session)

        assert not repo.compare_and_set(
            queue_item.id, 3, {"priority": QueuePriority.HIGH}
        )
        db_session.commit()

        db_session.refresh(queue_item)
        assert queue_item.priority == QueuePriority.MEDIUM
        assert queue_item.version == 1

    def test_second_writer_with_same_version_loses(self, db_session, queue_item):
        repo = BaseRepository(QueueItem, db_session)

        first = repo.compare_and_set(queue_item.id, 1, {"notes": "first"})
        second = repo.compare_and_set(queue_item.id, 1, {"notes": "second"})
        db_session.commit()

        db_session.refresh(queue_item)
        assert (first, second) == (True, False)
        assert queue_item.notes == "first"

    def test_unknown_id(self, db_session):
        repo = BaseRepository(QueueItem, db_session)

        assert not repo.compare_and_set(404, 1, {"notes": "x"})
