"""
Repository for persisted rate-limit window state.
"""

from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from repositories.db_models import RateLimitEntry


class RateLimitRepository:
    """
    Data access for rate_limit_entries.

    Rows are keyed by string, so this does not extend BaseRepository.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_for_update(self, key: str) -> Optional[RateLimitEntry]:
        """
        Load an entry with a row lock held until the transaction ends.

        SQLite ignores FOR UPDATE; its database-level write lock gives the
        same serialization.
        """
        return (
            self.db.query(RateLimitEntry)
            .filter(RateLimitEntry.key == key)
            .with_for_update()
            .first()
        )

    def save(self, entry: RateLimitEntry) -> None:
        """Stage a new or modified entry (caller commits)."""
        self.db.add(entry)

    def delete_key(self, key: str) -> int:
        """Delete the entry for a key."""
        deleted = (
            self.db.query(RateLimitEntry)
            .filter(RateLimitEntry.key == key)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return deleted

    def delete_expired(self, now_ms: int, max_window_ms: int) -> int:
        """
        Delete entries whose window and block have both elapsed.

        Args:
            now_ms: Current time in epoch milliseconds
            max_window_ms: Longest configured window; older windows are stale

        Returns:
            Number of rows deleted
        """
        deleted = (
            self.db.query(RateLimitEntry)
            .filter(
                RateLimitEntry.window_start_ms < now_ms - max_window_ms,
                or_(
                    RateLimitEntry.blocked_until_ms.is_(None),
                    RateLimitEntry.blocked_until_ms <= now_ms,
                ),
            )
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return deleted
