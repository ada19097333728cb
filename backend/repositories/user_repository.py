"""
User repository for database operations.
"""

from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

import repositories.db_models as db_models
from helpers.time_utils import utc_now
from .base import BaseRepository


class UserRepository(BaseRepository[db_models.User]):
    """Repository for User entity database operations."""

    def __init__(self, db: Session):
        super().__init__(db_models.User, db)

    def get_by_email(self, email: str) -> Optional[db_models.User]:
        return (
            self.db.query(db_models.User).filter(db_models.User.email == email).first()
        )

    def get_assignable_by_id(self, user_id: int) -> Optional[db_models.User]:
        """
        Get a user who may currently be handed review work.

        Deactivated users and users under an unexpired suspension are
        excluded.

        Args:
            user_id: User ID

        Returns:
            User if found and able to act, None otherwise
        """
        User = db_models.User
        return (
            self.db.query(User)
            .filter(
                User.id == user_id,
                User.is_active == True,  # noqa: E712
                or_(
                    User.is_suspended == False,  # noqa: E712
                    User.suspended_until < utc_now(),
                ),
            )
            .first()
        )

    def get_by_ids(self, user_ids: List[int]) -> List[db_models.User]:
        """Get users by a list of IDs (one query)."""
        if not user_ids:
            return []
        return (
            self.db.query(db_models.User).filter(db_models.User.id.in_(user_ids)).all()
        )
