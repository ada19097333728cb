"""
Repository for expert profile lookups.
"""

from typing import Optional

from sqlalchemy.orm import Session

from repositories.base import BaseRepository
from repositories.db_models import ExpertProfile


class ExpertProfileRepository(BaseRepository[ExpertProfile]):
    """Repository for expert profile data access."""

    def __init__(self, db: Session):
        super().__init__(ExpertProfile, db)

    def get_by_user_id(self, user_id: int) -> Optional[ExpertProfile]:
        """
        Get the expert profile for a user.

        Always reads through to the database so status changes made after
        assignment are visible immediately.

        Args:
            user_id: ID of the user

        Returns:
            Expert profile if the user has one, None otherwise
        """
        profile = (
            self.db.query(ExpertProfile)
            .filter(ExpertProfile.user_id == user_id)
            .first()
        )
        if profile is not None:
            self.db.refresh(profile)
        return profile
