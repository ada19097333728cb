"""
Repository for user sanction operations.
"""

from sqlalchemy.orm import Session

from repositories.base import BaseRepository
from repositories.db_models import UserSanction


class SanctionRepository(BaseRepository[UserSanction]):
    """Repository for user sanction data access."""

    def __init__(self, db: Session):
        super().__init__(UserSanction, db)

    def get_for_queue_item(self, queue_item_id: int) -> list[UserSanction]:
        """Get sanctions issued as a result of decisions on a queue item."""
        return (
            self.db.query(UserSanction)
            .filter(UserSanction.queue_item_id == queue_item_id)
            .order_by(UserSanction.issued_at.asc(), UserSanction.id.asc())
            .all()
        )
