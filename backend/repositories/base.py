"""
Base repository class providing common database operations,
including optimistic compare-and-set updates for versioned rows.
"""

from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from repositories.database import Base

T = TypeVar("T", bound=Base)  # type: ignore[type-arg]


class BaseRepository(Generic[T]):
    """
    Base repository providing common CRUD operations.

    Type parameter T should be a SQLAlchemy model class.
    """

    def __init__(self, model: type[T], db: Session):
        """
        Initialize repository.

        Args:
            model: SQLAlchemy model class
            db: Database session
        """
        self.model = model
        self.db = db

    def get_by_id(self, id: int) -> T | None:
        """
        Get entity by ID.

        Args:
            id: Entity ID

        Returns:
            Entity if found, None otherwise
        """
        return self.db.query(self.model).filter(self.model.id == id).first()

    def add(self, entity: T) -> None:
        """
        Add entity to session without committing.

        Use this when the entity must commit together with other changes.

        Args:
            entity: Entity to add
        """
        self.db.add(entity)

    def create(self, entity: T) -> T:
        """
        Create new entity.

        Args:
            entity: Entity to create

        Returns:
            Created entity
        """
        self.db.add(entity)
        self.db.commit()
        self.db.refresh(entity)
        return entity

    def count(self) -> int:
        """
        Count total number of entities.

        Returns:
            Total count
        """
        return self.db.query(self.model).count()

    def compare_and_set(self, id: int, expected_version: int, values: dict) -> bool:
        """
        Update an entity only if its version still matches.

        The model must have an integer ``version`` column. The version is
        incremented as part of the same UPDATE statement. Does not commit.

        Args:
            id: Entity ID
            expected_version: Version the caller read before deciding
            values: Column values to write

        Returns:
            True if the row was updated, False if another writer won the race
        """
        updated = (
            self.db.query(self.model)
            .filter(
                self.model.id == id,
                self.model.version == expected_version,
            )
            .update(
                {**values, "version": expected_version + 1},
                synchronize_session="fetch",
            )
        )
        return updated == 1
