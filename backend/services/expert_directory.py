"""
Expert directory: verification status lookups for revision reviewers.

The directory is consulted live on every assign/approve so a revoked or
expired expert loses access immediately.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from helpers.time_utils import ensure_utc, utc_now
from models.config import get_settings
from repositories.db_models import ExpertStatus
from repositories.expert_repository import ExpertProfileRepository


@dataclass(frozen=True)
class ExpertProfileInfo:
    user_id: int
    status: ExpertStatus
    field: Optional[str] = None
    verified_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    def is_verified(self, now: Optional[datetime] = None) -> bool:
        """Verified and not past its expiry."""
        if self.status != ExpertStatus.VERIFIED:
            return False
        if self.expires_at is None:
            return True
        return ensure_utc(self.expires_at) > (now or utc_now())


class ExpertDirectory(ABC):
    """Source of expert verification data."""

    @property
    def available(self) -> bool:
        return True

    @abstractmethod
    def get_expert_profile(self, db: Session, user_id: int) -> Optional[ExpertProfileInfo]:
        """
        Look up a user's expert profile.

        Returns:
            Profile info, or None if the user has none
        """


class DatabaseExpertDirectory(ExpertDirectory):
    """Reads the expert_profiles table."""

    def get_expert_profile(self, db: Session, user_id: int) -> Optional[ExpertProfileInfo]:
        profile = ExpertProfileRepository(db).get_by_user_id(user_id)
        if profile is None:
            return None
        return ExpertProfileInfo(
            user_id=profile.user_id,
            status=profile.status,
            field=profile.field,
            verified_at=profile.verified_at,
            expires_at=profile.expires_at,
        )


class NullExpertDirectory(ExpertDirectory):
    """Directory used when expert verification is not configured."""

    @property
    def available(self) -> bool:
        return False

    def get_expert_profile(self, db: Session, user_id: int) -> Optional[ExpertProfileInfo]:
        return None


_directory_cache: Optional[ExpertDirectory] = None


def get_expert_directory() -> ExpertDirectory:
    """Get the configured expert directory."""
    global _directory_cache
    if _directory_cache is None:
        if get_settings().EXPERT_DIRECTORY_ENABLED:
            _directory_cache = DatabaseExpertDirectory()
        else:
            _directory_cache = NullExpertDirectory()
    return _directory_cache


def set_expert_directory(directory: Optional[ExpertDirectory]) -> None:
    """Replace the directory (None reverts to configuration)."""
    global _directory_cache
    _directory_cache = directory
