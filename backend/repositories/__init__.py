"""
Repository pattern implementation for data access layer.
"""

from .audit_repository import AuditLogRepository, AuditQueueRepository
from .base import BaseRepository
from .expert_repository import ExpertProfileRepository
from .queue_repository import QueueRepository
from .rate_limit_repository import RateLimitRepository
from .revision_repository import (
    ArticleRepository,
    FlaggedRevisionRepository,
    RevisionRepository,
)
from .sanction_repository import SanctionRepository
from .user_repository import UserRepository

__all__ = [
    "ArticleRepository",
    "AuditLogRepository",
    "AuditQueueRepository",
    "BaseRepository",
    "ExpertProfileRepository",
    "FlaggedRevisionRepository",
    "QueueRepository",
    "RateLimitRepository",
    "RevisionRepository",
    "SanctionRepository",
    "UserRepository",
]
