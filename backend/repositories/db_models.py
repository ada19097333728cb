"""
Database models using SQLAlchemy 2.0 style with Mapped type hints.

This module defines all database models with proper type annotations
for improved IDE support and type checking.
"""

import enum
import json
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from repositories.database import Base


class Role(str, enum.Enum):
    """Roles resolved by the role authority."""

    ADMIN = "Admin"
    MODERATOR = "Moderator"
    EXPERT = "Expert"
    USER = "User"


# Moderation Queue Enums


class QueueType(str, enum.Enum):
    """Review queues an item can be routed into."""

    NEW_PAGES = "new-pages"
    FLAGGED_HEALTH = "flagged-health"
    COI_EDITS = "coi-edits"
    IMAGE_REVIEWS = "image-reviews"
    REPORT = "report"
    FLAGGED_REVISION = "flagged-revision"


class QueueItemStatus(str, enum.Enum):
    """Lifecycle status of a queue item."""

    PENDING = "pending"
    IN_REVIEW = "in_review"
    TRIAGED = "triaged"
    RESOLVED = "resolved"
    CLOSED = "closed"
    ROLLED_BACK = "rolled-back"


class QueuePriority(str, enum.Enum):
    """Queue item priority."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class ModerationActionType(str, enum.Enum):
    """Actions a moderator can apply to a queue item."""

    APPROVE = "approve"
    REJECT = "reject"
    WARN = "warn"
    MUTE = "mute"
    SHADOWBAN = "shadowban"
    SUSPEND = "suspend"


class SanctionType(str, enum.Enum):
    """Sanctions applied to a user as a side effect of a decision."""

    WARN = "warn"
    MUTE = "mute"
    SHADOWBAN = "shadowban"
    SUSPEND = "suspend"


class SanctionStatus(str, enum.Enum):
    """Status of a user sanction."""

    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"


# Wiki Revision Enums


class RevisionStatus(str, enum.Enum):
    """Status of a wiki revision."""

    DRAFT = "draft"
    PENDING = "pending"
    STABLE = "stable"
    REJECTED = "rejected"


class FlaggedRevisionStatus(str, enum.Enum):
    """Revision workflow states."""

    FLAGGED = "flagged"
    ASSIGNED = "assigned"
    APPROVED = "approved"
    ROLLED_BACK = "rolled-back"


class RevisionCategory(str, enum.Enum):
    """Why a revision was flagged for review."""

    HEALTH = "health"
    REGULATORY = "regulatory"
    COI = "coi"
    NEW_PAGE = "new-page"
    IMAGE = "image"


class ExpertStatus(str, enum.Enum):
    """Verification status of an expert profile."""

    VERIFIED = "verified"
    PENDING = "pending"
    REVOKED = "revoked"
    EXPIRED = "expired"


TERMINAL_QUEUE_STATUSES = frozenset(
    {
        QueueItemStatus.RESOLVED,
        QueueItemStatus.CLOSED,
        QueueItemStatus.ROLLED_BACK,
    }
)

TERMINAL_REVISION_STATUSES = frozenset(
    {FlaggedRevisionStatus.APPROVED, FlaggedRevisionStatus.ROLLED_BACK}
)

# Higher rank surfaces first in the queue
PRIORITY_RANK: dict[QueuePriority, int] = {
    QueuePriority.LOW: 1,
    QueuePriority.MEDIUM: 2,
    QueuePriority.HIGH: 3,
    QueuePriority.URGENT: 4,
}


def _utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


def active_key_for(content_type: str, content_id: str) -> str:
    """Build the uniqueness key held by a queue item while it is active."""
    return f"{content_type}:{content_id}"


def _load_json(raw: Optional[str]) -> dict:
    return json.loads(raw) if raw else {}


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    email: Mapped[str] = mapped_column(String, unique=True, index=True, nullable=False)
    username: Mapped[str] = mapped_column(
        String, unique=True, index=True, nullable=False
    )
    display_name: Mapped[str] = mapped_column(String, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)

    # Role flags (resolved into a role set by authentication.auth)
    is_global_admin: Mapped[bool] = mapped_column(Boolean, default=False)
    is_moderator: Mapped[bool] = mapped_column(Boolean, default=False)
    is_expert: Mapped[bool] = mapped_column(Boolean, default=False)

    # Sanction state maintained by the decision engine
    muted_until: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    is_shadowbanned: Mapped[bool] = mapped_column(Boolean, default=False)
    is_suspended: Mapped[bool] = mapped_column(Boolean, default=False)
    suspended_until: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True
    )
    warning_count: Mapped[int] = mapped_column(Integer, default=0)

    expert_profile: Mapped[Optional["ExpertProfile"]] = relationship(
        "ExpertProfile", back_populates="user", uselist=False
    )


# ============================================================================
# Moderation Queue Models
# ============================================================================


class QueueItem(Base):
    """
    A unit of moderation work tied to one piece of content.

    At most one active item may exist per (content_type, content_id). The
    ``active_key`` column carries that pair while the item is non-terminal
    and is cleared on transition to a terminal status, so the unique
    constraint enforces the rule at the database level.
    """

    __tablename__ = "queue_items"
    __table_args__ = (
        UniqueConstraint("active_key", name="uq_queue_items_active_key"),
        Index("ix_queue_items_content", "content_type", "content_id"),
        Index("ix_queue_items_type_status", "queue_type", "status"),
        Index("ix_queue_items_priority_created", "priority", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    queue_type: Mapped[QueueType] = mapped_column(Enum(QueueType), nullable=False)
    content_type: Mapped[str] = mapped_column(String(50), nullable=False)
    content_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[QueueItemStatus] = mapped_column(
        Enum(QueueItemStatus), default=QueueItemStatus.PENDING, nullable=False
    )
    priority: Mapped[QueuePriority] = mapped_column(
        Enum(QueuePriority), default=QueuePriority.MEDIUM, nullable=False
    )
    assigned_to: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=True
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    subject_user_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=True
    )  # Author of the content under review
    report_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    reported_by: Mapped[Optional[str]] = mapped_column(
        Text, nullable=True
    )  # JSON array of reporter IDs
    active_key: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utc_now, onupdate=_utc_now
    )
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Relationships
    actions: Mapped[List["ModerationAction"]] = relationship(
        "ModerationAction",
        back_populates="queue_item",
        order_by="ModerationAction.id",
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_QUEUE_STATUSES

    @property
    def reporter_ids(self) -> list[int]:
        return json.loads(self.reported_by) if self.reported_by else []


class ModerationAction(Base):
    """
    Append-only history of decisions taken on a queue item.

    Several actions may reference the same item (e.g. an escalation
    followed by a final decision). Rows are never deleted.
    """

    __tablename__ = "moderation_actions"
    __table_args__ = (
        Index("ix_moderation_actions_item", "queue_item_id"),
        Index("ix_moderation_actions_actor", "actor_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    queue_item_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("queue_items.id"), nullable=False
    )
    actor_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=False
    )
    action_type: Mapped[ModerationActionType] = mapped_column(
        Enum(ModerationActionType), nullable=False
    )
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    metadata_json: Mapped[Optional[str]] = mapped_column(
        "metadata", Text, nullable=True
    )
    escalated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    resulting_status: Mapped[QueueItemStatus] = mapped_column(
        Enum(QueueItemStatus), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)

    queue_item: Mapped["QueueItem"] = relationship(
        "QueueItem", back_populates="actions"
    )

    @property
    def details(self) -> dict:
        return _load_json(self.metadata_json)


class UserSanction(Base):
    """
    Sanctions applied to a content author by a moderation decision.

    Mutes and timed suspensions carry an expiry; warnings and shadowbans
    stay active until revoked.
    """

    __tablename__ = "user_sanctions"
    __table_args__ = (
        Index("ix_user_sanctions_user_status", "user_id", "status"),
        Index("ix_user_sanctions_expires", "expires_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=False
    )
    sanction_type: Mapped[SanctionType] = mapped_column(
        Enum(SanctionType), nullable=False
    )
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[SanctionStatus] = mapped_column(
        Enum(SanctionStatus), default=SanctionStatus.ACTIVE, nullable=False
    )
    issued_by: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=False
    )
    queue_item_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("queue_items.id"), nullable=True
    )
    issued_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True
    )  # NULL = until revoked

    user: Mapped["User"] = relationship(
        "User", foreign_keys=[user_id], backref="sanctions"
    )


# ============================================================================
# Audit Log Models
# ============================================================================


class AuditLog(Base):
    """
    Append-only compliance record of trust-affecting actions.

    Queryable independently by actor and by target. No foreign keys so
    entries outlive the rows they describe.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("ix_audit_logs_actor_created", "actor_id", "created_at"),
        Index("ix_audit_logs_target", "target_type", "target_id"),
        Index("ix_audit_logs_action_created", "action", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    actor_id: Mapped[Optional[int]] = mapped_column(
        Integer, nullable=True, comment="User who performed the action (NULL = system)"
    )
    action: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Namespaced action key, e.g. moderation:approve, wiki:rollback",
    )
    target_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[str] = mapped_column(String(64), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    metadata_json: Mapped[Optional[str]] = mapped_column(
        "metadata", Text, nullable=True, comment="JSON with additional details"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utc_now, nullable=False, index=True
    )

    @property
    def details(self) -> dict:
        return _load_json(self.metadata_json)


class AuditQueueEntry(Base):
    """
    Durable fallback for audit entries whose direct write failed.

    Replayed into audit_logs by the scheduler, keeping the original
    created_at. Dropped after AUDIT_QUEUE_MAX_ATTEMPTS failed replays.
    """

    __tablename__ = "audit_queue"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    actor_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    target_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[str] = mapped_column(String(64), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    metadata_json: Mapped[Optional[str]] = mapped_column(
        "metadata", Text, nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utc_now, nullable=False
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_attempt_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True
    )
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    @property
    def details(self) -> dict:
        return _load_json(self.metadata_json)


# ============================================================================
# Rate Limit Models
# ============================================================================


class RateLimitEntry(Base):
    """Shared rate-limit window state, keyed by '<actor_id>:<action>'."""

    __tablename__ = "rate_limit_entries"

    key: Mapped[str] = mapped_column(String(200), primary_key=True)
    count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    window_start_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)
    blocked_until_ms: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    strikes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


# ============================================================================
# Wiki Content Models
# ============================================================================


class Article(Base):
    __tablename__ = "articles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    slug: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    current_revision_id: Mapped[Optional[int]] = mapped_column(
        Integer, nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)

    revisions: Mapped[List["Revision"]] = relationship(
        "Revision", back_populates="article", order_by="Revision.rev"
    )


class Revision(Base):
    """
    Immutable snapshot of an article's content.

    Rows are only ever appended; rollback creates a new revision copying
    an earlier stable one.
    """

    __tablename__ = "revisions"
    __table_args__ = (
        UniqueConstraint("article_id", "rev", name="uq_revision_article_rev"),
        Index("ix_revisions_article_status", "article_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    article_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("articles.id"), nullable=False
    )
    rev: Mapped[int] = mapped_column(Integer, nullable=False)
    content_json: Mapped[str] = mapped_column(Text, nullable=False)
    infobox_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[RevisionStatus] = mapped_column(
        Enum(RevisionStatus), default=RevisionStatus.PENDING, nullable=False
    )
    author_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=True
    )
    approved_by_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=True
    )
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)

    article: Mapped["Article"] = relationship("Article", back_populates="revisions")


class ExpertProfile(Base):
    __tablename__ = "expert_profiles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id"), unique=True, nullable=False
    )
    status: Mapped[ExpertStatus] = mapped_column(
        Enum(ExpertStatus), default=ExpertStatus.PENDING, nullable=False
    )
    field: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    user: Mapped["User"] = relationship("User", back_populates="expert_profile")


class FlaggedRevision(Base):
    """
    Revision workflow entity.

    flagged -> assigned -> approved, or flagged/assigned -> rolled-back.
    ``version`` is bumped on every transition for compare-and-set updates.
    """

    __tablename__ = "flagged_revisions"
    __table_args__ = (
        Index("ix_flagged_revisions_status", "status"),
        Index("ix_flagged_revisions_revision", "revision_id"),
        Index("ix_flagged_revisions_article", "article_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    article_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("articles.id"), nullable=False
    )
    revision_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("revisions.id"), nullable=False
    )
    queue_item_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("queue_items.id"), nullable=True
    )
    status: Mapped[FlaggedRevisionStatus] = mapped_column(
        Enum(FlaggedRevisionStatus),
        default=FlaggedRevisionStatus.FLAGGED,
        nullable=False,
    )
    category: Mapped[RevisionCategory] = mapped_column(
        Enum(RevisionCategory), nullable=False
    )
    priority: Mapped[QueuePriority] = mapped_column(
        Enum(QueuePriority), default=QueuePriority.MEDIUM, nullable=False
    )
    flag_reason: Mapped[str] = mapped_column(Text, nullable=False)
    flagged_by: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=False
    )
    assigned_to: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=True
    )
    approved_by: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=True
    )
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    rolled_back_by: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=True
    )
    rolled_back_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True
    )
    rollback_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rollback_revision_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("revisions.id"), nullable=True
    )
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utc_now, onupdate=_utc_now
    )

    article: Mapped["Article"] = relationship("Article")
    revision: Mapped["Revision"] = relationship(
        "Revision", foreign_keys=[revision_id]
    )
    queue_item: Mapped[Optional["QueueItem"]] = relationship("QueueItem")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_REVISION_STATUSES
