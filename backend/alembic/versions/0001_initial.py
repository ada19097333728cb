"""initial moderation and content-trust schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18 00:00:00.000000

Creates users, the moderation queue, decision history, sanctions, the
audit log and its durable fallback queue, shared rate-limit state, and
the wiki revision review tables.
"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

QUEUE_TYPE = sa.Enum(
    "NEW_PAGES",
    "FLAGGED_HEALTH",
    "COI_EDITS",
    "IMAGE_REVIEWS",
    "REPORT",
    "FLAGGED_REVISION",
    name="queuetype",
)
QUEUE_ITEM_STATUS = sa.Enum(
    "PENDING",
    "IN_REVIEW",
    "TRIAGED",
    "RESOLVED",
    "CLOSED",
    "ROLLED_BACK",
    name="queueitemstatus",
)
QUEUE_PRIORITY = sa.Enum("LOW", "MEDIUM", "HIGH", "URGENT", name="queuepriority")
MODERATION_ACTION_TYPE = sa.Enum(
    "APPROVE",
    "REJECT",
    "WARN",
    "MUTE",
    "SHADOWBAN",
    "SUSPEND",
    name="moderationactiontype",
)
SANCTION_TYPE = sa.Enum("WARN", "MUTE", "SHADOWBAN", "SUSPEND", name="sanctiontype")
SANCTION_STATUS = sa.Enum("ACTIVE", "EXPIRED", "REVOKED", name="sanctionstatus")
REVISION_STATUS = sa.Enum(
    "DRAFT", "PENDING", "STABLE", "REJECTED", name="revisionstatus"
)
FLAGGED_REVISION_STATUS = sa.Enum(
    "FLAGGED", "ASSIGNED", "APPROVED", "ROLLED_BACK", name="flaggedrevisionstatus"
)
REVISION_CATEGORY = sa.Enum(
    "HEALTH", "REGULATORY", "COI", "NEW_PAGE", "IMAGE", name="revisioncategory"
)
EXPERT_STATUS = sa.Enum(
    "VERIFIED", "PENDING", "REVOKED", "EXPIRED", name="expertstatus"
)


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("username", sa.String(), nullable=False),
        sa.Column("display_name", sa.String(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("is_global_admin", sa.Boolean(), nullable=True),
        sa.Column("is_moderator", sa.Boolean(), nullable=True),
        sa.Column("is_expert", sa.Boolean(), nullable=True),
        sa.Column("muted_until", sa.DateTime(), nullable=True),
        sa.Column("is_shadowbanned", sa.Boolean(), nullable=True),
        sa.Column("is_suspended", sa.Boolean(), nullable=True),
        sa.Column("suspended_until", sa.DateTime(), nullable=True),
        sa.Column("warning_count", sa.Integer(), nullable=True),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_username", "users", ["username"], unique=True)

    op.create_table(
        "queue_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("queue_type", QUEUE_TYPE, nullable=False),
        sa.Column("content_type", sa.String(50), nullable=False),
        sa.Column("content_id", sa.String(64), nullable=False),
        sa.Column("status", QUEUE_ITEM_STATUS, nullable=False),
        sa.Column("priority", QUEUE_PRIORITY, nullable=False),
        sa.Column("assigned_to", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column(
            "subject_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True
        ),
        sa.Column("report_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reported_by", sa.Text(), nullable=True),
        sa.Column("active_key", sa.String(128), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("active_key", name="uq_queue_items_active_key"),
    )
    op.create_index("ix_queue_items_id", "queue_items", ["id"])
    op.create_index(
        "ix_queue_items_content", "queue_items", ["content_type", "content_id"]
    )
    op.create_index(
        "ix_queue_items_type_status", "queue_items", ["queue_type", "status"]
    )
    op.create_index(
        "ix_queue_items_priority_created", "queue_items", ["priority", "created_at"]
    )

    op.create_table(
        "moderation_actions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "queue_item_id",
            sa.Integer(),
            sa.ForeignKey("queue_items.id"),
            nullable=False,
        ),
        sa.Column("actor_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("action_type", MODERATION_ACTION_TYPE, nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("metadata", sa.Text(), nullable=True),
        sa.Column("escalated", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("resulting_status", QUEUE_ITEM_STATUS, nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_moderation_actions_id", "moderation_actions", ["id"])
    op.create_index(
        "ix_moderation_actions_item", "moderation_actions", ["queue_item_id"]
    )
    op.create_index(
        "ix_moderation_actions_actor", "moderation_actions", ["actor_id", "created_at"]
    )

    op.create_table(
        "user_sanctions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("sanction_type", SANCTION_TYPE, nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("status", SANCTION_STATUS, nullable=False),
        sa.Column("issued_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "queue_item_id", sa.Integer(), sa.ForeignKey("queue_items.id"), nullable=True
        ),
        sa.Column("issued_at", sa.DateTime(), nullable=True),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_user_sanctions_id", "user_sanctions", ["id"])
    op.create_index(
        "ix_user_sanctions_user_status", "user_sanctions", ["user_id", "status"]
    )
    op.create_index("ix_user_sanctions_expires", "user_sanctions", ["expires_at"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "actor_id",
            sa.Integer(),
            nullable=True,
            comment="User who performed the action (NULL = system)",
        ),
        sa.Column(
            "action",
            sa.String(100),
            nullable=False,
            comment="Namespaced action key, e.g. moderation:approve, wiki:rollback",
        ),
        sa.Column("target_type", sa.String(50), nullable=False),
        sa.Column("target_id", sa.String(64), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column(
            "metadata", sa.Text(), nullable=True, comment="JSON with additional details"
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_audit_logs_id", "audit_logs", ["id"])
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"])
    op.create_index(
        "ix_audit_logs_actor_created", "audit_logs", ["actor_id", "created_at"]
    )
    op.create_index("ix_audit_logs_target", "audit_logs", ["target_type", "target_id"])
    op.create_index(
        "ix_audit_logs_action_created", "audit_logs", ["action", "created_at"]
    )

    op.create_table(
        "audit_queue",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("actor_id", sa.Integer(), nullable=True),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("target_type", sa.String(50), nullable=False),
        sa.Column("target_id", sa.String(64), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("metadata", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_attempt_at", sa.DateTime(), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
    )
    op.create_index("ix_audit_queue_id", "audit_queue", ["id"])

    op.create_table(
        "rate_limit_entries",
        sa.Column("key", sa.String(200), primary_key=True),
        sa.Column("count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("window_start_ms", sa.BigInteger(), nullable=False),
        sa.Column("blocked_until_ms", sa.BigInteger(), nullable=True),
        sa.Column("strikes", sa.Integer(), nullable=False, server_default="0"),
    )

    op.create_table(
        "articles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("slug", sa.String(200), nullable=False, unique=True),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("category", sa.String(100), nullable=True),
        sa.Column("current_revision_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_articles_id", "articles", ["id"])

    op.create_table(
        "revisions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "article_id", sa.Integer(), sa.ForeignKey("articles.id"), nullable=False
        ),
        sa.Column("rev", sa.Integer(), nullable=False),
        sa.Column("content_json", sa.Text(), nullable=False),
        sa.Column("infobox_json", sa.Text(), nullable=True),
        sa.Column("status", REVISION_STATUS, nullable=False),
        sa.Column("author_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column(
            "approved_by_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True
        ),
        sa.Column("approved_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("article_id", "rev", name="uq_revision_article_rev"),
    )
    op.create_index("ix_revisions_id", "revisions", ["id"])
    op.create_index(
        "ix_revisions_article_status", "revisions", ["article_id", "status"]
    )

    op.create_table(
        "expert_profiles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id"),
            nullable=False,
            unique=True,
        ),
        sa.Column("status", EXPERT_STATUS, nullable=False),
        sa.Column("field", sa.String(100), nullable=True),
        sa.Column("verified_at", sa.DateTime(), nullable=True),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_expert_profiles_id", "expert_profiles", ["id"])

    op.create_table(
        "flagged_revisions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "article_id", sa.Integer(), sa.ForeignKey("articles.id"), nullable=False
        ),
        sa.Column(
            "revision_id", sa.Integer(), sa.ForeignKey("revisions.id"), nullable=False
        ),
        sa.Column(
            "queue_item_id", sa.Integer(), sa.ForeignKey("queue_items.id"), nullable=True
        ),
        sa.Column("status", FLAGGED_REVISION_STATUS, nullable=False),
        sa.Column("category", REVISION_CATEGORY, nullable=False),
        sa.Column("priority", QUEUE_PRIORITY, nullable=False),
        sa.Column("flag_reason", sa.Text(), nullable=False),
        sa.Column("flagged_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("assigned_to", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("approved_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("approved_at", sa.DateTime(), nullable=True),
        sa.Column(
            "rolled_back_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True
        ),
        sa.Column("rolled_back_at", sa.DateTime(), nullable=True),
        sa.Column("rollback_reason", sa.Text(), nullable=True),
        sa.Column(
            "rollback_revision_id",
            sa.Integer(),
            sa.ForeignKey("revisions.id"),
            nullable=True,
        ),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_flagged_revisions_id", "flagged_revisions", ["id"])
    op.create_index("ix_flagged_revisions_status", "flagged_revisions", ["status"])
    op.create_index(
        "ix_flagged_revisions_revision", "flagged_revisions", ["revision_id"]
    )
    op.create_index("ix_flagged_revisions_article", "flagged_revisions", ["article_id"])


def downgrade() -> None:
    op.drop_table("flagged_revisions")
    op.drop_table("expert_profiles")
    op.drop_table("revisions")
    op.drop_table("articles")
    op.drop_table("rate_limit_entries")
    op.drop_table("audit_queue")
    op.drop_table("audit_logs")
    op.drop_table("user_sanctions")
    op.drop_table("moderation_actions")
    op.drop_table("queue_items")
    op.drop_table("users")
