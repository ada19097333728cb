import os
import sys
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _should_load_env_file() -> str | None:
    """Determine if .env should be loaded.

    For local development, load `.env` automatically so `SECRET_KEY` can be
    provided from `backend/.env` (convenience). **SECRET_KEY remains required**
    and must be set in production via environment variables.

    Do NOT auto-load `.env` when running under pytest or in CI (so tests
    that validate missing secrets continue to fail fast).
    """
    if any("pytest" in str(x) for x in sys.argv if x):
        return None
    if os.environ.get("CI") in ("1", "true", "True"):
        return None
    return ".env"


class Settings(BaseSettings):
    # Environment configuration
    ENVIRONMENT: str = Field(
        default="development",
        description="Environment: 'development', 'staging', 'production' or 'test'",
    )

    DATABASE_URL: str = "sqlite:///./data/petsocial_trust.db"
    SECRET_KEY: str = Field(
        ...,  # Required, no default
        description="JWT secret key - must be set via SECRET_KEY environment variable",
    )
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30
    CORS_ORIGINS: List[str] = Field(
        default=["http://localhost:3000"],
        description="Allowed CORS origins (comma-separated in env var)",
    )

    # Database connection pool settings
    DB_POOL_SIZE: int = Field(
        default=5,
        description="Number of persistent connections in pool",
    )
    DB_MAX_OVERFLOW: int = Field(
        default=10,
        description="Extra connections when pool exhausted",
    )
    DB_POOL_TIMEOUT: int = Field(
        default=30,
        description="Seconds to wait for connection from pool",
    )
    DB_POOL_RECYCLE: int = Field(
        default=1800,
        description="Recycle connections after N seconds (30 min default)",
    )

    # Safety: avoid creating DB schema automatically unless explicitly enabled.
    AUTO_CREATE_DB: bool = Field(
        default=False,
        description="When true (development only), call Base.metadata.create_all on startup",
    )

    # Performance settings
    SLOW_REQUEST_THRESHOLD: float = Field(
        default=1.0,
        description="Log warning for requests slower than this (seconds)",
    )

    # Moderation queue
    QUEUE_DEFAULT_PAGE_SIZE: int = Field(
        default=20,
        description="Default page size for queue listings",
    )
    QUEUE_MAX_PAGE_SIZE: int = Field(
        default=100,
        description="Maximum page size for queue listings",
    )
    BULK_MAX_ITEMS: int = Field(
        default=1000,
        description="Maximum number of items accepted in one bulk decision request",
    )

    # Rate limiting
    RATE_LIMIT_BACKEND: str = Field(
        default="memory",
        description="Rate limit state store: 'memory' (single instance), 'database' or 'redis'",
    )
    REDIS_URL: str = Field(
        default="redis://localhost:6379/0",
        description="Redis URL used when RATE_LIMIT_BACKEND is 'redis'",
    )
    REDIS_POOL_MAX: int = Field(
        default=20,
        description="Maximum connections in the shared Redis pool",
    )
    REPORT_RATE_LIMIT_MAX_ATTEMPTS: int = Field(
        default=10,
        description="Reports a user may submit per window",
    )
    REPORT_RATE_LIMIT_WINDOW_MS: int = Field(
        default=60 * 60 * 1000,
        description="Report submission window (milliseconds)",
    )
    REPORT_RATE_LIMIT_BLOCK_MS: int | None = Field(
        default=None,
        description="Block duration after exceeding the report limit (default: 2x window)",
    )
    REPORT_RATE_LIMIT_ESCALATION_FACTOR: float = Field(
        default=2.0,
        description="Block duration multiplier for each consecutive block",
    )
    EDIT_RATE_LIMIT_MAX_ATTEMPTS: int = Field(
        default=10,
        description="Revision flags / edit submissions a user may make per window",
    )
    EDIT_RATE_LIMIT_WINDOW_MS: int = Field(
        default=60 * 60 * 1000,
        description="Edit submission window (milliseconds)",
    )
    EDIT_RATE_LIMIT_BLOCK_MS: int | None = Field(
        default=None,
        description="Block duration after exceeding the edit limit (default: 2x window)",
    )
    EDIT_RATE_LIMIT_ESCALATION_FACTOR: float = Field(
        default=1.0,
        description="Block duration multiplier for each consecutive block",
    )
    DECISION_RATE_LIMIT_MAX_ATTEMPTS: int = Field(
        default=120,
        description="Single moderation decisions a moderator may make per window",
    )
    DECISION_RATE_LIMIT_WINDOW_MS: int = Field(
        default=60 * 1000,
        description="Decision frequency window (milliseconds)",
    )
    DECISION_RATE_LIMIT_BLOCK_MS: int | None = Field(
        default=None,
        description="Block duration after exceeding the decision limit (default: 2x window)",
    )
    DECISION_RATE_LIMIT_ESCALATION_FACTOR: float = Field(
        default=1.0,
        description="Block duration multiplier for each consecutive block",
    )
    BULK_DECISION_RATE_LIMIT_MAX_ATTEMPTS: int = Field(
        default=10,
        description="Bulk decision requests a moderator may make per window",
    )
    BULK_DECISION_RATE_LIMIT_WINDOW_MS: int = Field(
        default=60 * 1000,
        description="Bulk decision window (milliseconds)",
    )
    BULK_DECISION_RATE_LIMIT_BLOCK_MS: int | None = Field(
        default=None,
        description="Block duration after exceeding the bulk limit (default: 2x window)",
    )
    BULK_DECISION_RATE_LIMIT_ESCALATION_FACTOR: float = Field(
        default=1.0,
        description="Block duration multiplier for each consecutive block",
    )

    # Audit log delivery
    AUDIT_DISPATCH_MODE: str = Field(
        default="inline",
        description="Audit delivery: 'inline' (after commit, same request) or 'background' (worker thread)",
    )
    AUDIT_BUFFER_SIZE: int = Field(
        default=1000,
        description="Bounded in-process buffer for background audit delivery",
    )
    AUDIT_QUEUE_MAX_ATTEMPTS: int = Field(
        default=5,
        description="Replay attempts for a queued audit entry before it is dropped",
    )
    AUDIT_FLUSH_INTERVAL_SECONDS: int = Field(
        default=60,
        description="How often the scheduler replays the durable audit queue",
    )

    # Expert directory
    EXPERT_DIRECTORY_ENABLED: bool = Field(
        default=True,
        description="When false, expert verification lookups are unavailable (null directory)",
    )

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: str | List[str]) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",")]
        return v

    model_config = SettingsConfigDict(
        env_file=_should_load_env_file(),
        env_file_encoding="utf-8",
        extra="ignore",  # Allow extra env vars (e.g., SENTRY_DSN) without validation errors
    )


# Rely on pydantic BaseSettings to load `.env` and validate required fields.
# Instantiating Settings() will raise pydantic.ValidationError if SECRET_KEY isn't set (including when absent from `.env`).
settings = Settings()  # type: ignore[call-arg]


def get_settings() -> Settings:
    """Get the settings instance (for dependency injection)."""
    return settings
