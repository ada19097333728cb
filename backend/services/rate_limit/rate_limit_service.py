"""
Rate Limit Service - Per-actor, per-action attempt limiting.

Follows the static method pattern used by other services and selects the
state store from configuration, the same way SearchService selects its
backend.
"""

from typing import Optional

from loguru import logger

from helpers.time_utils import format_retry_after, now_ms as current_ms
from models.config import get_settings
from models.exceptions import RateLimitExceededException

from .base_store import RateLimitStore
from .window import RateLimitResult, RateLimitRule


class RateLimitAction:
    """Rate-limited action names, used as the second half of the key."""

    REPORT = "report"
    EDIT = "edit"
    DECISION = "moderation-decision"
    BULK_DECISION = "bulk-decision"


_SETTINGS_PREFIX = {
    RateLimitAction.REPORT: "REPORT",
    RateLimitAction.EDIT: "EDIT",
    RateLimitAction.DECISION: "DECISION",
    RateLimitAction.BULK_DECISION: "BULK_DECISION",
}


def rule_for(action: str) -> RateLimitRule:
    """
    Build the configured rule for an action.

    Raises:
        KeyError: If the action has no configured rule
    """
    settings = get_settings()
    prefix = _SETTINGS_PREFIX[action]
    return RateLimitRule(
        max_attempts=getattr(settings, f"{prefix}_RATE_LIMIT_MAX_ATTEMPTS"),
        window_ms=getattr(settings, f"{prefix}_RATE_LIMIT_WINDOW_MS"),
        block_duration_ms=getattr(settings, f"{prefix}_RATE_LIMIT_BLOCK_MS"),
        escalation_factor=getattr(settings, f"{prefix}_RATE_LIMIT_ESCALATION_FACTOR"),
    )


def _max_window_ms() -> int:
    return max(rule_for(action).window_ms for action in _SETTINGS_PREFIX)


class RateLimitService:
    """Service for checking and enforcing rate limits."""

    _store_cache: Optional[RateLimitStore] = None

    @staticmethod
    def _get_store() -> RateLimitStore:
        """Get the configured rate-limit store."""
        if RateLimitService._store_cache is not None:
            return RateLimitService._store_cache

        backend_name = get_settings().RATE_LIMIT_BACKEND

        if backend_name == "database":
            from .database_store import DatabaseRateLimitStore

            RateLimitService._store_cache = DatabaseRateLimitStore()
        elif backend_name == "redis":
            from .redis_store import RedisRateLimitStore

            RateLimitService._store_cache = RedisRateLimitStore()
        else:
            from .memory_store import InMemoryRateLimitStore

            RateLimitService._store_cache = InMemoryRateLimitStore()
            logger.info(
                "Rate limiting uses in-process memory; counters are not shared across instances"
            )

        return RateLimitService._store_cache

    @staticmethod
    def use_store(store: Optional[RateLimitStore]) -> None:
        """
        Replace the active store (None reverts to configuration).

        Used by tests and by deployments wiring a custom store at startup.
        """
        RateLimitService._store_cache = store

    @staticmethod
    def get_backend_name() -> str:
        return RateLimitService._get_store().backend_name

    @staticmethod
    def build_key(actor_id: int | str, action: str) -> str:
        """Compose the '<actor_id>:<action>' key."""
        return f"{actor_id}:{action}"

    @staticmethod
    def check_rate_limit(
        key: str,
        rule: RateLimitRule,
        now_ms: Optional[int] = None,
    ) -> RateLimitResult:
        """
        Record one attempt against a key.

        Args:
            key: Composite '<actor_id>:<action>' key
            rule: Limits to apply
            now_ms: Current time in epoch milliseconds (defaults to the clock)

        Returns:
            RateLimitResult; callers decide how to surface a rejection

        Raises:
            InternalErrorException: If the store is unavailable
        """
        if now_ms is None:
            now_ms = current_ms()
        return RateLimitService._get_store().check(key, rule, now_ms)

    @staticmethod
    def enforce(
        actor_id: int | str,
        action: str,
        rule: Optional[RateLimitRule] = None,
        now_ms: Optional[int] = None,
    ) -> RateLimitResult:
        """
        Check a limit and raise when the attempt is rejected.

        Args:
            actor_id: Acting user
            action: One of RateLimitAction
            rule: Override the configured rule for this action
            now_ms: Current time in epoch milliseconds

        Returns:
            RateLimitResult of the allowed attempt

        Raises:
            RateLimitExceededException: If the attempt is rejected
        """
        key = RateLimitService.build_key(actor_id, action)
        result = RateLimitService.check_rate_limit(
            key, rule or rule_for(action), now_ms
        )
        if not result.allowed:
            retry_ms = result.retry_after_ms or 0
            logger.warning(
                f"Rate limit exceeded for {key}",
                rate_limit_key=key,
                retry_after_ms=retry_ms,
            )
            raise RateLimitExceededException(
                message=f"Too many attempts. Try again in {format_retry_after(retry_ms)}.",
                retry_after=result.retry_after_seconds,
            )
        return result

    @staticmethod
    def reset(actor_id: int | str, action: str) -> None:
        """Forget the counter for an actor and action."""
        RateLimitService._get_store().reset(RateLimitService.build_key(actor_id, action))

    @staticmethod
    def cleanup_expired(now_ms: Optional[int] = None) -> int:
        """
        Remove stale persisted entries.

        Redis expires keys itself and returns 0; the memory and database
        stores drop keys whose window and block have both elapsed.

        Returns:
            Number of entries removed
        """
        store = RateLimitService._get_store()
        cleanup = getattr(store, "cleanup_expired", None)
        if cleanup is None:
            return 0
        if now_ms is None:
            now_ms = current_ms()
        return cleanup(now_ms, _max_window_ms())
