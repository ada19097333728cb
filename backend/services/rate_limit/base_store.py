"""Abstract base class for rate-limit state stores."""

from abc import ABC, abstractmethod

from .window import RateLimitResult, RateLimitRule


class RateLimitStore(ABC):
    """
    Keyed counter store backing the rate limiter.

    Implementations must make ``check`` atomic per key: two concurrent
    checks for the same key must observe each other's increments.
    """

    @property
    @abstractmethod
    def backend_name(self) -> str:
        """Return the name of this backend (e.g., 'memory')."""

    @property
    def shared(self) -> bool:
        """Whether state is visible to every application instance."""
        return True

    @abstractmethod
    def check(self, key: str, rule: RateLimitRule, now_ms: int) -> RateLimitResult:
        """
        Record one attempt for a key and decide whether it is allowed.

        Args:
            key: Composite '<actor_id>:<action>' key
            rule: Limits to apply
            now_ms: Current time in epoch milliseconds

        Returns:
            RateLimitResult for this attempt
        """

    @abstractmethod
    def reset(self, key: str) -> None:
        """
        Forget all state for a key.

        Args:
            key: Composite '<actor_id>:<action>' key
        """
