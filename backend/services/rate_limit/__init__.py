"""Rate limiting with pluggable state stores."""

from .base_store import RateLimitStore
from .memory_store import InMemoryRateLimitStore
from .rate_limit_service import RateLimitAction, RateLimitService, rule_for
from .window import RateLimitResult, RateLimitRule, WindowState, evaluate

__all__ = [
    "RateLimitStore",
    "InMemoryRateLimitStore",
    "RateLimitAction",
    "RateLimitService",
    "rule_for",
    "RateLimitResult",
    "RateLimitRule",
    "WindowState",
    "evaluate",
]
