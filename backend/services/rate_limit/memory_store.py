"""Process-local rate-limit store."""

import threading

from .base_store import RateLimitStore
from .window import RateLimitResult, RateLimitRule, WindowState, evaluate


class InMemoryRateLimitStore(RateLimitStore):
    """
    Dict-backed store guarded by a lock.

    State lives in this process only. With more than one application
    instance each keeps its own counters, so use the database or redis
    backend for multi-instance deployments.
    """

    def __init__(self) -> None:
        self._entries: dict[str, WindowState] = {}
        self._lock = threading.Lock()

    @property
    def backend_name(self) -> str:
        return "memory"

    @property
    def shared(self) -> bool:
        return False

    def check(self, key: str, rule: RateLimitRule, now_ms: int) -> RateLimitResult:
        with self._lock:
            state, result = evaluate(self._entries.get(key), rule, now_ms)
            self._entries[key] = state
            return result

    def reset(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def cleanup_expired(self, now_ms: int, max_window_ms: int) -> int:
        """Drop keys whose window and block have both elapsed."""
        with self._lock:
            stale = [
                key
                for key, state in self._entries.items()
                if state.window_start_ms < now_ms - max_window_ms
                and (state.blocked_until_ms is None or state.blocked_until_ms <= now_ms)
            ]
            for key in stale:
                del self._entries[key]
            return len(stale)

    def clear(self) -> None:
        """Drop all keys."""
        with self._lock:
            self._entries.clear()

    def get_state(self, key: str) -> WindowState | None:
        with self._lock:
            return self._entries.get(key)
