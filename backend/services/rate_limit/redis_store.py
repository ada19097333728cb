"""Rate-limit store backed by Redis."""

from typing import Callable, Optional

import redis
from loguru import logger

from helpers.redis_pool import get_redis
from models.exceptions import InternalErrorException

from .base_store import RateLimitStore
from .window import RateLimitResult, RateLimitRule, WindowState, evaluate

KEY_PREFIX = "ratelimit:"
MAX_WATCH_RETRIES = 10


def _load_state(raw: dict) -> Optional[WindowState]:
    if not raw:
        return None
    blocked = raw.get("blocked_until_ms")
    return WindowState(
        count=int(raw["count"]),
        window_start_ms=int(raw["window_start_ms"]),
        blocked_until_ms=int(blocked) if blocked else None,
        strikes=int(raw.get("strikes", 0)),
    )


def _dump_state(state: WindowState) -> dict:
    return {
        "count": state.count,
        "window_start_ms": state.window_start_ms,
        "blocked_until_ms": state.blocked_until_ms or "",
        "strikes": state.strikes,
    }


class RedisRateLimitStore(RateLimitStore):
    """
    One hash per key, updated under WATCH/MULTI.

    A concurrent writer aborts the transaction with WatchError and the
    attempt is re-evaluated against the fresh state.
    """

    def __init__(self, client_factory: Callable[[], redis.Redis] = get_redis):
        self._client_factory = client_factory

    @property
    def backend_name(self) -> str:
        return "redis"

    def check(self, key: str, rule: RateLimitRule, now_ms: int) -> RateLimitResult:
        client = self._client_factory()
        redis_key = KEY_PREFIX + key
        try:
            for _ in range(MAX_WATCH_RETRIES):
                with client.pipeline() as pipe:
                    try:
                        pipe.watch(redis_key)
                        state, result = evaluate(
                            _load_state(pipe.hgetall(redis_key)), rule, now_ms
                        )
                        ttl_ms = rule.window_ms * 2
                        if state.blocked_until_ms is not None:
                            ttl_ms += max(state.blocked_until_ms - now_ms, 0)
                        pipe.multi()
                        pipe.hset(redis_key, mapping=_dump_state(state))
                        pipe.pexpire(redis_key, ttl_ms)
                        pipe.execute()
                        return result
                    except redis.WatchError:
                        continue
        except redis.RedisError as e:
            logger.error(f"Rate limit store failure for {key}: {e}")
            raise InternalErrorException(
                "Rate limit storage unavailable. Please retry."
            ) from e

        logger.error(f"Rate limit contention on {key} after {MAX_WATCH_RETRIES} retries")
        raise InternalErrorException("Rate limit storage busy. Please retry.")

    def reset(self, key: str) -> None:
        try:
            self._client_factory().delete(KEY_PREFIX + key)
        except redis.RedisError as e:
            raise InternalErrorException(
                "Rate limit storage unavailable. Please retry."
            ) from e
