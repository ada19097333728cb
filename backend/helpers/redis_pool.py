"""
Shared Redis connection pool.

All Redis consumers should use get_redis() from this module instead of
creating their own connections. Pooled connections are returned automatically
when the Redis object goes out of scope.
"""

from typing import Optional

import redis

from models.config import settings

_pool: Optional[redis.ConnectionPool] = None


def get_redis() -> redis.Redis:
    """Get a Redis client backed by a shared connection pool."""
    global _pool
    if _pool is None:
        _pool = redis.ConnectionPool.from_url(
            settings.REDIS_URL,
            max_connections=settings.REDIS_POOL_MAX,
            decode_responses=True,
        )
    return redis.Redis(connection_pool=_pool)


def close_redis_pool() -> None:
    """Disconnect pooled connections (called on shutdown)."""
    global _pool
    if _pool is not None:
        _pool.disconnect()
        _pool = None
