"""
Tests for the shared Redis pool.
"""

from unittest.mock import MagicMock, patch

import pytest

import helpers.redis_pool as redis_pool


@pytest.fixture(autouse=True)
def no_pool():
    redis_pool._pool = None
    yield
    redis_pool._pool = None


def test_pool_created_once():
    with patch.object(redis_pool, "redis") as redis_mod:
        redis_pool.get_redis()
        redis_pool.get_redis()

    redis_mod.ConnectionPool.from_url.assert_called_once()
    assert redis_mod.Redis.call_count == 2


def test_close_disconnects_and_forgets_pool():
    pool = MagicMock()
    redis_pool._pool = pool

    redis_pool.close_redis_pool()

    pool.disconnect.assert_called_once()
    assert redis_pool._pool is None


def test_close_without_pool_is_noop():
    redis_pool.close_redis_pool()

    assert redis_pool._pool is None
