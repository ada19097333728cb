"""
Tests for RateLimitService and its state stores.
"""

from unittest.mock import MagicMock

import pytest
import redis

from models.exceptions import InternalErrorException, RateLimitExceededException
from repositories.db_models import RateLimitEntry
from services.rate_limit import (
    InMemoryRateLimitStore,
    RateLimitAction,
    RateLimitRule,
    RateLimitService,
    rule_for,
)
from services.rate_limit.database_store import DatabaseRateLimitStore
from services.rate_limit.redis_store import KEY_PREFIX, RedisRateLimitStore

T0 = 1_700_000_000_000
RULE = RateLimitRule(max_attempts=2, window_ms=60_000)


class TestKeysAndRules:
    """Tests for key composition and configured rules."""

    def test_build_key(self):
        assert RateLimitService.build_key(42, "report") == "42:report"

    def test_report_rule_defaults(self):
        rule = rule_for(RateLimitAction.REPORT)

        assert rule.max_attempts == 10
        assert rule.window_ms == 60 * 60 * 1000
        assert rule.escalation_factor == 2.0

    def test_decision_rule_defaults(self):
        rule = rule_for(RateLimitAction.DECISION)

        assert rule.max_attempts == 120
        assert rule.window_ms == 60 * 1000

    def test_unknown_action_has_no_rule(self):
        with pytest.raises(KeyError):
            rule_for("unknown")


class TestEnforce:
    """Tests for RateLimitService.enforce."""

    def test_allows_within_limit(self):
        result = RateLimitService.enforce(1, RateLimitAction.REPORT, rule=RULE, now_ms=T0)

        assert result.allowed is True
        assert result.remaining == 1

    def test_raises_when_exceeded(self):
        RateLimitService.enforce(1, RateLimitAction.REPORT, rule=RULE, now_ms=T0)
        RateLimitService.enforce(1, RateLimitAction.REPORT, rule=RULE, now_ms=T0 + 1)

        with pytest.raises(RateLimitExceededException) as exc_info:
            RateLimitService.enforce(1, RateLimitAction.REPORT, rule=RULE, now_ms=T0 + 2)

        assert exc_info.value.retry_after == 120
        assert "2 minutes" in exc_info.value.message

    def test_keys_are_independent_per_actor_and_action(self):
        for now in (T0, T0 + 1):
            RateLimitService.enforce(1, RateLimitAction.REPORT, rule=RULE, now_ms=now)

        assert RateLimitService.enforce(
            2, RateLimitAction.REPORT, rule=RULE, now_ms=T0 + 2
        ).allowed
        assert RateLimitService.enforce(
            1, RateLimitAction.EDIT, rule=RULE, now_ms=T0 + 2
        ).allowed

    def test_reset_clears_counter(self):
        for now in (T0, T0 + 1):
            RateLimitService.enforce(1, RateLimitAction.REPORT, rule=RULE, now_ms=now)

        RateLimitService.reset(1, RateLimitAction.REPORT)

        assert RateLimitService.enforce(
            1, RateLimitAction.REPORT, rule=RULE, now_ms=T0 + 2
        ).allowed

    def test_use_store_replaces_backend(self):
        store = InMemoryRateLimitStore()
        RateLimitService.use_store(store)

        RateLimitService.enforce(7, RateLimitAction.EDIT, rule=RULE, now_ms=T0)

        assert store.get_state("7:edit").count == 1
        assert RateLimitService.get_backend_name() == "memory"

    def test_memory_store_cleanup_drops_stale_keys(self):
        store = InMemoryRateLimitStore()
        store.check("1:report", RULE, T0)
        store.check("2:report", RULE, T0 + 90_000)

        removed = store.cleanup_expired(now_ms=T0 + 100_000, max_window_ms=60_000)

        assert removed == 1
        assert store.get_state("1:report") is None
        assert store.get_state("2:report").count == 1

    def test_memory_store_cleanup_keeps_blocked_keys(self):
        store = InMemoryRateLimitStore()
        for offset in range(3):
            store.check("1:report", RULE, T0 + offset)

        # Blocked until T0 + 2 + 120_000
        assert store.cleanup_expired(now_ms=T0 + 100_000, max_window_ms=60_000) == 0
        assert store.get_state("1:report").blocked_until_ms is not None

    def test_service_cleanup_reaches_memory_store(self):
        store = InMemoryRateLimitStore()
        RateLimitService.use_store(store)
        RateLimitService.enforce(7, RateLimitAction.EDIT, rule=RULE, now_ms=T0)

        assert RateLimitService.cleanup_expired(now_ms=T0 + 10 * 24 * 3_600_000) == 1


class TestDatabaseStore:
    """Tests for the database-backed store."""

    def test_counts_persist_across_sessions(self, session_factory):
        store = DatabaseRateLimitStore(session_factory=session_factory)

        assert store.check("1:report", RULE, T0).allowed
        assert store.check("1:report", RULE, T0 + 1).allowed
        blocked = store.check("1:report", RULE, T0 + 2)

        assert blocked.allowed is False
        assert blocked.retry_after_ms == 120_000

        db = session_factory()
        try:
            entry = db.query(RateLimitEntry).filter_by(key="1:report").one()
            assert entry.count == 3
            assert entry.blocked_until_ms == T0 + 2 + 120_000
            assert entry.strikes == 1
        finally:
            db.close()

    def test_reset_deletes_row(self, session_factory):
        store = DatabaseRateLimitStore(session_factory=session_factory)
        store.check("1:edit", RULE, T0)

        store.reset("1:edit")

        db = session_factory()
        try:
            assert db.query(RateLimitEntry).count() == 0
        finally:
            db.close()

    def test_cleanup_expired_keeps_live_entries(self, session_factory):
        store = DatabaseRateLimitStore(session_factory=session_factory)
        store.check("old:report", RULE, T0)
        store.check("new:report", RULE, T0 + 100_000)

        removed = store.cleanup_expired(now_ms=T0 + 120_000, max_window_ms=60_000)

        assert removed == 1
        db = session_factory()
        try:
            keys = [e.key for e in db.query(RateLimitEntry).all()]
            assert keys == ["new:report"]
        finally:
            db.close()

    def test_cleanup_keeps_blocked_entries(self, session_factory):
        store = DatabaseRateLimitStore(session_factory=session_factory)
        for offset in range(3):
            store.check("spam:report", RULE, T0 + offset)

        # Window is long gone but the block is still active
        removed = store.cleanup_expired(now_ms=T0 + 100_000, max_window_ms=60_000)

        assert removed == 0


class TestRedisStore:
    """Tests for the Redis-backed store using a mocked client."""

    @pytest.fixture
    def client(self):
        return MagicMock()

    @pytest.fixture
    def pipe(self, client):
        pipe = client.pipeline.return_value.__enter__.return_value
        pipe.hgetall.return_value = {}
        return pipe

    def test_fresh_key_is_written_with_ttl(self, client, pipe):
        store = RedisRateLimitStore(client_factory=lambda: client)

        result = store.check("1:report", RULE, T0)

        assert result.allowed is True
        pipe.watch.assert_called_once_with(KEY_PREFIX + "1:report")
        pipe.hset.assert_called_once_with(
            KEY_PREFIX + "1:report",
            mapping={
                "count": 1,
                "window_start_ms": T0,
                "blocked_until_ms": "",
                "strikes": 0,
            },
        )
        pipe.pexpire.assert_called_once_with(KEY_PREFIX + "1:report", 120_000)

    def test_existing_state_is_loaded(self, client, pipe):
        pipe.hgetall.return_value = {
            "count": "2",
            "window_start_ms": str(T0),
            "blocked_until_ms": "",
            "strikes": "0",
        }
        store = RedisRateLimitStore(client_factory=lambda: client)

        result = store.check("1:report", RULE, T0 + 10)

        assert result.allowed is False
        assert result.retry_after_ms == 120_000

    def test_watch_error_retries(self, client, pipe):
        pipe.execute.side_effect = [redis.WatchError(), [1, 1]]
        store = RedisRateLimitStore(client_factory=lambda: client)

        result = store.check("1:report", RULE, T0)

        assert result.allowed is True
        assert pipe.execute.call_count == 2

    def test_persistent_contention_is_internal_error(self, client, pipe):
        pipe.execute.side_effect = redis.WatchError()
        store = RedisRateLimitStore(client_factory=lambda: client)

        with pytest.raises(InternalErrorException):
            store.check("1:report", RULE, T0)

    def test_connection_failure_is_internal_error(self, client):
        client.pipeline.side_effect = redis.ConnectionError("connection refused")
        store = RedisRateLimitStore(client_factory=lambda: client)

        with pytest.raises(InternalErrorException) as exc_info:
            store.check("1:report", RULE, T0)

        assert exc_info.value.retryable is True

    def test_reset_deletes_key(self, client):
        store = RedisRateLimitStore(client_factory=lambda: client)

        store.reset("1:report")

        client.delete.assert_called_once_with(KEY_PREFIX + "1:report")
