"""Rate-limit store persisted in the application database."""

from typing import Callable, Optional

from loguru import logger
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from models.exceptions import InternalErrorException
from repositories.database import open_session
from repositories.db_models import RateLimitEntry
from repositories.rate_limit_repository import RateLimitRepository

from .base_store import RateLimitStore
from .window import RateLimitResult, RateLimitRule, WindowState, evaluate


class DatabaseRateLimitStore(RateLimitStore):
    """
    Store backed by the rate_limit_entries table.

    Each check runs in its own short transaction with the key's row
    locked, so counters are shared by every instance that uses the same
    database. The session is never the request session: a rollback here
    must not discard the caller's pending work.
    """

    def __init__(self, session_factory: Callable[[], Session] = open_session):
        self._session_factory = session_factory

    @property
    def backend_name(self) -> str:
        return "database"

    def check(self, key: str, rule: RateLimitRule, now_ms: int) -> RateLimitResult:
        db = self._session_factory()
        try:
            try:
                return self._check(db, key, rule, now_ms)
            except IntegrityError:
                # Another instance inserted the key first; retry against its row.
                db.rollback()
                return self._check(db, key, rule, now_ms)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Rate limit store failure for {key}: {e}")
            raise InternalErrorException(
                "Rate limit storage unavailable. Please retry."
            ) from e
        finally:
            db.close()

    def _check(
        self, db: Session, key: str, rule: RateLimitRule, now_ms: int
    ) -> RateLimitResult:
        repo = RateLimitRepository(db)
        entry = repo.get_for_update(key)

        current: Optional[WindowState] = None
        if entry is not None:
            current = WindowState(
                count=entry.count,
                window_start_ms=entry.window_start_ms,
                blocked_until_ms=entry.blocked_until_ms,
                strikes=entry.strikes,
            )

        state, result = evaluate(current, rule, now_ms)

        if entry is None:
            entry = RateLimitEntry(key=key)
        entry.count = state.count
        entry.window_start_ms = state.window_start_ms
        entry.blocked_until_ms = state.blocked_until_ms
        entry.strikes = state.strikes
        repo.save(entry)
        db.commit()
        return result

    def reset(self, key: str) -> None:
        db = self._session_factory()
        try:
            RateLimitRepository(db).delete_key(key)
        finally:
            db.close()

    def cleanup_expired(self, now_ms: int, max_window_ms: int) -> int:
        """
        Delete rows whose window and block have both elapsed.

        Returns:
            Number of rows removed
        """
        db = self._session_factory()
        try:
            return RateLimitRepository(db).delete_expired(now_ms, max_window_ms)
        finally:
            db.close()
