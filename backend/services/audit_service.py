"""
Service for audit logging of trust-affecting operations.

Every successful moderation decision, assignment and revision state change
is recorded here after the triggering transaction commits. Recording never
raises: a failed audit write must not fail an already-committed action.
Instead the entry is parked in the durable ``audit_queue`` table and
replayed by the scheduler, and a monitoring signal is emitted when even
that fails.
"""

import json
import queue
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

import sentry_sdk
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from helpers.time_utils import utc_now
from models.config import settings
from repositories.audit_repository import AuditLogRepository, AuditQueueRepository
from repositories.database import open_session
from repositories.db_models import AuditLog, AuditQueueEntry


class AuditAction:
    """Namespaced audit action keys."""

    MODERATION_PREFIX = "moderation:"
    MODERATION_BULK = "moderation:bulk-decision"
    MODERATION_ASSIGN = "moderation:assign"
    QUEUE_ADD = "queue:add"
    QUEUE_UPDATE = "queue:update"
    WIKI_FLAG = "wiki:flag"
    WIKI_ASSIGN = "wiki:assign"
    WIKI_APPROVE = "wiki:approve-stable"
    WIKI_ROLLBACK = "wiki:rollback"

    @staticmethod
    def moderation(action_type: str) -> str:
        """Key for a moderation decision, e.g. 'moderation:mute'."""
        return f"{AuditAction.MODERATION_PREFIX}{action_type}"


@dataclass
class AuditWriteResult:
    success: bool
    log_id: Optional[int] = None
    queued: bool = False
    error: Optional[str] = None


@dataclass
class AuditEvent:
    """An audit entry waiting to be written."""

    actor_id: Optional[int]
    action: str
    target_type: str
    target_id: str
    reason: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None
    created_at: datetime = field(default_factory=utc_now)

    def metadata_json(self) -> Optional[str]:
        return json.dumps(self.metadata, default=str) if self.metadata else None


def _write_log(db: Session, event: AuditEvent) -> AuditLog:
    entry = AuditLog(
        actor_id=event.actor_id,
        action=event.action,
        target_type=event.target_type,
        target_id=event.target_id,
        reason=event.reason,
        metadata_json=event.metadata_json(),
        created_at=event.created_at,
    )
    AuditLogRepository(db).create(entry)
    return entry


def _write_queue_entry(db: Session, event: AuditEvent, error: str) -> AuditQueueEntry:
    entry = AuditQueueEntry(
        actor_id=event.actor_id,
        action=event.action,
        target_type=event.target_type,
        target_id=event.target_id,
        reason=event.reason,
        metadata_json=event.metadata_json(),
        created_at=event.created_at,
        attempts=0,
        last_error=error[:1000],
    )
    AuditQueueRepository(db).create(entry)
    return entry


class AuditDispatcher:
    """
    Bounded in-process buffer drained by a worker thread.

    The worker writes with its own session. A failed write is parked in the
    durable queue, so delivery is at-least-once.
    """

    def __init__(
        self,
        maxsize: int,
        session_factory: Callable[[], Session] = open_session,
    ):
        self._queue: "queue.Queue[AuditEvent]" = queue.Queue(maxsize=maxsize)
        self._session_factory = session_factory
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    def start(self) -> None:
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._thread = threading.Thread(
                target=self._run, name="audit-dispatcher", daemon=True
            )
            self._thread.start()

    def submit(self, event: AuditEvent) -> bool:
        """
        Enqueue without blocking.

        Returns:
            False if the buffer is full
        """
        self.start()
        try:
            self._queue.put_nowait(event)
            return True
        except queue.Full:
            return False

    def drain(self) -> None:
        """Block until every submitted event has been handled."""
        self._queue.join()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def _run(self) -> None:
        while True:
            event = self._queue.get()
            try:
                self._deliver(event)
            finally:
                self._queue.task_done()

    def _deliver(self, event: AuditEvent) -> None:
        db = self._session_factory()
        try:
            AuditService._write_with_fallback(db, event)
        finally:
            db.close()


class AuditService:
    """Service for recording and querying the audit log."""

    _failure_count: int = 0
    _dropped_count: int = 0
    _dispatcher: Optional[AuditDispatcher] = None
    _counter_lock = threading.Lock()

    @staticmethod
    def _get_dispatcher() -> AuditDispatcher:
        if AuditService._dispatcher is None:
            AuditService._dispatcher = AuditDispatcher(
                maxsize=settings.AUDIT_BUFFER_SIZE
            )
        return AuditService._dispatcher

    @staticmethod
    def use_dispatcher(dispatcher: Optional[AuditDispatcher]) -> None:
        """Replace the background dispatcher (None rebuilds from settings)."""
        AuditService._dispatcher = dispatcher

    @staticmethod
    def _signal_failure(event: AuditEvent, error: str) -> None:
        with AuditService._counter_lock:
            AuditService._failure_count += 1
        logger.error(
            f"Audit entry lost: {event.action} on {event.target_type}:{event.target_id}",
            audit_failure=True,
            audit_action=event.action,
            actor_id=event.actor_id,
            error=error,
        )
        sentry_sdk.set_tag("audit_failure", "true")
        sentry_sdk.set_tag("audit_action", event.action)
        sentry_sdk.capture_message(
            f"Audit write and fallback both failed for {event.action}", level="error"
        )

    @staticmethod
    def _write_with_fallback(db: Session, event: AuditEvent) -> AuditWriteResult:
        try:
            entry = _write_log(db, event)
            return AuditWriteResult(success=True, log_id=entry.id)
        except SQLAlchemyError as e:
            db.rollback()
            error = str(e)
            logger.warning(
                f"Audit write failed for {event.action}, queueing for replay: {error}"
            )

        try:
            _write_queue_entry(db, event, error)
            return AuditWriteResult(success=True, queued=True, error=error)
        except SQLAlchemyError as e:
            db.rollback()
            AuditService._signal_failure(event, str(e))
            return AuditWriteResult(success=False, error=str(e))

    @staticmethod
    def record(
        db: Session,
        actor_id: Optional[int],
        action: str,
        target_type: str,
        target_id: int | str,
        reason: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> AuditWriteResult:
        """
        Record a trust-affecting action.

        Call only after the action itself has committed. Never raises.

        Args:
            db: Database session (its pending work must already be committed)
            actor_id: User who performed the action, None for system actions
            action: Namespaced key from AuditAction
            target_type: Kind of entity acted on
            target_id: ID of the entity acted on
            reason: Free-text justification
            metadata: Additional structured details

        Returns:
            AuditWriteResult describing where the entry landed
        """
        event = AuditEvent(
            actor_id=actor_id,
            action=action,
            target_type=target_type,
            target_id=str(target_id),
            reason=reason,
            metadata=metadata,
        )

        if settings.AUDIT_DISPATCH_MODE == "background":
            if AuditService._get_dispatcher().submit(event):
                return AuditWriteResult(success=True, queued=True)
            logger.warning("Audit buffer full, writing to durable queue")
            try:
                _write_queue_entry(db, event, "buffer full")
                return AuditWriteResult(success=True, queued=True)
            except SQLAlchemyError as e:
                db.rollback()
                AuditService._signal_failure(event, str(e))
                return AuditWriteResult(success=False, error=str(e))

        return AuditService._write_with_fallback(db, event)

    @staticmethod
    def flush_queue(db: Session, batch_size: int = 100) -> int:
        """
        Replay durable queue entries into the audit log.

        Original timestamps are kept. Entries that keep failing are dropped
        after AUDIT_QUEUE_MAX_ATTEMPTS attempts.

        Returns:
            Number of entries written to the audit log
        """
        queue_repo = AuditQueueRepository(db)
        written = 0

        for queued in queue_repo.get_batch(limit=batch_size):
            event = AuditEvent(
                actor_id=queued.actor_id,
                action=queued.action,
                target_type=queued.target_type,
                target_id=queued.target_id,
                reason=queued.reason,
                metadata=queued.details or None,
                created_at=queued.created_at,
            )
            queued_id = queued.id
            try:
                db.add(
                    AuditLog(
                        actor_id=event.actor_id,
                        action=event.action,
                        target_type=event.target_type,
                        target_id=event.target_id,
                        reason=event.reason,
                        metadata_json=queued.metadata_json,
                        created_at=event.created_at,
                    )
                )
                db.delete(queued)
                db.commit()
                written += 1
            except SQLAlchemyError as e:
                db.rollback()
                AuditService._register_failed_replay(db, queued_id, str(e))

        if written:
            logger.info(f"Replayed {written} queued audit entries")
        return written

    @staticmethod
    def _register_failed_replay(db: Session, queued_id: int, error: str) -> None:
        queue_repo = AuditQueueRepository(db)
        try:
            queued = queue_repo.get_by_id(queued_id)
            if queued is None:
                return
            queued.attempts += 1
            queued.last_attempt_at = utc_now()
            queued.last_error = error[:1000]
            if queued.attempts >= settings.AUDIT_QUEUE_MAX_ATTEMPTS:
                logger.error(
                    f"Dropping audit entry {queued.action} after {queued.attempts} attempts",
                    audit_failure=True,
                    audit_action=queued.action,
                )
                with AuditService._counter_lock:
                    AuditService._dropped_count += 1
                db.delete(queued)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Could not update audit queue entry {queued_id}: {e}")

    @staticmethod
    def get_by_actor(
        db: Session, actor_id: int, skip: int = 0, limit: int = 100
    ) -> list[AuditLog]:
        return AuditLogRepository(db).get_by_actor(actor_id, skip=skip, limit=limit)

    @staticmethod
    def get_by_target(
        db: Session, target_type: str, target_id: int | str, skip: int = 0, limit: int = 100
    ) -> list[AuditLog]:
        return AuditLogRepository(db).get_by_target(
            target_type, str(target_id), skip=skip, limit=limit
        )

    @staticmethod
    def search(
        db: Session,
        actor_id: Optional[int] = None,
        action: Optional[str] = None,
        target_type: Optional[str] = None,
        target_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> tuple[list[AuditLog], int]:
        """Search the audit log, newest first."""
        return AuditLogRepository(db).search(
            actor_id=actor_id,
            action=action,
            target_type=target_type,
            target_id=target_id,
            start_date=start_date,
            end_date=end_date,
            skip=skip,
            limit=limit,
        )

    @staticmethod
    def health(db: Session) -> dict[str, Any]:
        """
        Report audit delivery health.

        Returns:
            Dict with failure/drop counters, durable queue depth,
            dispatch mode and in-process buffer depth
        """
        dispatcher = AuditService._dispatcher
        return {
            "dispatch_mode": settings.AUDIT_DISPATCH_MODE,
            "failure_count": AuditService._failure_count,
            "dropped_count": AuditService._dropped_count,
            "queued_count": AuditQueueRepository(db).count(),
            "buffered_count": dispatcher.pending if dispatcher else 0,
        }

    @staticmethod
    def shutdown() -> None:
        """Wait for buffered background entries to be written."""
        dispatcher = AuditService._dispatcher
        if dispatcher is not None and dispatcher.pending:
            logger.info(f"Draining {dispatcher.pending} buffered audit entries")
            dispatcher.drain()

    @staticmethod
    def reset_metrics() -> None:
        """Reset in-process counters."""
        with AuditService._counter_lock:
            AuditService._failure_count = 0
            AuditService._dropped_count = 0
