"""
Background Task Scheduler for moderation maintenance jobs.

Uses APScheduler for reliable scheduled task execution:
- Replays the durable audit queue into the audit log
- Purges expired rate-limit rows from the database store
"""

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger

from models.config import settings
from repositories.database import open_session


# Global scheduler instance
scheduler: BackgroundScheduler | None = None


def audit_queue_flush_job() -> int:
    """
    Scheduled job to replay queued audit entries.

    Creates its own database session for isolation.

    Returns:
        Number of entries written to the audit log
    """
    from services.audit_service import AuditService

    db = open_session()
    try:
        return AuditService.flush_queue(db)
    except Exception as e:
        logger.error(f"Audit queue flush failed: {e}")
        raise
    finally:
        db.close()


def rate_limit_cleanup_job() -> int:
    """
    Scheduled job to delete stale rate-limit entries.

    Returns:
        Number of entries removed
    """
    from services.rate_limit import RateLimitService

    try:
        removed = RateLimitService.cleanup_expired()
    except Exception as e:
        logger.error(f"Rate limit cleanup failed: {e}")
        raise
    if removed:
        logger.info(f"Rate limit cleanup removed {removed} stale entries")
    return removed


def setup_scheduler() -> None:
    """
    Configure and start the background scheduler.

    Schedules:
    - Audit queue flush: every AUDIT_FLUSH_INTERVAL_SECONDS
    - Rate limit cleanup: every 15 minutes
    """
    global scheduler

    if scheduler is not None:
        logger.warning("Scheduler already initialized")
        return

    scheduler = BackgroundScheduler()

    scheduler.add_job(
        audit_queue_flush_job,
        IntervalTrigger(seconds=settings.AUDIT_FLUSH_INTERVAL_SECONDS),
        id="audit_queue_flush",
        name="Audit Queue Flush",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    scheduler.add_job(
        rate_limit_cleanup_job,
        IntervalTrigger(minutes=15),
        id="rate_limit_cleanup",
        name="Rate Limit Cleanup",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    # Start scheduler
    scheduler.start()
    logger.info(
        f"Background scheduler started (audit flush every "
        f"{settings.AUDIT_FLUSH_INTERVAL_SECONDS}s, rate limit cleanup every 15m)"
    )


def shutdown_scheduler() -> None:
    """Gracefully shutdown the scheduler."""
    global scheduler

    if scheduler is not None and scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Background scheduler stopped")
        scheduler = None


def get_scheduler_status() -> dict:
    """Get current scheduler status for monitoring."""
    global scheduler

    if scheduler is None:
        return {"running": False, "jobs": []}

    jobs = []
    for job in scheduler.get_jobs():
        jobs.append(
            {
                "id": job.id,
                "name": job.name,
                "next_run_time": (
                    job.next_run_time.isoformat() if job.next_run_time else None
                ),
            }
        )

    return {"running": scheduler.running, "jobs": jobs}
