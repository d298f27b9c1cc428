"""
Session lifecycle scheduler

Runs the daily archival of past sessions inside the application process.
"""

import logging
from typing import Any, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MISSED

from app.config import settings
from app.core.database import async_session
from app.services.session_service import session_service

logger = logging.getLogger(__name__)

ARCHIVE_JOB_ID = "archive_past_sessions"

# Global scheduler instance
scheduler: Optional[AsyncIOScheduler] = None


async def archive_past_sessions_job(session_factory=None) -> int:
    """
    Archive sessions dated before today.

    Failures are logged and left for the next daily run.
    """
    session_factory = session_factory or async_session
    try:
        async with session_factory() as db:
            archived = await session_service.auto_archive_past_sessions(db)
    except Exception as e:
        logger.error(f"Archival job failed: {e}", exc_info=True)
        return 0

    logger.info(f"Archival job finished, {archived} sessions archived")
    return archived


def _on_job_error(event):
    logger.error(
        "Scheduled job FAILED: job_id=%s error=%s",
        event.job_id, event.exception,
    )
    if event.traceback:
        logger.error("Traceback for job %s:\n%s", event.job_id, event.traceback)


def _on_job_missed(event):
    logger.warning(
        "Scheduled job MISSED: job_id=%s scheduled_run_time=%s",
        event.job_id,
        event.scheduled_run_time,
    )


def init_scheduler(start: bool = True) -> AsyncIOScheduler:
    """
    Create the scheduler and register the archival job.

    Must be called from within a running event loop when start is True.
    """
    global scheduler

    if scheduler is not None:
        logger.warning("Scheduler already initialized")
        return scheduler

    scheduler = AsyncIOScheduler(
        timezone=settings.SCHEDULER_TIMEZONE,
        job_defaults={
            'coalesce': True,
            'max_instances': 1,
            'misfire_grace_time': 300
        }
    )

    scheduler.add_job(
        archive_past_sessions_job,
        trigger=CronTrigger(
            hour=settings.ARCHIVE_CRON_HOUR,
            minute=settings.ARCHIVE_CRON_MINUTE,
            timezone=settings.SCHEDULER_TIMEZONE
        ),
        id=ARCHIVE_JOB_ID,
        name='Archive Past Sessions',
        replace_existing=True
    )
    logger.info(
        f"Scheduled job: {ARCHIVE_JOB_ID} "
        f"(daily at {settings.ARCHIVE_CRON_HOUR:02d}:{settings.ARCHIVE_CRON_MINUTE:02d} "
        f"{settings.SCHEDULER_TIMEZONE})"
    )

    scheduler.add_listener(_on_job_error, EVENT_JOB_ERROR)
    scheduler.add_listener(_on_job_missed, EVENT_JOB_MISSED)

    if start:
        scheduler.start()
        logger.info("Session scheduler started")
    return scheduler


def shutdown_scheduler():
    """
    Stop the scheduler without waiting for a running job
    """
    global scheduler

    if scheduler is not None:
        if scheduler.running:
            scheduler.shutdown(wait=False)
        scheduler = None
        logger.info("Session scheduler shut down")


def get_scheduler() -> Optional[AsyncIOScheduler]:
    return scheduler


def get_scheduler_status() -> Dict[str, Any]:
    if scheduler is None:
        return {"running": False, "jobs": []}
    return {
        "running": scheduler.running,
        "jobs": [
            {
                "id": job.id,
                "name": job.name,
                "next_run_time": job.next_run_time.isoformat() if getattr(job, "next_run_time", None) else None,
            }
            for job in scheduler.get_jobs()
        ],
    }
