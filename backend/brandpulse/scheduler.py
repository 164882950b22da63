"""
In-process daily timer for review syncs.
APScheduler CronTrigger fires one scheduler cycle at the configured local time;
due sources are queued and run in the shared worker pool.
"""

import logging
from typing import Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from brandpulse.config import get_settings
from brandpulse.services.scheduler_service import get_source_scheduler

logger = logging.getLogger(__name__)

DAILY_SYNC_JOB_ID = "daily_review_sync"

scheduler: Optional[AsyncIOScheduler] = None


def job_executed_listener(event):
    logger.info(f"Timer job {event.job_id} executed")


def job_error_listener(event):
    logger.error(f"Timer job {event.job_id} failed: {event.exception}")


def get_scheduler() -> AsyncIOScheduler:
    """Get or create the global scheduler instance."""
    global scheduler
    if scheduler is None:
        scheduler = AsyncIOScheduler(timezone=get_settings().sync_timezone)
        scheduler.add_listener(job_executed_listener, EVENT_JOB_EXECUTED)
        scheduler.add_listener(job_error_listener, EVENT_JOB_ERROR)
    return scheduler


async def daily_sync_task():
    result = await get_source_scheduler().run_cycle()
    logger.info(f"Daily review sync cycle: {result.as_dict()}")


async def start_scheduler() -> AsyncIOScheduler:
    """Fail stale jobs left by a previous process, then arm the daily trigger."""
    settings = get_settings()
    await get_source_scheduler().reconcile()

    sched = get_scheduler()
    sched.add_job(
        daily_sync_task,
        CronTrigger(
            hour=settings.daily_sync_hour,
            minute=settings.daily_sync_minute,
            timezone=settings.sync_timezone,
        ),
        id=DAILY_SYNC_JOB_ID,
        name="Daily review sync",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    if not sched.running:
        sched.start()
    logger.info(
        f"Review sync timer armed for {settings.daily_sync_hour:02d}:{settings.daily_sync_minute:02d} "
        f"{settings.sync_timezone}"
    )
    return sched


def stop_scheduler() -> None:
    global scheduler
    if scheduler is not None and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Review sync timer stopped")
    scheduler = None
