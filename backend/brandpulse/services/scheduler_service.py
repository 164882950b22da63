"""
Scheduler Service — Decides which review sources sync and hands their jobs to
a bounded worker pool.

SourceScheduler.run_cycle() is invoked once per day (APScheduler timer, the
cron endpoint, or scripts/run_daily_sync.py). A due source gets exactly one
SCHEDULED job per cycle and its next_scheduled_sync_at moves to the next
day's fixed local time; a source with an active job is skipped and keeps its
schedule so the next cycle reconsiders it.

Manual triggers bypass the schedule but are limited to one per source per
rolling cooldown window (24h by default).

SyncWorkerPool runs jobs concurrently up to the configured pool size, one at
a time per source. A failing or slow source never holds up the others.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from brandpulse.config import get_settings
from brandpulse.errors import NotFoundError, RateLimitedError, SyncInProgressError
from brandpulse.models import JobType, ReviewSource, SyncJob
from brandpulse.services.sync_service import SyncJobOrchestrator
from brandpulse.utils import utcnow

logger = logging.getLogger(__name__)


def next_daily_sync_time(now: datetime, hour: int, minute: int, tz_name: str) -> datetime:
    """
    First occurrence of hour:minute local time strictly after `now`.
    `now` and the result are naive UTC.
    """
    tz = ZoneInfo(tz_name)
    local_now = now.replace(tzinfo=timezone.utc).astimezone(tz)
    day = local_now.date()
    candidate = datetime(day.year, day.month, day.day, hour, minute, tzinfo=tz)
    if candidate <= local_now:
        day = day + timedelta(days=1)
        candidate = datetime(day.year, day.month, day.day, hour, minute, tzinfo=tz)
    return candidate.astimezone(timezone.utc).replace(tzinfo=None)


# ══════════════════════════════════════════════════════════════════════
#  WORKER POOL
# ══════════════════════════════════════════════════════════════════════

class SyncWorkerPool:
    """Bounded concurrency across sources, strictly sequential within one source."""

    def __init__(self, orchestrator: SyncJobOrchestrator, size: Optional[int] = None):
        self.orchestrator = orchestrator
        self.size = size or get_settings().sync_worker_pool_size
        self._semaphore = asyncio.Semaphore(self.size)
        self._source_locks: dict[uuid.UUID, asyncio.Lock] = {}
        self._lock_users: dict[uuid.UUID, int] = {}
        self._tasks: set[asyncio.Task] = set()

    def submit(self, job_id: uuid.UUID, source_id: uuid.UUID) -> asyncio.Task:
        task = asyncio.create_task(self._run(job_id, source_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, job_id: uuid.UUID, source_id: uuid.UUID) -> None:
        lock = self._source_locks.setdefault(source_id, asyncio.Lock())
        self._lock_users[source_id] = self._lock_users.get(source_id, 0) + 1
        try:
            async with lock:
                async with self._semaphore:
                    try:
                        await self.orchestrator.run_job(job_id)
                    except Exception:
                        logger.exception(f"Worker crashed running sync job {job_id}")
        finally:
            # Last job of the source drops its lock
            self._lock_users[source_id] -= 1
            if not self._lock_users[source_id]:
                del self._lock_users[source_id]
                del self._source_locks[source_id]

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def join(self) -> None:
        """Wait until every submitted job has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


# ══════════════════════════════════════════════════════════════════════
#  SCHEDULER
# ══════════════════════════════════════════════════════════════════════

@dataclass
class CycleResult:
    reconciled: int = 0
    due: int = 0
    created: list[tuple[uuid.UUID, uuid.UUID]] = field(default_factory=list)  # (job id, source id)
    skipped: list[uuid.UUID] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "reconciled_stale_jobs": self.reconciled,
            "due_sources": self.due,
            "jobs_created": [str(job_id) for job_id, _ in self.created],
            "sources_skipped": [str(s) for s in self.skipped],
        }


class SourceScheduler:
    def __init__(self, orchestrator: SyncJobOrchestrator, pool: Optional[SyncWorkerPool] = None):
        self.orchestrator = orchestrator
        self.pool = pool
        self.settings = get_settings()

    def next_sync_time(self, now: datetime) -> datetime:
        return next_daily_sync_time(
            now, self.settings.daily_sync_hour, self.settings.daily_sync_minute, self.settings.sync_timezone,
        )

    async def reconcile(self, now: Optional[datetime] = None) -> int:
        async with self.orchestrator.session_factory() as db:
            count = await self.orchestrator.reconcile_stale_jobs(db, now)
            await db.commit()
        if count:
            logger.warning(f"Reconciled {count} stale sync job(s)")
        return count

    async def run_cycle(self, now: Optional[datetime] = None, reconcile: bool = True) -> CycleResult:
        """
        Create one SCHEDULED job per due, idle, active source and submit it
        to the pool (when one is attached).
        """
        now = now or utcnow()
        result = CycleResult()
        if reconcile:
            result.reconciled = await self.reconcile(now)

        async with self.orchestrator.session_factory() as db:
            due_ids = (await db.execute(
                select(ReviewSource.id)
                .where(
                    ReviewSource.is_active.is_(True),
                    ReviewSource.next_scheduled_sync_at.is_not(None),
                    ReviewSource.next_scheduled_sync_at <= now,
                )
                .order_by(ReviewSource.next_scheduled_sync_at)
            )).scalars().all()
            result.due = len(due_ids)
            if not due_ids:
                logger.info("Scheduler cycle: no sources due")
                return result

            for source_id in due_ids:
                try:
                    job = await self.orchestrator.create_job(db, source_id, JobType.SCHEDULED)
                    job_id = job.id
                    source = await db.get(ReviewSource, source_id)
                    source.next_scheduled_sync_at = self.next_sync_time(now)
                    await db.commit()
                except SyncInProgressError:
                    logger.info(f"Skipping source {source_id}: sync already queued or running")
                    result.skipped.append(source_id)
                    continue
                except (NotFoundError, SQLAlchemyError) as e:
                    logger.error(f"Could not schedule source {source_id}: {e}")
                    await db.rollback()
                    result.skipped.append(source_id)
                    continue
                result.created.append((job_id, source_id))

        logger.info(
            f"Scheduler cycle: {result.due} due, {len(result.created)} job(s) created, "
            f"{len(result.skipped)} skipped"
        )
        if self.pool is not None:
            for job_id, source_id in result.created:
                self.pool.submit(job_id, source_id)
        return result

    async def trigger_manual_sync(self, db: AsyncSession, source_id: uuid.UUID, now: Optional[datetime] = None) -> SyncJob:
        """
        Queue a MANUAL job regardless of schedule. Raises RateLimitedError
        inside the cooldown window and SyncInProgressError when a job is active.
        The caller commits and then submits the job.
        """
        now = now or utcnow()
        last_manual = (await db.execute(
            select(func.max(SyncJob.created_at)).where(
                SyncJob.review_source_id == source_id,
                SyncJob.job_type == JobType.MANUAL.value,
            )
        )).scalar()
        if last_manual:
            next_eligible_at = last_manual + timedelta(hours=self.settings.manual_sync_cooldown_hours)
            if now < next_eligible_at:
                raise RateLimitedError(next_eligible_at)
        return await self.orchestrator.create_job(db, source_id, JobType.MANUAL)


_pool: Optional[SyncWorkerPool] = None
_scheduler: Optional[SourceScheduler] = None


def get_worker_pool() -> SyncWorkerPool:
    global _pool
    if _pool is None:
        _pool = SyncWorkerPool(SyncJobOrchestrator())
    return _pool


def get_source_scheduler() -> SourceScheduler:
    """Process-wide scheduler wired to the shared worker pool."""
    global _scheduler
    if _scheduler is None:
        pool = get_worker_pool()
        _scheduler = SourceScheduler(pool.orchestrator, pool)
    return _scheduler
