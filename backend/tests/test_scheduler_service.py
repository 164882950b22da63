"""
Tests for daily scheduling, the manual-sync cooldown and the worker pool.
"""

import asyncio
import uuid
from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from brandpulse.errors import RateLimitedError, SyncInProgressError
from brandpulse.models import JobStatus, JobType, ReviewSource, SyncJob
from brandpulse.services.scheduler_service import SourceScheduler, SyncWorkerPool, next_daily_sync_time
from conftest import raw_review

pytestmark = pytest.mark.anyio

NOW = datetime(2026, 3, 10, 2, 0)


# ── next_daily_sync_time ──────────────────────────────────────────────

def test_next_sync_is_tomorrow_in_winter():
    # 02:00 Europe/Berlin is 01:00 UTC during CET
    assert next_daily_sync_time(datetime(2026, 1, 10, 10, 0), 2, 0, "Europe/Berlin") == datetime(2026, 1, 11, 1, 0)


def test_next_sync_follows_summer_time():
    assert next_daily_sync_time(datetime(2026, 7, 10, 10, 0), 2, 0, "Europe/Berlin") == datetime(2026, 7, 11, 0, 0)


def test_next_sync_later_today():
    assert next_daily_sync_time(datetime(2026, 1, 10, 0, 30), 2, 0, "Europe/Berlin") == datetime(2026, 1, 10, 1, 0)


def test_next_sync_is_strictly_after_now():
    assert next_daily_sync_time(datetime(2026, 1, 10, 1, 0), 2, 0, "Europe/Berlin") == datetime(2026, 1, 11, 1, 0)


def test_next_sync_utc():
    assert next_daily_sync_time(datetime(2026, 5, 1, 23, 59), 0, 0, "UTC") == datetime(2026, 5, 2, 0, 0)


# ── run_cycle ─────────────────────────────────────────────────────────

async def _jobs(session_factory, source_id=None) -> list[SyncJob]:
    async with session_factory() as db:
        query = select(SyncJob)
        if source_id is not None:
            query = query.where(SyncJob.review_source_id == source_id)
        return list((await db.execute(query)).scalars().all())


async def test_cycle_creates_jobs_for_due_active_sources_only(session_factory, orchestrator, make_source):
    due = await make_source(next_scheduled_sync_at=NOW - timedelta(minutes=1))
    later = await make_source(next_scheduled_sync_at=NOW + timedelta(hours=1))
    paused = await make_source(is_active=False, next_scheduled_sync_at=NOW - timedelta(days=2))
    unscheduled = await make_source(next_scheduled_sync_at=None)

    result = await SourceScheduler(orchestrator).run_cycle(NOW)

    assert result.due == 1
    assert [source_id for _, source_id in result.created] == [due.id]
    jobs = await _jobs(session_factory)
    assert len(jobs) == 1
    assert jobs[0].job_type == JobType.SCHEDULED.value
    assert jobs[0].status == JobStatus.QUEUED.value
    for other in (later, paused, unscheduled):
        assert await _jobs(session_factory, other.id) == []


async def test_cycle_advances_schedule_to_next_day(session_factory, orchestrator, make_source):
    source = await make_source(next_scheduled_sync_at=NOW - timedelta(minutes=1))
    scheduler = SourceScheduler(orchestrator)

    await scheduler.run_cycle(NOW)

    async with session_factory() as db:
        refreshed = await db.get(ReviewSource, source.id)
    assert refreshed.next_scheduled_sync_at == scheduler.next_sync_time(NOW)
    assert refreshed.next_scheduled_sync_at > NOW


async def test_second_cycle_at_same_instant_creates_nothing(session_factory, orchestrator, make_source):
    await make_source(next_scheduled_sync_at=NOW - timedelta(minutes=1))
    scheduler = SourceScheduler(orchestrator)

    first = await scheduler.run_cycle(NOW)
    second = await scheduler.run_cycle(NOW)

    assert len(first.created) == 1
    assert second.due == 0
    assert second.created == []
    assert len(await _jobs(session_factory)) == 1


async def test_source_with_active_job_is_skipped_and_keeps_schedule(session_factory, orchestrator, make_source):
    scheduled_at = NOW - timedelta(minutes=1)
    source = await make_source(next_scheduled_sync_at=scheduled_at)
    async with session_factory() as db:
        await orchestrator.create_job(db, source.id, JobType.MANUAL)
        await db.commit()

    result = await SourceScheduler(orchestrator).run_cycle(NOW)

    assert result.created == []
    assert result.skipped == [source.id]
    async with session_factory() as db:
        refreshed = await db.get(ReviewSource, source.id)
    assert refreshed.next_scheduled_sync_at == scheduled_at
    assert len(await _jobs(session_factory, source.id)) == 1


async def test_cycle_reconciles_stale_jobs_first(session_factory, orchestrator, make_source):
    source = await make_source(next_scheduled_sync_at=NOW - timedelta(minutes=1))
    async with session_factory() as db:
        db.add(SyncJob(
            review_source_id=source.id, job_type=JobType.SCHEDULED.value, status=JobStatus.RUNNING.value,
            created_at=NOW - timedelta(hours=5), started_at=NOW - timedelta(hours=5),
        ))
        await db.commit()

    result = await SourceScheduler(orchestrator).run_cycle(NOW)

    assert result.reconciled == 1
    assert len(result.created) == 1
    statuses = sorted(j.status for j in await _jobs(session_factory, source.id))
    assert statuses == [JobStatus.FAILED.value, JobStatus.QUEUED.value]


async def test_cycle_with_pool_runs_jobs_to_completion(session_factory, orchestrator, make_source, platform_client):
    source = await make_source(next_scheduled_sync_at=NOW - timedelta(minutes=1))
    platform_client.reviews = [raw_review("a", 4)]
    pool = SyncWorkerPool(orchestrator, size=2)

    result = await SourceScheduler(orchestrator, pool).run_cycle(NOW)
    await pool.join()

    assert len(result.created) == 1
    [job] = await _jobs(session_factory, source.id)
    assert job.status == JobStatus.COMPLETED.value
    assert job.reviews_new == 1
    assert pool.pending == 0


def test_cycle_result_serializes_ids():
    from brandpulse.services.scheduler_service import CycleResult

    job_id, source_id = uuid.uuid4(), uuid.uuid4()
    payload = CycleResult(reconciled=1, due=2, created=[(job_id, source_id)], skipped=[source_id]).as_dict()
    assert payload == {
        "reconciled_stale_jobs": 1,
        "due_sources": 2,
        "jobs_created": [str(job_id)],
        "sources_skipped": [str(source_id)],
    }


# ── Manual trigger ────────────────────────────────────────────────────

async def test_manual_sync_is_rate_limited(session_factory, orchestrator, make_source):
    source = await make_source()
    scheduler = SourceScheduler(orchestrator)

    async with session_factory() as db:
        job = await scheduler.trigger_manual_sync(db, source.id, now=NOW)
        await db.commit()
    await orchestrator.run_job(job.id)

    async with session_factory() as db:
        with pytest.raises(RateLimitedError) as exc_info:
            await scheduler.trigger_manual_sync(db, source.id, now=NOW + timedelta(hours=23))
    assert exc_info.value.next_eligible_at == job.created_at + timedelta(hours=24)


async def test_manual_sync_allowed_after_cooldown(session_factory, orchestrator, make_source):
    source = await make_source()
    scheduler = SourceScheduler(orchestrator)
    async with session_factory() as db:
        db.add(SyncJob(
            review_source_id=source.id, job_type=JobType.MANUAL.value, status=JobStatus.COMPLETED.value,
            created_at=NOW - timedelta(hours=25),
        ))
        await db.commit()

    async with session_factory() as db:
        job = await scheduler.trigger_manual_sync(db, source.id, now=NOW)
        await db.commit()
    assert job.job_type == JobType.MANUAL.value


async def test_manual_sync_ignores_scheduled_jobs_for_cooldown(session_factory, orchestrator, make_source):
    source = await make_source()
    async with session_factory() as db:
        db.add(SyncJob(
            review_source_id=source.id, job_type=JobType.SCHEDULED.value, status=JobStatus.COMPLETED.value,
            created_at=NOW - timedelta(hours=1),
        ))
        await db.commit()

    async with session_factory() as db:
        job = await SourceScheduler(orchestrator).trigger_manual_sync(db, source.id, now=NOW)
        await db.commit()
    assert job.status == JobStatus.QUEUED.value


async def test_manual_sync_while_job_active_conflicts(session_factory, orchestrator, make_source):
    source = await make_source()
    async with session_factory() as db:
        await orchestrator.create_job(db, source.id, JobType.SCHEDULED)
        await db.commit()

    async with session_factory() as db:
        with pytest.raises(SyncInProgressError):
            await SourceScheduler(orchestrator).trigger_manual_sync(db, source.id, now=NOW)


# ── Worker pool ───────────────────────────────────────────────────────

class RecordingOrchestrator:
    """Stands in for SyncJobOrchestrator; tracks how many jobs run at once."""

    def __init__(self, delay=0.02, failing=()):
        self.delay = delay
        self.failing = set(failing)
        self.active = 0
        self.max_active = 0
        self.finished: list = []

    async def run_job(self, job_id):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay)
            if job_id in self.failing:
                raise RuntimeError(f"job {job_id} exploded")
            self.finished.append(job_id)
        finally:
            self.active -= 1


async def test_pool_bounds_concurrency():
    orchestrator = RecordingOrchestrator()
    pool = SyncWorkerPool(orchestrator, size=2)

    for _ in range(6):
        pool.submit(uuid.uuid4(), uuid.uuid4())
    await pool.join()

    assert orchestrator.max_active == 2
    assert len(orchestrator.finished) == 6


async def test_pool_runs_one_job_at_a_time_per_source():
    orchestrator = RecordingOrchestrator()
    pool = SyncWorkerPool(orchestrator, size=4)
    source_id = uuid.uuid4()
    job_ids = [uuid.uuid4() for _ in range(3)]

    for job_id in job_ids:
        pool.submit(job_id, source_id)
    await pool.join()

    assert orchestrator.max_active == 1
    assert orchestrator.finished == job_ids


async def test_pool_isolates_failing_job():
    bad = uuid.uuid4()
    good = [uuid.uuid4(), uuid.uuid4()]
    orchestrator = RecordingOrchestrator(failing={bad})
    pool = SyncWorkerPool(orchestrator, size=1)

    pool.submit(bad, uuid.uuid4())
    for job_id in good:
        pool.submit(job_id, uuid.uuid4())
    await pool.join()

    assert orchestrator.finished == good
    assert pool.pending == 0


async def test_pool_drops_source_locks_when_idle():
    orchestrator = RecordingOrchestrator(failing={"boom"})
    pool = SyncWorkerPool(orchestrator, size=2)
    shared = uuid.uuid4()

    pool.submit(uuid.uuid4(), shared)
    pool.submit("boom", shared)
    pool.submit(uuid.uuid4(), uuid.uuid4())
    await pool.join()

    assert pool._source_locks == {}
    assert pool._lock_users == {}
