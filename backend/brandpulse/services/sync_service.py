"""
Sync Service — Lifecycle of review sync jobs.

A job moves QUEUED -> RUNNING -> COMPLETED | FAILED and never back. Creation
goes through the partial unique index uq_sync_jobs_active_source, so two
triggers racing for one source end with one QUEUED job and one
SyncInProgressError. run_job() executes a job in its own session:
platform fetch, ingest, aggregate rebuild, then cache invalidation once the
results are committed. Every failure ends the job as FAILED; nothing is
retried until the next scheduled or manual trigger.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import select, func, or_, and_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from brandpulse.config import get_settings
from brandpulse.crypto import decrypt_credentials
from brandpulse.errors import ConflictError, NotFoundError, PersistenceError, PlatformError, SyncInProgressError
from brandpulse.models import (
    ACTIVE_JOB_STATUSES,
    JOB_TRANSITIONS,
    JobStatus,
    JobType,
    ReviewSource,
    SyncJob,
    SyncStatus,
)
from brandpulse.services.aggregate_service import AggregateRecalculator
from brandpulse.services.cache import CachePort, get_cache, summary_key
from brandpulse.services.ingest_service import ReviewIngestor
from brandpulse.services.platforms import PlatformClient, get_platform_client
from brandpulse.utils import truncate_error, utcnow

logger = logging.getLogger(__name__)

STALE_JOB_ERROR = "Sync job stale/interrupted"


def transition(job: SyncJob, new_status: JobStatus) -> None:
    """Move a job forward; raises ConflictError for any transition not in JOB_TRANSITIONS."""
    current = JobStatus(job.status)
    if new_status not in JOB_TRANSITIONS[current]:
        raise ConflictError(f"Sync job {job.id} cannot move from {current.value} to {new_status.value}")
    job.status = new_status.value


async def get_active_job(db: AsyncSession, source_id: uuid.UUID) -> Optional[SyncJob]:
    result = await db.execute(
        select(SyncJob).where(
            SyncJob.review_source_id == source_id,
            SyncJob.status.in_(ACTIVE_JOB_STATUSES),
        )
    )
    return result.scalars().first()


def serialize_job(job: SyncJob) -> dict:
    return {
        "id": str(job.id),
        "review_source_id": str(job.review_source_id),
        "job_type": job.job_type,
        "status": job.status,
        "reviews_fetched": job.reviews_fetched or 0,
        "reviews_new": job.reviews_new or 0,
        "reviews_updated": job.reviews_updated or 0,
        "error_message": job.error_message,
        "created_at": job.created_at.isoformat() if job.created_at else None,
        "started_at": job.started_at.isoformat() if job.started_at else None,
        "completed_at": job.completed_at.isoformat() if job.completed_at else None,
        "duration_seconds": job.duration_seconds,
    }


class SyncJobOrchestrator:
    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        ingestor: Optional[ReviewIngestor] = None,
        recalculator: Optional[AggregateRecalculator] = None,
        cache: Optional[CachePort] = None,
        client_factory: Callable[[str], PlatformClient] = get_platform_client,
    ):
        if session_factory is None:
            from brandpulse.database import async_session
            session_factory = async_session
        self.session_factory = session_factory
        self.cache = cache or get_cache()
        self.ingestor = ingestor or ReviewIngestor()
        self.recalculator = recalculator or AggregateRecalculator(cache=self.cache)
        self.client_factory = client_factory
        self.settings = get_settings()

    # ── Creation ───────────────────────────────────────────────────────

    async def create_job(self, db: AsyncSession, source_id: uuid.UUID, job_type: JobType) -> SyncJob:
        """
        Insert a QUEUED job for the source. Raises SyncInProgressError when a
        QUEUED/RUNNING job exists, either seen up front or reported by the
        unique index on flush (the session is rolled back in that case).
        The caller commits.
        """
        source = await db.get(ReviewSource, source_id)
        if not source:
            raise NotFoundError("ReviewSource", source_id)

        if await get_active_job(db, source_id):
            raise SyncInProgressError(source_id)

        job = SyncJob(
            review_source_id=source_id,
            job_type=JobType(job_type).value,
            status=JobStatus.QUEUED.value,
            created_at=utcnow(),
        )
        db.add(job)
        try:
            await db.flush()
        except IntegrityError:
            await db.rollback()
            logger.info(f"Lost job creation race for source {source_id}")
            raise SyncInProgressError(source_id)

        logger.info(f"Sync job {job.id} ({job.job_type}) queued for source {source_id}")
        return job

    # ── Execution ──────────────────────────────────────────────────────

    def _fetch_window_start(self, job: SyncJob, source: ReviewSource, now: datetime) -> datetime:
        """SCHEDULED jobs fetch incrementally; INITIAL and MANUAL jobs re-read the full import window."""
        window_start = now - timedelta(days=self.settings.initial_import_days)
        if job.job_type == JobType.SCHEDULED.value and source.last_sync_at:
            return max(source.last_sync_at, window_start)
        return window_start

    async def run_job(self, job_id: uuid.UUID) -> SyncJob:
        """Run a QUEUED job to a terminal state. Never raises for sync failures."""
        async with self.session_factory() as db:
            job = await db.get(SyncJob, job_id)
            if not job:
                raise NotFoundError("SyncJob", job_id)
            source = await db.get(ReviewSource, job.review_source_id)
            if not source:
                raise NotFoundError("ReviewSource", job.review_source_id)
            source_id, brand_id = source.id, source.brand_id

            started_at = utcnow()
            transition(job, JobStatus.RUNNING)
            job.started_at = started_at
            source.last_sync_status = SyncStatus.IN_PROGRESS.value
            await db.commit()
            logger.info(f"Sync job {job_id} RUNNING for {source.source_type} source {source_id}")

            try:
                client = self.client_factory(source.source_type)
                raw_reviews = await client.fetch(
                    decrypt_credentials(source.credentials_encrypted),
                    source.external_profile_id,
                    since=self._fetch_window_start(job, source, started_at),
                )
                try:
                    counts = await self.ingestor.ingest(db, source_id, raw_reviews)
                    await self.recalculator.recalculate(db, source_id)

                    completed_at = utcnow()
                    transition(job, JobStatus.COMPLETED)
                    job.reviews_fetched = counts.fetched
                    job.reviews_new = counts.new
                    job.reviews_updated = counts.updated
                    job.completed_at = completed_at
                    source.last_sync_status = SyncStatus.SUCCESS.value
                    source.last_sync_at = completed_at
                    source.last_sync_error = None
                    await db.commit()
                except SQLAlchemyError as e:
                    raise PersistenceError(f"Storage failure during sync: {e}") from e
            except (PlatformError, PersistenceError) as e:
                await self._fail(db, job_id, source_id, e.message)
            except Exception as e:
                logger.exception(f"Unexpected failure in sync job {job_id}")
                await self._fail(db, job_id, source_id, f"{type(e).__name__}: {e}")
            else:
                logger.info(
                    f"Sync job {job_id} COMPLETED: fetched={job.reviews_fetched}, "
                    f"new={job.reviews_new}, updated={job.reviews_updated}"
                )

            await self.invalidate_source_views(brand_id, source_id)
            await db.refresh(job)
            return job

    async def _fail(self, db: AsyncSession, job_id: uuid.UUID, source_id: uuid.UUID, message: str) -> None:
        """Discard partial work and record FAILED on both the job and its source."""
        error = truncate_error(message, self.settings.sync_error_max_length)
        try:
            await db.rollback()
            job = await db.get(SyncJob, job_id)
            source = await db.get(ReviewSource, source_id)
            transition(job, JobStatus.FAILED)
            job.error_message = error
            job.completed_at = utcnow()
            if source:
                source.last_sync_status = SyncStatus.FAILED.value
                source.last_sync_error = error
            await db.commit()
        except SQLAlchemyError:
            # Left RUNNING; the stale-job sweep will close it
            logger.exception(f"Could not record failure of sync job {job_id}")
            await db.rollback()
            return
        logger.warning(f"Sync job {job_id} FAILED: {error}")

    async def invalidate_source_views(self, brand_id: uuid.UUID, source_id: uuid.UUID) -> None:
        await self.recalculator.invalidate(brand_id, source_id)
        await self.cache.invalidate_many([summary_key(source_id)])

    # ── Recovery ───────────────────────────────────────────────────────

    async def reconcile_stale_jobs(self, db: AsyncSession, now: Optional[datetime] = None) -> int:
        """
        Fail jobs left active by a crashed process: RUNNING jobs started, or
        QUEUED jobs created, longer ago than the stale timeout.
        """
        now = now or utcnow()
        timeout = self.settings.stale_job_timeout_minutes
        cutoff = now - timedelta(minutes=timeout)
        result = await db.execute(
            select(SyncJob).where(
                or_(
                    and_(SyncJob.status == JobStatus.RUNNING.value, SyncJob.started_at < cutoff),
                    and_(SyncJob.status == JobStatus.QUEUED.value, SyncJob.created_at < cutoff),
                )
            )
        )
        stale = result.scalars().all()
        for job in stale:
            error = f"{STALE_JOB_ERROR}: still {job.status} after {timeout} minutes"
            transition(job, JobStatus.FAILED)
            job.error_message = error
            job.completed_at = now
            source = await db.get(ReviewSource, job.review_source_id)
            if source:
                source.last_sync_status = SyncStatus.FAILED.value
                source.last_sync_error = error
            logger.warning(f"Marked stale sync job {job.id} for source {job.review_source_id} as FAILED")
        await db.flush()
        return len(stale)

    # ── Reads ──────────────────────────────────────────────────────────

    async def get_job(self, db: AsyncSession, job_id: uuid.UUID) -> SyncJob:
        job = await db.get(SyncJob, job_id)
        if not job:
            raise NotFoundError("SyncJob", job_id)
        return job

    async def list_jobs(self, db: AsyncSession, source_id: uuid.UUID, page: int, size: int) -> tuple[list[SyncJob], int]:
        total = (await db.execute(
            select(func.count()).select_from(SyncJob).where(SyncJob.review_source_id == source_id)
        )).scalar() or 0
        result = await db.execute(
            select(SyncJob)
            .where(SyncJob.review_source_id == source_id)
            .order_by(SyncJob.created_at.desc())
            .offset(page * size)
            .limit(size)
        )
        return list(result.scalars().all()), total
