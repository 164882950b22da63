#!/usr/bin/env python3
"""
Run one review sync scheduler cycle from the command line and wait for the
queued jobs to finish.

Run from backend directory:
  python scripts/run_daily_sync.py

Force a sync of a single source (ignores its schedule, not the active-job guard):
  python scripts/run_daily_sync.py --source-id <uuid>
"""

import asyncio
import argparse
import sys
import uuid
from pathlib import Path

# Ensure backend root is on path
backend_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(backend_root))

from sqlalchemy import select

from brandpulse.database import async_session
from brandpulse.errors import BrandPulseError
from brandpulse.models import JobType, SyncJob
from brandpulse.services.scheduler_service import SourceScheduler, SyncWorkerPool
from brandpulse.services.sync_service import SyncJobOrchestrator, serialize_job


async def run_cycle(pool: SyncWorkerPool):
    scheduler = SourceScheduler(pool.orchestrator, pool)
    result = await scheduler.run_cycle()
    print(f"Due sources: {result.due}, jobs created: {len(result.created)}, skipped: {len(result.skipped)}")
    if result.reconciled:
        print(f"Reconciled stale jobs: {result.reconciled}")


async def run_single_source(pool: SyncWorkerPool, source_id: uuid.UUID):
    async with async_session() as db:
        job = await pool.orchestrator.create_job(db, source_id, JobType.MANUAL)
        await db.commit()
    print(f"Queued job {job.id} for source {source_id}")
    pool.submit(job.id, source_id)


async def main():
    parser = argparse.ArgumentParser(description="Run a review sync cycle")
    parser.add_argument("--source-id", help="Sync only this review source")
    args = parser.parse_args()

    pool = SyncWorkerPool(SyncJobOrchestrator())
    try:
        if args.source_id:
            await run_single_source(pool, uuid.UUID(args.source_id))
        else:
            await run_cycle(pool)
    except BrandPulseError as e:
        print(f"Error: {e.message}")
        sys.exit(1)

    await pool.join()

    async with async_session() as db:
        recent = await db.execute(select(SyncJob).order_by(SyncJob.created_at.desc()).limit(20))
        for job in recent.scalars().all():
            data = serialize_job(job)
            print(
                f"  {data['id']} {data['job_type']:<9} {data['status']:<9} "
                f"fetched={data['reviews_fetched']} new={data['reviews_new']} updated={data['reviews_updated']}"
                + (f" error={data['error_message']}" if data["error_message"] else "")
            )


if __name__ == "__main__":
    asyncio.run(main())
