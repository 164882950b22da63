"""
Sync Jobs Router — Poll a sync job's status and counts.
"""

from uuid import UUID
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from brandpulse.auth import get_current_user, get_owned_brand
from brandpulse.database import get_db
from brandpulse.errors import NotFoundError
from brandpulse.models import ReviewSource, User
from brandpulse.services.scheduler_service import SourceScheduler, get_source_scheduler
from brandpulse.services.sync_service import serialize_job

router = APIRouter(prefix="/sync-jobs", tags=["Sync Jobs"])


@router.get("/{job_id}")
async def get_sync_job(
    job_id: UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    scheduler: SourceScheduler = Depends(get_source_scheduler),
):
    job = await scheduler.orchestrator.get_job(db, job_id)
    source = await db.get(ReviewSource, job.review_source_id)
    if not source:
        raise NotFoundError("SyncJob", job_id)
    await get_owned_brand(db, source.brand_id, user)
    return serialize_job(job)
