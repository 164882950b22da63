"""
Review Sources Router — Platform profiles of a brand, manual sync and job history.

Creating a source schedules its first daily sync and queues an INITIAL import.
Platform credentials are stored encrypted and never returned.
"""

import logging
from typing import Optional
from uuid import UUID
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func

from brandpulse.auth import get_current_user, get_owned_brand, get_brand_source
from brandpulse.crypto import encrypt_credentials
from brandpulse.database import get_db
from brandpulse.errors import ConflictError, PlanLimitError, ValidationError
from brandpulse.models import ActivityType, Brand, JobType, ReviewSource, SourceType, User
from brandpulse.services.activity_service import record_activity
from brandpulse.services.cache import CachePort, dashboard_key, get_cache, summary_key
from brandpulse.services.scheduler_service import SourceScheduler, get_source_scheduler
from brandpulse.services.sync_service import serialize_job
from brandpulse.utils import isoformat_or_none, pagination_response, utcnow, validate_pagination

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/brands/{brand_id}/review-sources", tags=["Review Sources"])


# ── Schemas ──────────────────────────────────────────────────────────
class SourceCreate(BaseModel):
    source_type: SourceType
    profile_url: Optional[str] = Field(default=None, max_length=2000)
    external_profile_id: str = Field(min_length=1, max_length=255)
    credentials: Optional[dict] = None


class SourceUpdate(BaseModel):
    is_active: Optional[bool] = None
    profile_url: Optional[str] = Field(default=None, max_length=2000)
    credentials: Optional[dict] = None


# ── Helpers ───────────────────────────────────────────────────────────
def _source_to_response(source: ReviewSource) -> dict:
    return {
        "id": str(source.id),
        "brand_id": str(source.brand_id),
        "source_type": source.source_type,
        "profile_url": source.profile_url,
        "external_profile_id": source.external_profile_id,
        "has_credentials": bool(source.credentials_encrypted),
        "is_active": source.is_active,
        "last_sync_at": isoformat_or_none(source.last_sync_at),
        "last_sync_status": source.last_sync_status,
        "last_sync_error": source.last_sync_error,
        "next_scheduled_sync_at": isoformat_or_none(source.next_scheduled_sync_at),
        "created_at": isoformat_or_none(source.created_at),
    }


async def _invalidate_brand_views(cache: CachePort, brand_id: UUID, source_id: UUID) -> None:
    await cache.invalidate_many([dashboard_key(brand_id), dashboard_key(brand_id, source_id), summary_key(source_id)])


async def _owned_source(db: AsyncSession, brand_id: UUID, source_id: UUID, user: User) -> tuple[Brand, ReviewSource]:
    brand = await get_owned_brand(db, brand_id, user)
    source = await get_brand_source(db, brand, source_id)
    return brand, source


# ── Endpoints ────────────────────────────────────────────────────────
@router.post("", status_code=201)
async def create_source(
    brand_id: UUID,
    payload: SourceCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    scheduler: SourceScheduler = Depends(get_source_scheduler),
    cache: CachePort = Depends(get_cache),
):
    brand = await get_owned_brand(db, brand_id, user)

    owned_sources = (await db.execute(
        select(func.count()).select_from(ReviewSource).join(Brand, Brand.id == ReviewSource.brand_id)
        .where(Brand.user_id == user.id)
    )).scalar() or 0
    if owned_sources >= (user.max_sources_allowed or 0):
        raise PlanLimitError(f"Your plan allows {user.max_sources_allowed} review source(s)")

    duplicate = await db.execute(
        select(ReviewSource.id).where(
            ReviewSource.brand_id == brand.id,
            ReviewSource.source_type == payload.source_type.value,
            ReviewSource.external_profile_id == payload.external_profile_id,
        )
    )
    if duplicate.scalar_one_or_none():
        raise ConflictError("This platform profile is already connected to the brand")

    now = utcnow()
    source = ReviewSource(
        brand_id=brand.id,
        source_type=payload.source_type.value,
        profile_url=payload.profile_url,
        external_profile_id=payload.external_profile_id.strip(),
        credentials_encrypted=encrypt_credentials(payload.credentials),
        is_active=True,
        next_scheduled_sync_at=scheduler.next_sync_time(now),
    )
    db.add(source)
    await db.flush()

    job = await scheduler.orchestrator.create_job(db, source.id, JobType.INITIAL)
    if owned_sources == 0:
        record_activity(db, user.id, ActivityType.FIRST_SOURCE_CONFIGURED_SUCCESSFULLY, {"source_id": str(source.id)})
    await db.commit()
    if scheduler.pool is not None:
        scheduler.pool.submit(job.id, source.id)
    await _invalidate_brand_views(cache, brand.id, source.id)

    logger.info(f"Source {source.id} ({source.source_type}) added to brand {brand.id}; initial import job {job.id}")
    return {**_source_to_response(source), "initial_job": serialize_job(job)}


@router.get("")
async def list_sources(brand_id: UUID, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    brand = await get_owned_brand(db, brand_id, user)
    result = await db.execute(
        select(ReviewSource).where(ReviewSource.brand_id == brand.id).order_by(ReviewSource.created_at)
    )
    return [_source_to_response(s) for s in result.scalars().all()]


@router.get("/{source_id}")
async def get_source(
    brand_id: UUID, source_id: UUID,
    user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db),
):
    _, source = await _owned_source(db, brand_id, source_id, user)
    return _source_to_response(source)


@router.patch("/{source_id}")
async def update_source(
    brand_id: UUID,
    source_id: UUID,
    payload: SourceUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    scheduler: SourceScheduler = Depends(get_source_scheduler),
    cache: CachePort = Depends(get_cache),
):
    """Pause/resume a source or change its profile URL / credentials."""
    brand, source = await _owned_source(db, brand_id, source_id, user)
    if payload.is_active is not None and payload.is_active != source.is_active:
        source.is_active = payload.is_active
        if payload.is_active:
            source.next_scheduled_sync_at = scheduler.next_sync_time(utcnow())
        logger.info(f"Source {source.id} {'resumed' if payload.is_active else 'paused'}")
    if payload.profile_url is not None:
        source.profile_url = payload.profile_url
    if payload.credentials is not None:
        source.credentials_encrypted = encrypt_credentials(payload.credentials)
    await db.commit()
    await _invalidate_brand_views(cache, brand.id, source.id)
    return _source_to_response(source)


@router.delete("/{source_id}", status_code=204)
async def delete_source(
    brand_id: UUID,
    source_id: UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache: CachePort = Depends(get_cache),
):
    """Delete the source with its jobs, reviews, aggregate and summaries."""
    brand, source = await _owned_source(db, brand_id, source_id, user)
    await db.delete(source)
    await db.commit()
    await _invalidate_brand_views(cache, brand.id, source_id)
    logger.info(f"Source {source_id} deleted from brand {brand.id}")


# ── Sync ─────────────────────────────────────────────────────────────
@router.post("/{source_id}/sync", status_code=202)
async def trigger_sync(
    brand_id: UUID,
    source_id: UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    scheduler: SourceScheduler = Depends(get_source_scheduler),
):
    """
    Queue a MANUAL sync. 409 when a job is already queued or running,
    429 inside the manual refresh cooldown.
    """
    _, source = await _owned_source(db, brand_id, source_id, user)
    if not source.is_active:
        raise ValidationError("Source is paused; resume it before syncing")
    job = await scheduler.trigger_manual_sync(db, source.id)
    record_activity(db, user.id, ActivityType.MANUAL_REFRESH_TRIGGERED, {"source_id": str(source.id), "job_id": str(job.id)})
    await db.commit()
    if scheduler.pool is not None:
        scheduler.pool.submit(job.id, source.id)
    return {**serialize_job(job), "message": "Sync job queued"}


@router.get("/{source_id}/sync-jobs")
async def list_sync_jobs(
    brand_id: UUID,
    source_id: UUID,
    page: int = Query(0),
    size: int = Query(20),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    scheduler: SourceScheduler = Depends(get_source_scheduler),
):
    _, source = await _owned_source(db, brand_id, source_id, user)
    page, size = validate_pagination(page, size)
    jobs, total = await scheduler.orchestrator.list_jobs(db, source.id, page, size)
    return {"jobs": [serialize_job(j) for j in jobs], "pagination": pagination_response(page, size, total)}
