"""
Dashboard Router — Aggregated metrics and AI summaries.
"""

import logging
from typing import Optional
from uuid import UUID
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from brandpulse.auth import get_current_user, get_owned_brand, get_brand_source
from brandpulse.database import get_db
from brandpulse.models import User
from brandpulse.services.dashboard_service import DashboardService
from brandpulse.services.cache import CachePort, get_cache
from brandpulse.services.summary_service import (
    NO_REVIEWS_TEXT,
    SummaryService,
    get_summary_service,
    serialize_summary,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/brands/{brand_id}", tags=["Dashboard"])


@router.get("/dashboard")
async def get_dashboard(
    brand_id: UUID,
    source_id: Optional[UUID] = None,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache: CachePort = Depends(get_cache),
):
    """All-sources view by default; ?source_id= narrows metrics to one source."""
    brand = await get_owned_brand(db, brand_id, user)
    return await DashboardService(cache=cache).get_dashboard(db, brand, source_id)


@router.get("/review-sources/{source_id}/summary")
async def get_source_summary(
    brand_id: UUID,
    source_id: UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    summaries: SummaryService = Depends(get_summary_service),
):
    """
    Latest valid AI summary. When none is valid, generation starts in the
    background and the response is 202 {"status": "generating"}.
    """
    brand = await get_owned_brand(db, brand_id, user)
    source = await get_brand_source(db, brand, source_id)

    summary = await summaries.get_valid_summary(db, source.id)
    if summary:
        return {"status": "ready", **summary}

    if await summaries.count_reviews(db, source.id) == 0:
        return {"status": "empty", "review_source_id": str(source.id), "summary_text": NO_REVIEWS_TEXT}

    summaries.schedule_generation(source.id)
    return JSONResponse(status_code=202, content={"status": "generating", "review_source_id": str(source.id)})


@router.get("/review-sources/{source_id}/summaries")
async def list_source_summaries(
    brand_id: UUID,
    source_id: UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    summaries: SummaryService = Depends(get_summary_service),
):
    """Summary history, newest first."""
    brand = await get_owned_brand(db, brand_id, user)
    source = await get_brand_source(db, brand, source_id)
    return [serialize_summary(s) for s in await summaries.history(db, source.id)]
