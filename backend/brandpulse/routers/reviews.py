"""
Reviews Router — Filtered review listing, review detail with sentiment history,
and manual sentiment correction.

A corrected sentiment is sticky: later syncs update rating and content but
keep the human label.
"""

import logging
from datetime import date, datetime, time, timedelta
from typing import Optional
from uuid import UUID
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func

from brandpulse.auth import get_current_user, get_owned_brand, get_brand_source
from brandpulse.database import get_db
from brandpulse.errors import NotFoundError
from brandpulse.models import ActivityType, ChangeReason, Review, ReviewSource, Sentiment, SentimentChange, User
from brandpulse.services.activity_service import record_activity
from brandpulse.services.aggregate_service import AggregateRecalculator
from brandpulse.services.cache import CachePort, get_cache, summary_key
from brandpulse.services.dashboard_service import serialize_review
from brandpulse.utils import isoformat_or_none, pagination_response, validate_pagination

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/brands/{brand_id}/reviews", tags=["Reviews"])

SORT_COLUMNS = {"published_at": Review.published_at, "rating": Review.rating}


class SentimentUpdate(BaseModel):
    sentiment: Sentiment


@router.get("")
async def list_reviews(
    brand_id: UUID,
    source_id: Optional[UUID] = None,
    sentiment: Optional[list[Sentiment]] = Query(None),
    rating: Optional[list[int]] = Query(None),
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    sort_by: str = "published_at",
    sort_direction: str = "desc",
    page: int = Query(0),
    size: int = Query(20),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    brand = await get_owned_brand(db, brand_id, user)
    page, size = validate_pagination(page, size)
    if sort_by not in SORT_COLUMNS:
        raise HTTPException(status_code=400, detail=f"sort_by must be one of: {', '.join(SORT_COLUMNS)}")
    if sort_direction not in ("asc", "desc"):
        raise HTTPException(status_code=400, detail="sort_direction must be 'asc' or 'desc'")
    if rating and any(r < 1 or r > 5 for r in rating):
        raise HTTPException(status_code=400, detail="rating filter values must be between 1 and 5")
    if start_date and end_date and start_date > end_date:
        raise HTTPException(status_code=400, detail="start_date must not be after end_date")

    if source_id is not None:
        source_ids = [(await get_brand_source(db, brand, source_id)).id]
    else:
        source_ids = (await db.execute(
            select(ReviewSource.id).where(ReviewSource.brand_id == brand.id)
        )).scalars().all()

    filters = [Review.review_source_id.in_(source_ids)]
    if sentiment:
        filters.append(Review.sentiment.in_([s.value for s in sentiment]))
    if rating:
        filters.append(Review.rating.in_(rating))
    if start_date:
        filters.append(Review.published_at >= datetime.combine(start_date, time.min))
    if end_date:
        filters.append(Review.published_at < datetime.combine(end_date + timedelta(days=1), time.min))

    total = (await db.execute(select(func.count()).select_from(Review).where(*filters))).scalar() or 0
    column = SORT_COLUMNS[sort_by]
    order = column.desc() if sort_direction == "desc" else column.asc()
    result = await db.execute(
        select(Review).where(*filters).order_by(order, Review.id).offset(page * size).limit(size)
    )
    return {
        "reviews": [serialize_review(r) for r in result.scalars().all()],
        "pagination": pagination_response(page, size, total),
    }


@router.get("/{review_id}")
async def get_review(
    brand_id: UUID,
    review_id: UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """One review with its sentiment history, newest change first."""
    brand = await get_owned_brand(db, brand_id, user)
    review = await db.get(Review, review_id)
    if not review:
        raise NotFoundError("Review", review_id)
    source = await get_brand_source(db, brand, review.review_source_id)

    changes = await db.execute(
        select(SentimentChange)
        .where(SentimentChange.review_id == review.id)
        .order_by(SentimentChange.changed_at.desc(), SentimentChange.id)
    )
    return {
        **serialize_review(review),
        "source_type": source.source_type,
        "content_hash": review.content_hash,
        "created_at": isoformat_or_none(review.created_at),
        "updated_at": isoformat_or_none(review.updated_at),
        "sentiment_history": [
            {
                "changed_at": isoformat_or_none(c.changed_at),
                "old_sentiment": c.old_sentiment,
                "new_sentiment": c.new_sentiment,
                "change_reason": c.change_reason,
                "changed_by_user_id": str(c.changed_by_user_id) if c.changed_by_user_id else None,
            }
            for c in changes.scalars().all()
        ],
    }


@router.patch("/{review_id}/sentiment")
async def correct_sentiment(
    brand_id: UUID,
    review_id: UUID,
    payload: SentimentUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cache: CachePort = Depends(get_cache),
):
    """Override a review's sentiment; the change is audited and the source aggregate rebuilt."""
    brand = await get_owned_brand(db, brand_id, user)
    review = await db.get(Review, review_id)
    if not review:
        raise NotFoundError("Review", review_id)
    source = await get_brand_source(db, brand, review.review_source_id)

    old_sentiment = review.sentiment
    new_sentiment = payload.sentiment.value
    if old_sentiment != new_sentiment or not review.sentiment_corrected:
        db.add(SentimentChange(
            review_id=review.id,
            old_sentiment=old_sentiment,
            new_sentiment=new_sentiment,
            changed_by_user_id=user.id,
            change_reason=ChangeReason.USER_CORRECTION.value,
        ))
    review.sentiment = new_sentiment
    review.sentiment_corrected = True

    record_activity(db, user.id, ActivityType.SENTIMENT_CORRECTED, {
        "review_id": str(review.id),
        "old_sentiment": old_sentiment,
        "new_sentiment": new_sentiment,
    })

    recalculator = AggregateRecalculator(cache=cache)
    await recalculator.recalculate(db, source.id)
    await db.commit()
    await recalculator.invalidate(brand.id, source.id)
    await cache.invalidate(summary_key(source.id))

    logger.info(f"Review {review.id} sentiment corrected {old_sentiment} -> {new_sentiment} by user {user.id}")
    return {**serialize_review(review), "previous_sentiment": old_sentiment}
