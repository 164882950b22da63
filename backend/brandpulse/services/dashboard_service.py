"""
Dashboard Service — Brand and per-source metrics for the dashboard view.

Reads only the stored DashboardAggregate rows (never blocks on a running sync).
The brand-wide view sums the per-source rows at read time. Responses are
cached under dashboard:brand:{id}[:source:{sid}] for 10 minutes; syncs and
sentiment corrections invalidate them.
"""

import logging
import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from brandpulse.errors import NotFoundError
from brandpulse.models import Brand, DashboardAggregate, Review, ReviewSource, Sentiment
from brandpulse.services.cache import CachePort, dashboard_key, get_cache
from brandpulse.utils import isoformat_or_none, percentage, round_half_up, utcnow

logger = logging.getLogger(__name__)

RECENT_NEGATIVE_LIMIT = 5


def serialize_review(review: Review) -> dict:
    return {
        "id": str(review.id),
        "review_source_id": str(review.review_source_id),
        "external_review_id": review.external_review_id,
        "author_name": review.author_name,
        "rating": review.rating,
        "content": review.content,
        "sentiment": review.sentiment,
        "sentiment_corrected": bool(review.sentiment_corrected),
        "published_at": isoformat_or_none(review.published_at),
        "fetched_at": isoformat_or_none(review.fetched_at),
    }


def combine_aggregates(aggregates: list[DashboardAggregate]) -> dict:
    """Sum per-source aggregate rows into one metrics block."""
    total = sum(a.total_reviews or 0 for a in aggregates)
    rating_sum = sum(a.rating_sum or 0 for a in aggregates)
    positive = sum(a.positive_count or 0 for a in aggregates)
    negative = sum(a.negative_count or 0 for a in aggregates)
    neutral = sum(a.neutral_count or 0 for a in aggregates)
    distribution = {str(r): 0 for r in range(1, 6)}
    for a in aggregates:
        for rating, count in (a.rating_distribution or {}).items():
            distribution[str(rating)] = distribution.get(str(rating), 0) + int(count)

    return {
        "total_reviews": total,
        "average_rating": round_half_up(rating_sum / total) if total else 0.0,
        "positive_count": positive,
        "negative_count": negative,
        "neutral_count": neutral,
        "unclassified_count": total - positive - negative - neutral,
        "positive_percentage": percentage(positive, total),
        "negative_percentage": percentage(negative, total),
        "neutral_percentage": percentage(neutral, total),
        "rating_distribution": distribution,
    }


def summary_text(metrics: dict) -> str:
    """One-line human summary of a metrics block."""
    total = metrics["total_reviews"]
    if total == 0:
        return "No reviews available yet."
    if metrics["positive_percentage"] > 60:
        mood = f"{metrics['positive_percentage']:.0f}% positive reviews."
    elif metrics["negative_percentage"] > 40:
        mood = f"{metrics['negative_percentage']:.0f}% negative reviews."
    else:
        mood = "Mixed sentiment across reviews."
    return f"{mood} Average rating: {metrics['average_rating']:.1f}/5.0 based on {total} reviews."


class DashboardService:
    def __init__(self, cache: Optional[CachePort] = None):
        self.cache = cache or get_cache()

    async def get_dashboard(self, db: AsyncSession, brand: Brand, source_id: Optional[uuid.UUID] = None) -> dict:
        key = dashboard_key(brand.id, source_id)
        cached = await self.cache.get(key)
        if cached is not None:
            return cached

        sources = (await db.execute(
            select(ReviewSource).where(ReviewSource.brand_id == brand.id).order_by(ReviewSource.created_at)
        )).scalars().all()
        if source_id is not None and source_id not in {s.id for s in sources}:
            raise NotFoundError("ReviewSource", source_id)
        selected_ids = [source_id] if source_id is not None else [s.id for s in sources]

        aggregates = {}
        if sources:
            rows = await db.execute(
                select(DashboardAggregate).where(
                    DashboardAggregate.review_source_id.in_([s.id for s in sources])
                )
            )
            aggregates = {a.review_source_id: a for a in rows.scalars()}

        metrics = combine_aggregates([aggregates[sid] for sid in selected_ids if sid in aggregates])

        recent_negative = []
        if selected_ids:
            recent_negative = (await db.execute(
                select(Review)
                .where(
                    Review.review_source_id.in_(selected_ids),
                    Review.sentiment == Sentiment.NEGATIVE.value,
                )
                .order_by(Review.published_at.desc())
                .limit(RECENT_NEGATIVE_LIMIT)
            )).scalars().all()

        payload = {
            "brand_id": str(brand.id),
            "brand_name": brand.name,
            "selected_source_id": str(source_id) if source_id else None,
            "sources": [self._source_summary(s, aggregates.get(s.id)) for s in sources],
            "metrics": metrics,
            "summary_text": summary_text(metrics),
            "recent_negative_reviews": [serialize_review(r) for r in recent_negative],
            "last_updated": utcnow().isoformat(),
        }
        await self.cache.set(key, payload)
        logger.info(
            f"Dashboard built for brand {brand.id} (source={source_id}): "
            f"{metrics['total_reviews']} reviews across {len(selected_ids)} source(s)"
        )
        return payload

    @staticmethod
    def _source_summary(source: ReviewSource, aggregate: Optional[DashboardAggregate]) -> dict:
        return {
            "source_id": str(source.id),
            "source_type": source.source_type,
            "profile_url": source.profile_url,
            "is_active": source.is_active,
            "total_reviews": aggregate.total_reviews if aggregate else 0,
            "average_rating": aggregate.avg_rating if aggregate else 0.0,
            "last_sync_at": isoformat_or_none(source.last_sync_at),
            "last_sync_status": source.last_sync_status,
            "last_sync_error": source.last_sync_error,
            "next_scheduled_sync_at": isoformat_or_none(source.next_scheduled_sync_at),
        }
