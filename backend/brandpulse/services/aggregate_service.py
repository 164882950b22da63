"""
Aggregate Service — Rebuilds the per-source DashboardAggregate row from the
source's full review set, and signals invalidation of the cached dashboard
views that depend on it.

The aggregate is a cache of the reviews table: recalculate() never adjusts
counters incrementally, it recomputes from scratch.
"""

import logging
import uuid
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from brandpulse.errors import NotFoundError
from brandpulse.models import DashboardAggregate, Review, ReviewSource, Sentiment
from brandpulse.services.cache import CachePort, dashboard_key, get_cache
from brandpulse.utils import percentage, round_half_up, utcnow

logger = logging.getLogger(__name__)


class AggregateRecalculator:
    def __init__(self, cache: Optional[CachePort] = None):
        self.cache = cache or get_cache()

    async def recalculate(self, db: AsyncSession, source_id: uuid.UUID) -> DashboardAggregate:
        """
        Recompute totals, average rating and sentiment split for one source and
        upsert its single aggregate row. Flushes; the caller owns the commit and
        calls invalidate() once the new row is visible.
        """
        source = await db.get(ReviewSource, source_id)
        if not source:
            raise NotFoundError("ReviewSource", source_id)

        sentiment_rows = (await db.execute(
            select(Review.sentiment, func.count())
            .where(Review.review_source_id == source_id)
            .group_by(Review.sentiment)
        )).all()
        rating_rows = (await db.execute(
            select(Review.rating, func.count())
            .where(Review.review_source_id == source_id)
            .group_by(Review.rating)
        )).all()

        by_sentiment = {s: int(c) for s, c in sentiment_rows}
        distribution = {str(r): 0 for r in range(1, 6)}
        for rating, count in rating_rows:
            distribution[str(rating)] = int(count)

        total = sum(distribution.values())
        rating_sum = sum(int(r) * c for r, c in distribution.items())
        positive = by_sentiment.get(Sentiment.POSITIVE.value, 0)
        negative = by_sentiment.get(Sentiment.NEGATIVE.value, 0)
        neutral = by_sentiment.get(Sentiment.NEUTRAL.value, 0)

        result = await db.execute(
            select(DashboardAggregate).where(DashboardAggregate.review_source_id == source_id)
        )
        aggregate = result.scalar_one_or_none()
        if aggregate is None:
            aggregate = DashboardAggregate(review_source_id=source_id)
            db.add(aggregate)

        aggregate.total_reviews = total
        aggregate.rating_sum = rating_sum
        aggregate.avg_rating = round_half_up(rating_sum / total) if total else 0.0
        aggregate.positive_count = positive
        aggregate.negative_count = negative
        aggregate.neutral_count = neutral
        aggregate.unclassified_count = total - positive - negative - neutral
        aggregate.positive_pct = percentage(positive, total)
        aggregate.negative_pct = percentage(negative, total)
        aggregate.neutral_pct = percentage(neutral, total)
        aggregate.rating_distribution = distribution
        aggregate.last_calculated_at = utcnow()
        await db.flush()

        logger.info(
            f"Aggregate recalculated for source {source_id}: total={total}, avg={aggregate.avg_rating}, "
            f"positive={aggregate.positive_pct}%, negative={aggregate.negative_pct}%, neutral={aggregate.neutral_pct}%"
        )
        return aggregate

    async def invalidate(self, brand_id: uuid.UUID, source_id: uuid.UUID) -> None:
        """Drop the source-scoped and the brand's all-sources dashboard views."""
        keys = [dashboard_key(brand_id, source_id), dashboard_key(brand_id)]
        await self.cache.invalidate_many(keys)
        logger.debug(f"Invalidated dashboard cache keys: {keys}")
