"""
Summary Service — AI-generated text summaries per review source.

Summary rows are immutable: each generation inserts a new row valid for 24h
and the newest valid row wins. Reads go through the cache key
summary:source:{sid}; when no valid summary exists the caller gets None and
generation is scheduled in the background (one in flight per source).
"""

import asyncio
import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from brandpulse.config import get_settings
from brandpulse.errors import NotFoundError
from brandpulse.models import AISummary, Review, ReviewSource
from brandpulse.services.ai_service import AIService, create_ai_service
from brandpulse.services.cache import CachePort, get_cache, summary_key
from brandpulse.utils import isoformat_or_none, utcnow

logger = logging.getLogger(__name__)

NO_REVIEWS_TEXT = "No reviews available for analysis yet."


def serialize_summary(summary: AISummary) -> dict:
    return {
        "id": str(summary.id),
        "review_source_id": str(summary.review_source_id),
        "summary_text": summary.summary_text,
        "model_used": summary.model_used,
        "token_count": summary.token_count,
        "generated_at": isoformat_or_none(summary.generated_at),
        "valid_until": isoformat_or_none(summary.valid_until),
    }


class SummaryService:
    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        cache: Optional[CachePort] = None,
        ai_factory: Optional[Callable[[], AIService]] = None,
    ):
        if session_factory is None:
            from brandpulse.database import async_session
            session_factory = async_session
        self.session_factory = session_factory
        self.cache = cache or get_cache()
        self.ai_factory = ai_factory or (lambda: create_ai_service(get_settings().summary_model_id))
        self.settings = get_settings()
        self._in_flight: dict[uuid.UUID, asyncio.Task] = {}

    async def get_valid_summary(self, db: AsyncSession, source_id: uuid.UUID, now: Optional[datetime] = None) -> Optional[dict]:
        """Newest summary with now < valid_until, cache first."""
        now = now or utcnow()
        key = summary_key(source_id)
        cached = await self.cache.get(key)
        if cached and cached.get("valid_until") and datetime.fromisoformat(cached["valid_until"]) > now:
            return cached

        result = await db.execute(
            select(AISummary)
            .where(AISummary.review_source_id == source_id, AISummary.valid_until > now)
            .order_by(AISummary.generated_at.desc())
            .limit(1)
        )
        summary = result.scalar_one_or_none()
        if summary is None:
            return None

        payload = serialize_summary(summary)
        remaining = int((summary.valid_until - now).total_seconds())
        await self.cache.set(key, payload, ttl_seconds=max(1, min(remaining, self.settings.summary_cache_ttl_seconds)))
        return payload

    async def count_reviews(self, db: AsyncSession, source_id: uuid.UUID) -> int:
        return (await db.execute(
            select(func.count()).select_from(Review).where(Review.review_source_id == source_id)
        )).scalar() or 0

    async def generate(self, source_id: uuid.UUID) -> Optional[AISummary]:
        """Summarize the most recent reviews and store a new row. None when there is nothing to summarize."""
        async with self.session_factory() as db:
            if not await db.get(ReviewSource, source_id):
                raise NotFoundError("ReviewSource", source_id)
            reviews = (await db.execute(
                select(Review)
                .where(Review.review_source_id == source_id)
                .order_by(Review.published_at.desc())
                .limit(self.settings.ai_summary_review_count)
            )).scalars().all()
            if not reviews:
                logger.warning(f"No reviews for source {source_id}; skipping summary generation")
                return None

            ai = self.ai_factory()
            result = await ai.summarize_reviews(
                [{"rating": r.rating, "content": r.content, "sentiment": r.sentiment} for r in reviews],
                max_tokens=self.settings.ai_summary_max_tokens,
            )
            generated_at = utcnow()
            summary = AISummary(
                review_source_id=source_id,
                summary_text=result.text,
                model_used=result.model,
                token_count=result.token_count,
                generated_at=generated_at,
                valid_until=generated_at + timedelta(hours=self.settings.ai_summary_validity_hours),
            )
            db.add(summary)
            await db.commit()

        await self.cache.invalidate_many([summary_key(source_id)])
        logger.info(f"AI summary {summary.id} generated for source {source_id}, tokens used: {summary.token_count}")
        return summary

    def schedule_generation(self, source_id: uuid.UUID) -> asyncio.Task:
        """Start background generation unless one is already running for the source."""
        task = self._in_flight.get(source_id)
        if task is not None and not task.done():
            return task
        task = asyncio.create_task(self._generate_safely(source_id))
        self._in_flight[source_id] = task
        task.add_done_callback(lambda t: self._forget(source_id, t))
        return task

    def _forget(self, source_id: uuid.UUID, task: asyncio.Task) -> None:
        # A newer task may already own the slot
        if self._in_flight.get(source_id) is task:
            del self._in_flight[source_id]

    async def _generate_safely(self, source_id: uuid.UUID) -> None:
        try:
            await self.generate(source_id)
        except Exception:
            logger.exception(f"Failed to generate AI summary for source {source_id}")

    async def history(self, db: AsyncSession, source_id: uuid.UUID, limit: int = 20) -> list[AISummary]:
        result = await db.execute(
            select(AISummary)
            .where(AISummary.review_source_id == source_id)
            .order_by(AISummary.generated_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())


_summary_service: Optional[SummaryService] = None


def get_summary_service() -> SummaryService:
    global _summary_service
    if _summary_service is None:
        _summary_service = SummaryService()
    return _summary_service
