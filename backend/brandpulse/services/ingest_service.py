"""
Ingest Service — Upserts fetched platform reviews for one source.

For each raw review, (source, external id) decides between insert and update:
  - unknown id: insert, classify sentiment, count as new
  - known id, rating/content/published time changed: update fields, count as
    updated, and reclassify unless a human corrected the sentiment
  - known id, unchanged: untouched (an unclassified row gets another try at
    classification, without counting as updated)
Classification runs in bounded batches; a failed batch leaves those reviews
unclassified (an edited review loses its stale AI label) instead of failing
the ingestion. Unclassified rows are retried on the next sync.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from brandpulse.models import ChangeReason, Review, SentimentChange
from brandpulse.services.platforms import RawReview
from brandpulse.services.sentiment_service import (
    AISentimentClassifier,
    SentimentClassifier,
    classify_in_batches,
)
from brandpulse.utils import content_hash, to_naive_utc, utcnow

logger = logging.getLogger(__name__)

# Keeps IN (...) lists well under driver parameter limits
LOOKUP_CHUNK_SIZE = 500
MAX_CONTENT_LENGTH = 5000


@dataclass
class IngestResult:
    fetched: int = 0
    new: int = 0
    updated: int = 0


class ReviewIngestor:
    def __init__(self, classifier: Optional[SentimentClassifier] = None):
        self.classifier = classifier or AISentimentClassifier()

    async def ingest(self, db: AsyncSession, source_id: uuid.UUID, raw_reviews: list[RawReview]) -> IngestResult:
        result = IngestResult(fetched=len(raw_reviews))

        # Same id twice in one fetch: the later record wins
        incoming: dict[str, RawReview] = {}
        for raw in raw_reviews:
            if not raw.external_id:
                logger.warning(f"Skipping review without external id for source {source_id}")
                continue
            if not 1 <= int(raw.rating) <= 5:
                logger.warning(f"Skipping review {raw.external_id}: rating {raw.rating} out of range")
                continue
            incoming[str(raw.external_id)] = raw
        if not incoming:
            return result

        existing = await self._load_existing(db, source_id, list(incoming))
        now = utcnow()
        to_classify: list[tuple[Review, str, bool]] = []  # (review, text, is_new)

        for external_id, raw in incoming.items():
            content = (raw.content or "")[:MAX_CONTENT_LENGTH]
            digest = content_hash(content)
            published_at = to_naive_utc(raw.published_at)
            review = existing.get(external_id)

            if review is None:
                review = Review(
                    review_source_id=source_id,
                    external_review_id=external_id,
                    content=content,
                    content_hash=digest,
                    author_name=raw.author_name,
                    rating=int(raw.rating),
                    sentiment=None,
                    sentiment_corrected=False,
                    published_at=published_at,
                    fetched_at=now,
                )
                db.add(review)
                to_classify.append((review, content, True))
                result.new += 1
                continue

            changed = (
                review.rating != int(raw.rating)
                or review.content_hash != digest
                or review.published_at != published_at
            )
            if changed:
                review.rating = int(raw.rating)
                review.content = content
                review.content_hash = digest
                review.author_name = raw.author_name or review.author_name
                review.published_at = published_at
                review.fetched_at = now
                result.updated += 1
                if review.sentiment_corrected:
                    logger.debug(f"Review {external_id} changed; keeping manually corrected sentiment {review.sentiment}")
                else:
                    to_classify.append((review, content, False))
            elif review.sentiment is None and not review.sentiment_corrected:
                to_classify.append((review, content, False))

        await db.flush()
        await self._apply_sentiments(db, to_classify)

        logger.info(
            f"Ingested {result.fetched} review(s) for source {source_id}: "
            f"new={result.new}, updated={result.updated}"
        )
        return result

    async def _load_existing(self, db: AsyncSession, source_id: uuid.UUID, external_ids: list[str]) -> dict[str, Review]:
        found: dict[str, Review] = {}
        for start in range(0, len(external_ids), LOOKUP_CHUNK_SIZE):
            chunk = external_ids[start:start + LOOKUP_CHUNK_SIZE]
            rows = await db.execute(
                select(Review).where(
                    Review.review_source_id == source_id,
                    Review.external_review_id.in_(chunk),
                )
            )
            for review in rows.scalars():
                found[review.external_review_id] = review
        return found

    async def _apply_sentiments(self, db: AsyncSession, to_classify: list[tuple[Review, str, bool]]) -> None:
        if not to_classify:
            return
        labels = await classify_in_batches(self.classifier, [text for _, text, _ in to_classify])
        unclassified = 0
        for (review, _, is_new), label in zip(to_classify, labels):
            if label is None:
                unclassified += 1
                if not is_new:
                    # Edited text: the previous AI label no longer applies
                    review.sentiment = None
                continue
            if review.sentiment == label.value:
                continue
            db.add(SentimentChange(
                review_id=review.id,
                old_sentiment=review.sentiment,
                new_sentiment=label.value,
                change_reason=(ChangeReason.AI_INITIAL if is_new or review.sentiment is None else ChangeReason.REPROCESSING).value,
            ))
            review.sentiment = label.value
        if unclassified:
            logger.warning(f"{unclassified} review(s) left without sentiment after classification failures")
        await db.flush()
