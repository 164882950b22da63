"""
Sentiment classification for ingested reviews.

The classifier takes bounded batches and fails as a unit with
ClassificationError. classify_in_batches() splits a larger list into batches
and degrades a failed batch to unset sentiment (None) instead of failing.
"""

import logging
from typing import Optional

from brandpulse.config import get_settings
from brandpulse.errors import ClassificationError
from brandpulse.models import Sentiment
from brandpulse.services.ai_service import AIService, create_ai_service

logger = logging.getLogger(__name__)


class SentimentClassifier:
    """Port: classify(batch of texts) -> one Sentiment per text, in order."""

    max_batch_size: int = 20

    async def classify(self, texts: list[str]) -> list[Sentiment]:
        raise NotImplementedError


class AISentimentClassifier(SentimentClassifier):
    """Classifier backed by the configured LLM provider."""

    def __init__(self, ai_service: Optional[AIService] = None, max_batch_size: Optional[int] = None):
        self._ai_service = ai_service
        self.max_batch_size = max_batch_size or get_settings().sentiment_batch_size

    def _service(self) -> AIService:
        if self._ai_service is None:
            try:
                self._ai_service = create_ai_service(get_settings().sentiment_model_id)
            except ValueError as e:
                raise ClassificationError(f"Sentiment model unavailable: {e}") from e
        return self._ai_service

    async def classify(self, texts: list[str]) -> list[Sentiment]:
        if len(texts) > self.max_batch_size:
            raise ClassificationError(f"Batch of {len(texts)} exceeds the limit of {self.max_batch_size}")
        service = self._service()
        try:
            return await service.classify_sentiments(texts)
        except Exception as e:
            raise ClassificationError(f"Sentiment classification failed: {e}") from e


async def classify_in_batches(
    classifier: SentimentClassifier,
    texts: list[str],
    batch_size: Optional[int] = None,
) -> list[Optional[Sentiment]]:
    """
    Classify texts in groups no larger than the classifier's limit.
    Returns one entry per text; entries of failed groups are None.
    """
    size = min(batch_size or classifier.max_batch_size, classifier.max_batch_size)
    results: list[Optional[Sentiment]] = []
    for start in range(0, len(texts), size):
        batch = texts[start:start + size]
        try:
            labels = await classifier.classify(batch)
            if len(labels) != len(batch):
                raise ClassificationError(f"Classifier returned {len(labels)} labels for {len(batch)} texts")
            results.extend(labels)
        except ClassificationError as e:
            logger.warning(f"Sentiment batch {start // size + 1} ({len(batch)} reviews) left unclassified: {e}")
            results.extend([None] * len(batch))
    return results
