"""
Tests for sentiment classification: the AI-backed classifier, batching and
degraded batches.
"""

import json
from unittest.mock import AsyncMock, patch

import pytest

from brandpulse.errors import ClassificationError
from brandpulse.models import Sentiment
from brandpulse.services.ai_service import AIService, create_ai_service
from brandpulse.services.sentiment_service import AISentimentClassifier, classify_in_batches
from conftest import FakeClassifier

pytestmark = pytest.mark.anyio


@pytest.fixture
def ai_service():
    return AIService(model_id="openai:gpt-4o-mini", openai_api_key="sk-test")


async def test_classify_sentiments_parses_labels(ai_service):
    reply = json.dumps({"sentiments": ["positive", "NEGATIVE", "Neutral"]})
    with patch.object(ai_service, "_completion", new_callable=AsyncMock, return_value=reply) as completion:
        labels = await ai_service.classify_sentiments(["great", "awful", "fine"])

    assert labels == [Sentiment.POSITIVE, Sentiment.NEGATIVE, Sentiment.NEUTRAL]
    assert completion.call_args.kwargs["json_response"] is True


async def test_classify_sentiments_tolerates_code_fences(ai_service):
    reply = '```json\n{"sentiments": ["POSITIVE"]}\n```'
    with patch.object(ai_service, "_completion", new_callable=AsyncMock, return_value=reply):
        assert await ai_service.classify_sentiments(["great"]) == [Sentiment.POSITIVE]


async def test_classify_sentiments_rejects_wrong_label_count(ai_service):
    reply = json.dumps({"sentiments": ["POSITIVE"]})
    with patch.object(ai_service, "_completion", new_callable=AsyncMock, return_value=reply):
        with pytest.raises(ValueError):
            await ai_service.classify_sentiments(["great", "awful"])


def test_model_id_parsing():
    service = create_ai_service("anthropic:claude-3-5-haiku-latest", anthropic_api_key="sk-ant-test")
    assert service.provider == "anthropic"
    assert service.model == "claude-3-5-haiku-latest"
    assert service.model_id == "anthropic:claude-3-5-haiku-latest"


def test_unknown_provider_is_rejected():
    with pytest.raises(ValueError, match="Unknown AI provider"):
        AIService(model_id="mistral:large", openai_api_key="sk-test")


async def test_ai_classifier_wraps_provider_failures():
    service = AsyncMock(spec=AIService)
    service.classify_sentiments.side_effect = RuntimeError("upstream 500")
    classifier = AISentimentClassifier(ai_service=service, max_batch_size=5)

    with pytest.raises(ClassificationError, match="upstream 500"):
        await classifier.classify(["a", "b"])


async def test_ai_classifier_rejects_oversized_batch():
    service = AsyncMock(spec=AIService)
    classifier = AISentimentClassifier(ai_service=service, max_batch_size=2)

    with pytest.raises(ClassificationError):
        await classifier.classify(["a", "b", "c"])
    service.classify_sentiments.assert_not_called()


async def test_classify_in_batches_respects_classifier_limit():
    classifier = FakeClassifier(default=Sentiment.POSITIVE, max_batch_size=3)

    labels = await classify_in_batches(classifier, [f"t{i}" for i in range(7)], batch_size=50)

    assert [len(batch) for batch in classifier.calls] == [3, 3, 1]
    assert labels == [Sentiment.POSITIVE] * 7


async def test_failed_batch_degrades_to_none():
    classifier = FakeClassifier(default=Sentiment.NEGATIVE, fail_calls={2}, max_batch_size=2)

    labels = await classify_in_batches(classifier, ["a", "b", "c", "d", "e"])

    assert labels == [Sentiment.NEGATIVE, Sentiment.NEGATIVE, None, None, Sentiment.NEGATIVE]


async def test_label_count_mismatch_degrades_batch():
    class ShortClassifier(FakeClassifier):
        async def classify(self, texts):
            return [Sentiment.POSITIVE]

    labels = await classify_in_batches(ShortClassifier(max_batch_size=10), ["a", "b"])
    assert labels == [None, None]
