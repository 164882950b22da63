"""
AI Service — Multi-provider AI (OpenAI GPT, Anthropic Claude) for review
sentiment classification and per-source review summaries.
Model ids are "provider:model" strings from settings.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Optional
from openai import AsyncOpenAI
from anthropic import AsyncAnthropic
from brandpulse.config import get_settings
from brandpulse.models import Sentiment

logger = logging.getLogger(__name__)

SENTIMENT_SYSTEM_PROMPT = """You classify the sentiment of customer reviews for local businesses.
For every review you receive, answer with exactly one label:
- POSITIVE: the customer is satisfied overall
- NEGATIVE: the customer is dissatisfied or reports a problem
- NEUTRAL: mixed, factual, or no clear opinion

Respond ONLY with valid JSON of the form {"sentiments": ["POSITIVE", "NEGATIVE", ...]}
with one label per review, in the same order as the input."""

SUMMARY_SYSTEM_PROMPT = """You write short summaries of customer reviews for a business owner.
Summarize in 3-5 sentences: overall sentiment, what customers praise most,
the most frequent complaints, and one concrete suggestion. Be factual, refer to
patterns across reviews rather than single reviews, and do not invent details."""


@dataclass
class SummaryResult:
    text: str
    model: str
    token_count: int


def _parse_model_id(model_id: Optional[str]) -> tuple[str, str]:
    """Parse 'provider:model' into (provider, model). Fallback to the sentiment model setting."""
    if not model_id:
        model_id = get_settings().sentiment_model_id
    if ":" in model_id:
        p, m = model_id.split(":", 1)
        return (p.strip().lower(), m.strip())
    return ("openai", model_id.strip())


def _extract_json(content: str) -> dict:
    """Parse a JSON object from a completion, tolerating code fences and prose around it."""
    try:
        return json.loads(content)
    except json.JSONDecodeError:
        match = re.search(r"\{.*\}", content, re.DOTALL)
        if not match:
            raise
        return json.loads(match.group(0))


class AIService:
    """Multi-provider AI service for review intelligence (OpenAI GPT, Anthropic Claude)."""

    def __init__(
        self,
        model_id: Optional[str] = None,
        openai_api_key: Optional[str] = None,
        anthropic_api_key: Optional[str] = None,
    ):
        settings = get_settings()
        self.provider, self.model = _parse_model_id(model_id)
        self._openai_client: Optional[AsyncOpenAI] = None
        self._anthropic_client: Optional[AsyncAnthropic] = None
        self.last_token_count = 0

        openai_key = openai_api_key or settings.openai_api_key
        anthropic_key = anthropic_api_key or settings.anthropic_api_key

        if self.provider == "openai":
            if not openai_key:
                raise ValueError("OPENAI_API_KEY not configured.")
            self._openai_client = AsyncOpenAI(api_key=openai_key)
        elif self.provider == "anthropic":
            if not anthropic_key:
                raise ValueError("ANTHROPIC_API_KEY not configured.")
            self._anthropic_client = AsyncAnthropic(api_key=anthropic_key)
        else:
            raise ValueError(f"Unknown AI provider: {self.provider}")

    @property
    def model_id(self) -> str:
        return f"{self.provider}:{self.model}"

    async def _completion(
        self,
        messages: list[dict],
        temperature: float = 0.0,
        max_tokens: int = 1000,
        json_response: bool = False,
    ) -> str:
        """Call the appropriate provider's completion API."""
        if self.provider == "openai":
            kwargs = dict(
                model=self.model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
            )
            if json_response:
                kwargs["response_format"] = {"type": "json_object"}
            response = await self._openai_client.chat.completions.create(**kwargs)
            self.last_token_count = response.usage.total_tokens if response.usage else 0
            return response.choices[0].message.content or ""

        # Anthropic: system prompt goes in its own field
        system = ""
        anthropic_messages = []
        for m in messages:
            role = m.get("role", "user")
            content = m.get("content", "")
            if role == "system":
                system += content + "\n\n" if content else ""
            else:
                anthropic_messages.append({"role": "user" if role == "user" else "assistant", "content": content})

        response = await self._anthropic_client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            system=system.strip(),
            temperature=temperature,
            messages=anthropic_messages,
        )
        usage = getattr(response, "usage", None)
        self.last_token_count = (usage.input_tokens + usage.output_tokens) if usage else 0
        if response.content and response.content[0].type == "text":
            return response.content[0].text
        return ""

    async def classify_sentiments(self, texts: list[str]) -> list[Sentiment]:
        """
        Classify a batch of review texts. Raises ValueError when the model
        answers with the wrong number of labels or an unknown label.
        """
        if not texts:
            return []
        numbered = "\n".join(
            f"{i + 1}. {json.dumps(text[:2000])}" for i, text in enumerate(texts)
        )
        messages = [
            {"role": "system", "content": SENTIMENT_SYSTEM_PROMPT},
            {"role": "user", "content": f"Classify these {len(texts)} reviews:\n{numbered}"},
        ]
        content = await self._completion(messages, temperature=0.0, max_tokens=20 * len(texts) + 50, json_response=True)
        labels = _extract_json(content).get("sentiments")
        if not isinstance(labels, list) or len(labels) != len(texts):
            raise ValueError(f"Expected {len(texts)} sentiment labels, got {labels!r}")
        return [Sentiment(str(label).strip().upper()) for label in labels]

    async def summarize_reviews(self, reviews: list[dict], max_tokens: int = 500) -> SummaryResult:
        """Summarize reviews given as {"rating", "content", "sentiment"} dicts."""
        lines = [
            f"- [{r.get('rating')}/5, {r.get('sentiment') or 'UNCLASSIFIED'}] {(r.get('content') or '')[:500]}"
            for r in reviews
        ]
        messages = [
            {"role": "system", "content": SUMMARY_SYSTEM_PROMPT},
            {"role": "user", "content": f"Summarize these {len(reviews)} reviews:\n" + "\n".join(lines)},
        ]
        text = await self._completion(messages, temperature=0.3, max_tokens=max_tokens)
        return SummaryResult(text=text.strip(), model=self.model_id, token_count=self.last_token_count)


def create_ai_service(
    model_id: Optional[str] = None,
    openai_api_key: Optional[str] = None,
    anthropic_api_key: Optional[str] = None,
) -> AIService:
    """Factory function to create an AI service instance. Keys from env or passed explicitly."""
    return AIService(
        model_id=model_id,
        openai_api_key=openai_api_key,
        anthropic_api_key=anthropic_api_key,
    )
