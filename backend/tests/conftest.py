"""
Shared fixtures: a throwaway SQLite database per test (aiosqlite, foreign
keys on), fake platform client and sentiment classifier, in-memory cache.
"""

import uuid
from datetime import datetime

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from brandpulse.database import Base
from brandpulse.errors import ClassificationError
from brandpulse.models import Brand, ReviewSource, Sentiment, SourceType, User
from brandpulse.services.aggregate_service import AggregateRecalculator
from brandpulse.services.cache import InMemoryCache
from brandpulse.services.ingest_service import ReviewIngestor
from brandpulse.services.platforms import RawReview
from brandpulse.services.sentiment_service import SentimentClassifier
from brandpulse.services.sync_service import SyncJobOrchestrator
import brandpulse.models  # noqa: F401


@pytest.fixture
def anyio_backend():
    return "asyncio"


class FakeClassifier(SentimentClassifier):
    """Labels by exact text; fails the batches whose 1-based call number is in fail_calls."""

    def __init__(self, labels=None, default=Sentiment.NEUTRAL, fail_calls=(), max_batch_size=20):
        self.labels = labels or {}
        self.default = default
        self.fail_calls = set(fail_calls)
        self.max_batch_size = max_batch_size
        self.calls: list[list[str]] = []

    async def classify(self, texts):
        self.calls.append(list(texts))
        if len(self.calls) in self.fail_calls:
            raise ClassificationError("classifier unavailable")
        return [self.labels.get(t, self.default) for t in texts]


class FakePlatformClient:
    def __init__(self, reviews=None, error=None):
        self.reviews = list(reviews or [])
        self.error = error
        self.calls: list[dict] = []

    async def fetch(self, credentials, profile_id, since=None):
        self.calls.append({"credentials": credentials, "profile_id": profile_id, "since": since})
        if self.error is not None:
            raise self.error
        return list(self.reviews)


def raw_review(external_id, rating, content=None, published_at=None, author="Customer"):
    return RawReview(
        external_id=external_id,
        rating=rating,
        content=content if content is not None else f"Review {external_id}",
        author_name=author,
        published_at=published_at or datetime(2026, 1, 5, 12, 0),
    )


@pytest.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'brandpulse-test.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def cache():
    return InMemoryCache()


@pytest.fixture
def classifier():
    return FakeClassifier()


@pytest.fixture
def platform_client():
    return FakePlatformClient()


@pytest.fixture
def orchestrator(session_factory, cache, classifier, platform_client):
    return SyncJobOrchestrator(
        session_factory=session_factory,
        ingestor=ReviewIngestor(classifier),
        recalculator=AggregateRecalculator(cache=cache),
        cache=cache,
        client_factory=lambda source_type: platform_client,
    )


@pytest.fixture
def make_source(session_factory):
    """Create user -> brand -> source rows; returns the source (detached, attributes loaded)."""

    async def _make(
        source_type=SourceType.GOOGLE,
        is_active=True,
        next_scheduled_sync_at=None,
        last_sync_at=None,
        brand_id=None,
    ) -> ReviewSource:
        async with session_factory() as db:
            if brand_id is None:
                user = User(email=f"{uuid.uuid4().hex[:8]}@example.com", password_hash="x", name="Owner")
                db.add(user)
                await db.flush()
                brand = Brand(user_id=user.id, name="Cafe Aurora")
                db.add(brand)
                await db.flush()
                brand_id = brand.id
            source = ReviewSource(
                brand_id=brand_id,
                source_type=source_type.value,
                external_profile_id=f"profile-{uuid.uuid4().hex[:8]}",
                is_active=is_active,
                next_scheduled_sync_at=next_scheduled_sync_at,
                last_sync_at=last_sync_at,
            )
            db.add(source)
            await db.commit()
            return source

    return _make
