"""
End-to-end API tests: auth, brand/source management, sync triggers, dashboard,
reviews and summaries, through the FastAPI app on a SQLite database.
"""

import uuid
from unittest.mock import MagicMock, patch

import pytest
from httpx import AsyncClient, ASGITransport

from brandpulse.database import get_db
from brandpulse.main import app
from brandpulse.models import JobStatus, Sentiment
from brandpulse.services.ai_service import SummaryResult
from brandpulse.services.cache import get_cache, summary_key
from brandpulse.services.scheduler_service import SourceScheduler, get_source_scheduler
from brandpulse.services.summary_service import SummaryService, get_summary_service
from conftest import raw_review

pytestmark = pytest.mark.anyio

PASSWORD = "Secret123"


class StubSummaryAI:
    async def summarize_reviews(self, reviews, max_tokens=500):
        return SummaryResult(text=f"Summary of {len(reviews)} reviews.", model="openai:gpt-4o-mini", token_count=42)


@pytest.fixture
def summaries(session_factory, cache):
    return SummaryService(session_factory=session_factory, cache=cache, ai_factory=StubSummaryAI)


@pytest.fixture
async def client(session_factory, cache, orchestrator, summaries):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    scheduler = SourceScheduler(orchestrator)
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_cache] = lambda: cache
    app.dependency_overrides[get_source_scheduler] = lambda: scheduler
    app.dependency_overrides[get_summary_service] = lambda: summaries
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


async def _register(client, email=None) -> dict:
    email = email or f"owner-{uuid.uuid4().hex[:8]}@example.com"
    response = await client.post("/api/auth/register", json={"email": email, "password": PASSWORD, "name": "Owner"})
    assert response.status_code == 201
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


async def _brand_with_source(client, headers) -> tuple[str, dict]:
    brand = (await client.post("/api/brands", json={"name": "Cafe Aurora"}, headers=headers)).json()
    response = await client.post(
        f"/api/brands/{brand['id']}/review-sources",
        json={
            "source_type": "GOOGLE",
            "external_profile_id": "ChIJ-cafe-aurora",
            "profile_url": "https://maps.google.com/?cid=1",
            "credentials": {"api_key": "g-key"},
        },
        headers=headers,
    )
    assert response.status_code == 201
    return brand["id"], response.json()


# ── Auth ──────────────────────────────────────────────────────────────

async def test_register_login_and_me(client):
    headers = await _register(client, "Ann@Example.com")

    me = await client.get("/api/auth/me", headers=headers)
    assert me.status_code == 200
    assert me.json()["email"] == "ann@example.com"
    assert me.json()["plan_type"] == "FREE"
    assert me.json()["max_sources_allowed"] == 1

    login = await client.post("/api/auth/login", json={"email": "ann@example.com", "password": PASSWORD})
    assert login.status_code == 200
    bad = await client.post("/api/auth/login", json={"email": "ann@example.com", "password": "Wrong1234"})
    assert bad.status_code == 401


async def test_register_rejects_duplicates_and_weak_passwords(client):
    await _register(client, "dup@example.com")
    duplicate = await client.post("/api/auth/register", json={"email": "dup@example.com", "password": PASSWORD})
    assert duplicate.status_code == 409

    weak = await client.post("/api/auth/register", json={"email": "weak@example.com", "password": "short"})
    assert weak.status_code == 400


async def test_requests_without_token_are_rejected(client):
    response = await client.get("/api/brands")
    assert response.status_code == 401


# ── Brands and sources ────────────────────────────────────────────────

async def test_free_plan_allows_one_brand(client):
    headers = await _register(client)
    first = await client.post("/api/brands", json={"name": "Cafe Aurora"}, headers=headers)
    assert first.status_code == 201
    assert first.json()["source_count"] == 0

    second = await client.post("/api/brands", json={"name": "Second"}, headers=headers)
    assert second.status_code == 403
    assert second.json()["error"] == "PLAN_LIMIT_EXCEEDED"


async def test_create_source_queues_initial_import(client):
    headers = await _register(client)
    brand_id, source = await _brand_with_source(client, headers)

    assert source["brand_id"] == brand_id
    assert source["has_credentials"] is True
    assert "credentials" not in source and "credentials_encrypted" not in source
    assert source["next_scheduled_sync_at"] is not None
    assert source["initial_job"]["job_type"] == "INITIAL"
    assert source["initial_job"]["status"] == JobStatus.QUEUED.value

    job = await client.get(f"/api/sync-jobs/{source['initial_job']['id']}", headers=headers)
    assert job.status_code == 200
    assert job.json()["status"] == "QUEUED"


async def test_source_limit_follows_plan(client):
    headers = await _register(client)
    brand_id, _ = await _brand_with_source(client, headers)

    second = await client.post(
        f"/api/brands/{brand_id}/review-sources",
        json={"source_type": "TRUSTPILOT", "external_profile_id": "unit-9"},
        headers=headers,
    )
    assert second.status_code == 403
    assert second.json()["error"] == "PLAN_LIMIT_EXCEEDED"


async def test_other_users_cannot_see_brand(client):
    owner = await _register(client)
    brand_id, source = await _brand_with_source(client, owner)
    intruder = await _register(client)

    assert (await client.get(f"/api/brands/{brand_id}", headers=intruder)).status_code == 403
    assert (await client.get(f"/api/brands/{brand_id}/dashboard", headers=intruder)).status_code == 403
    assert (await client.get(f"/api/sync-jobs/{source['initial_job']['id']}", headers=intruder)).status_code == 403


async def test_unknown_brand_is_404(client):
    headers = await _register(client)
    response = await client.get(f"/api/brands/{uuid.uuid4()}", headers=headers)
    assert response.status_code == 404
    assert response.json()["error"] == "RESOURCE_NOT_FOUND"


async def test_paused_source_cannot_be_synced(client):
    headers = await _register(client)
    brand_id, source = await _brand_with_source(client, headers)

    paused = await client.patch(
        f"/api/brands/{brand_id}/review-sources/{source['id']}", json={"is_active": False}, headers=headers,
    )
    assert paused.json()["is_active"] is False
    response = await client.post(f"/api/brands/{brand_id}/review-sources/{source['id']}/sync", headers=headers)
    assert response.status_code == 400


async def test_delete_brand_removes_sources(client):
    headers = await _register(client)
    brand_id, source = await _brand_with_source(client, headers)

    assert (await client.delete(f"/api/brands/{brand_id}", headers=headers)).status_code == 204
    assert (await client.get(f"/api/brands/{brand_id}", headers=headers)).status_code == 404
    assert (await client.get(f"/api/sync-jobs/{source['initial_job']['id']}", headers=headers)).status_code == 404


# ── Sync triggers ─────────────────────────────────────────────────────

async def test_manual_sync_conflicts_with_queued_job(client):
    headers = await _register(client)
    brand_id, source = await _brand_with_source(client, headers)

    response = await client.post(f"/api/brands/{brand_id}/review-sources/{source['id']}/sync", headers=headers)

    assert response.status_code == 409
    assert response.json()["error"] == "SYNC_IN_PROGRESS"


async def test_manual_sync_then_cooldown(client, orchestrator, platform_client):
    headers = await _register(client)
    brand_id, source = await _brand_with_source(client, headers)
    platform_client.reviews = [raw_review("a", 5)]
    await orchestrator.run_job(uuid.UUID(source["initial_job"]["id"]))
    sync_url = f"/api/brands/{brand_id}/review-sources/{source['id']}/sync"

    accepted = await client.post(sync_url, headers=headers)
    assert accepted.status_code == 202
    assert accepted.json()["job_type"] == "MANUAL"
    await orchestrator.run_job(uuid.UUID(accepted.json()["id"]))

    limited = await client.post(sync_url, headers=headers)
    assert limited.status_code == 429
    assert limited.json()["error"] == "RATE_LIMIT_EXCEEDED"
    assert "next_eligible_at" in limited.json()
    assert int(limited.headers["Retry-After"]) > 23 * 3600

    jobs = await client.get(f"/api/brands/{brand_id}/review-sources/{source['id']}/sync-jobs?size=1", headers=headers)
    assert jobs.json()["pagination"]["total_items"] == 2
    assert jobs.json()["jobs"][0]["job_type"] == "MANUAL"
    assert jobs.json()["jobs"][0]["status"] == "COMPLETED"


async def test_cron_requires_secret(client):
    with patch("brandpulse.routers.cron.get_settings", return_value=MagicMock(cron_secret="s3cret")):
        missing = await client.post("/api/cron/daily-sync")
        wrong = await client.post("/api/cron/daily-sync", headers={"X-Cron-Secret": "nope"})
        ok = await client.post("/api/cron/daily-sync", headers={"Authorization": "Bearer s3cret"})

    assert missing.status_code == 401
    assert wrong.status_code == 401
    assert ok.status_code == 200
    assert ok.json()["status"] == "ok"
    assert set(ok.json()["result"]) == {"reconciled_stale_jobs", "due_sources", "jobs_created", "sources_skipped"}


async def test_cron_without_configured_secret(client):
    with patch("brandpulse.routers.cron.get_settings", return_value=MagicMock(cron_secret="")):
        response = await client.post("/api/cron/daily-sync", headers={"X-Cron-Secret": "anything"})
    assert response.status_code == 500


# ── Dashboard, reviews, summaries ─────────────────────────────────────

async def _synced_source(client, orchestrator, platform_client, classifier, headers):
    brand_id, source = await _brand_with_source(client, headers)
    classifier.labels = {"Great coffee": Sentiment.POSITIVE, "Cold and rude": Sentiment.NEGATIVE}
    platform_client.reviews = [raw_review("a", 5, "Great coffee"), raw_review("b", 1, "Cold and rude")]
    await orchestrator.run_job(uuid.UUID(source["initial_job"]["id"]))
    return brand_id, source


async def test_dashboard_after_sync(client, orchestrator, platform_client, classifier):
    headers = await _register(client)
    brand_id, source = await _synced_source(client, orchestrator, platform_client, classifier, headers)

    response = await client.get(f"/api/brands/{brand_id}/dashboard", headers=headers)

    assert response.status_code == 200
    body = response.json()
    assert body["metrics"]["total_reviews"] == 2
    assert body["metrics"]["average_rating"] == 3.0
    assert body["metrics"]["positive_percentage"] == 50.0
    assert body["sources"][0]["last_sync_status"] == "SUCCESS"
    assert len(body["recent_negative_reviews"]) == 1

    scoped = await client.get(f"/api/brands/{brand_id}/dashboard?source_id={source['id']}", headers=headers)
    assert scoped.json()["selected_source_id"] == source["id"]


async def test_review_filters(client, orchestrator, platform_client, classifier):
    headers = await _register(client)
    brand_id, _ = await _synced_source(client, orchestrator, platform_client, classifier, headers)
    url = f"/api/brands/{brand_id}/reviews"

    negative = await client.get(f"{url}?sentiment=NEGATIVE", headers=headers)
    assert [r["external_review_id"] for r in negative.json()["reviews"]] == ["b"]

    by_rating = await client.get(f"{url}?sort_by=rating&sort_direction=asc", headers=headers)
    assert [r["rating"] for r in by_rating.json()["reviews"]] == [1, 5]

    assert (await client.get(f"{url}?rating=7", headers=headers)).status_code == 400
    assert (await client.get(f"{url}?sort_by=author", headers=headers)).status_code == 400


async def test_sentiment_correction_updates_dashboard(client, orchestrator, platform_client, classifier):
    headers = await _register(client)
    brand_id, _ = await _synced_source(client, orchestrator, platform_client, classifier, headers)
    dashboard_url = f"/api/brands/{brand_id}/dashboard"
    assert (await client.get(dashboard_url, headers=headers)).json()["metrics"]["negative_percentage"] == 50.0

    reviews = (await client.get(f"/api/brands/{brand_id}/reviews?sentiment=NEGATIVE", headers=headers)).json()["reviews"]
    response = await client.patch(
        f"/api/brands/{brand_id}/reviews/{reviews[0]['id']}/sentiment", json={"sentiment": "NEUTRAL"}, headers=headers,
    )

    assert response.status_code == 200
    assert response.json()["sentiment"] == "NEUTRAL"
    assert response.json()["previous_sentiment"] == "NEGATIVE"
    assert response.json()["sentiment_corrected"] is True
    metrics = (await client.get(dashboard_url, headers=headers)).json()["metrics"]
    assert metrics["negative_percentage"] == 0.0
    assert metrics["neutral_percentage"] == 50.0


async def test_summary_for_source_without_reviews(client):
    headers = await _register(client)
    brand_id, source = await _brand_with_source(client, headers)

    response = await client.get(f"/api/brands/{brand_id}/review-sources/{source['id']}/summary", headers=headers)

    assert response.status_code == 200
    assert response.json()["status"] == "empty"


async def test_summary_is_generated_in_background(client, orchestrator, platform_client, classifier, summaries):
    headers = await _register(client)
    brand_id, source = await _synced_source(client, orchestrator, platform_client, classifier, headers)
    url = f"/api/brands/{brand_id}/review-sources/{source['id']}/summary"

    pending = await client.get(url, headers=headers)
    assert pending.status_code == 202
    assert pending.json()["status"] == "generating"
    await summaries.schedule_generation(uuid.UUID(source["id"]))

    ready = await client.get(url, headers=headers)
    assert ready.status_code == 200
    assert ready.json()["status"] == "ready"
    assert ready.json()["summary_text"] == "Summary of 2 reviews."

    history = await client.get(f"{url}s", headers=headers)
    assert len(history.json()) >= 1


async def test_review_detail_lists_sentiment_history(client, orchestrator, platform_client, classifier):
    headers = await _register(client)
    brand_id, _ = await _synced_source(client, orchestrator, platform_client, classifier, headers)
    [review] = (await client.get(f"/api/brands/{brand_id}/reviews?sentiment=NEGATIVE", headers=headers)).json()["reviews"]
    review_url = f"/api/brands/{brand_id}/reviews/{review['id']}"
    await client.patch(f"{review_url}/sentiment", json={"sentiment": "NEUTRAL"}, headers=headers)

    response = await client.get(review_url, headers=headers)

    assert response.status_code == 200
    body = response.json()
    assert body["external_review_id"] == "b"
    assert body["source_type"] == "GOOGLE"
    assert body["sentiment"] == "NEUTRAL"
    history = body["sentiment_history"]
    assert [h["change_reason"] for h in history] == ["USER_CORRECTION", "AI_INITIAL"]
    assert (history[0]["old_sentiment"], history[0]["new_sentiment"]) == ("NEGATIVE", "NEUTRAL")
    assert history[0]["changed_by_user_id"] is not None
    assert history[1]["changed_by_user_id"] is None

    missing = await client.get(f"/api/brands/{brand_id}/reviews/{uuid.uuid4()}", headers=headers)
    assert missing.status_code == 404


async def test_sentiment_correction_drops_cached_summary(client, orchestrator, platform_client, classifier, cache):
    headers = await _register(client)
    brand_id, source = await _synced_source(client, orchestrator, platform_client, classifier, headers)
    await cache.set(summary_key(uuid.UUID(source["id"])), {"summary_text": "stale"})
    [review] = (await client.get(f"/api/brands/{brand_id}/reviews?sentiment=NEGATIVE", headers=headers)).json()["reviews"]

    await client.patch(f"/api/brands/{brand_id}/reviews/{review['id']}/sentiment", json={"sentiment": "NEUTRAL"}, headers=headers)

    assert await cache.get(summary_key(uuid.UUID(source["id"]))) is None


# ── Users ─────────────────────────────────────────────────────────────

async def test_profile_read_and_update(client):
    headers = await _register(client, "first@example.com")
    await _register(client, "taken@example.com")

    profile = await client.get("/api/users/me", headers=headers)
    assert profile.status_code == 200
    assert profile.json()["email"] == "first@example.com"

    updated = await client.patch("/api/users/me", json={"email": "Renamed@Example.com", "name": "Renamed"}, headers=headers)
    assert updated.status_code == 200
    assert updated.json()["email"] == "renamed@example.com"
    assert updated.json()["name"] == "Renamed"

    taken = await client.patch("/api/users/me", json={"email": "taken@example.com"}, headers=headers)
    assert taken.status_code == 409
    blank = await client.patch("/api/users/me", json={"name": "   "}, headers=headers)
    assert blank.status_code == 400
    invalid = await client.patch("/api/users/me", json={"email": "not-an-email"}, headers=headers)
    assert invalid.status_code == 422


async def test_activity_log_records_key_events(client, orchestrator, platform_client, classifier):
    email = f"active-{uuid.uuid4().hex[:8]}@example.com"
    headers = await _register(client, email)
    await client.post("/api/auth/login", json={"email": email, "password": PASSWORD})
    brand_id, source = await _synced_source(client, orchestrator, platform_client, classifier, headers)
    sync = await client.post(f"/api/brands/{brand_id}/review-sources/{source['id']}/sync", headers=headers)
    assert sync.status_code == 202
    [review] = (await client.get(f"/api/brands/{brand_id}/reviews?sentiment=NEGATIVE", headers=headers)).json()["reviews"]
    await client.patch(f"/api/brands/{brand_id}/reviews/{review['id']}/sentiment", json={"sentiment": "NEUTRAL"}, headers=headers)

    response = await client.get("/api/users/me/activity", headers=headers)

    assert response.status_code == 200
    activities = response.json()["activities"]
    assert {a["activity_type"] for a in activities} == {
        "USER_REGISTERED",
        "LOGIN",
        "FIRST_SOURCE_CONFIGURED_SUCCESSFULLY",
        "MANUAL_REFRESH_TRIGGERED",
        "SENTIMENT_CORRECTED",
    }
    assert response.json()["pagination"]["total_items"] == 5
    by_type = {a["activity_type"]: a for a in activities}
    assert by_type["MANUAL_REFRESH_TRIGGERED"]["details"]["job_id"] == sync.json()["id"]
    assert by_type["SENTIMENT_CORRECTED"]["details"]["new_sentiment"] == "NEUTRAL"

    page = await client.get("/api/users/me/activity?size=2", headers=headers)
    assert len(page.json()["activities"]) == 2
    assert page.json()["pagination"]["has_next"] is True

    other = await _register(client)
    assert (await client.get("/api/users/me/activity", headers=other)).json()["pagination"]["total_items"] == 1
