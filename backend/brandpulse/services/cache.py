"""
Cache port for dashboard and AI summary reads.

UpstashCache talks to Upstash Redis over its REST API; InMemoryCache is used
when Upstash is not configured (local development, tests). Invalidation is
best effort: a failing cache never fails the caller.
"""

import json
import logging
import time
import uuid
from typing import Any, Optional

import httpx

from brandpulse.config import get_settings

logger = logging.getLogger(__name__)

DASHBOARD_PREFIX = "dashboard:brand:"
SUMMARY_PREFIX = "summary:source:"


def dashboard_key(brand_id: uuid.UUID, source_id: Optional[uuid.UUID] = None) -> str:
    """Brand-wide dashboard key, or the single-source view when source_id is given."""
    if source_id is None:
        return f"{DASHBOARD_PREFIX}{brand_id}"
    return f"{DASHBOARD_PREFIX}{brand_id}:source:{source_id}"


def summary_key(source_id: uuid.UUID) -> str:
    return f"{SUMMARY_PREFIX}{source_id}"


def ttl_for_key(key: str) -> int:
    """TTL policy per key class."""
    settings = get_settings()
    if key.startswith(SUMMARY_PREFIX):
        return settings.summary_cache_ttl_seconds
    return settings.dashboard_cache_ttl_seconds


class CachePort:
    async def get(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        raise NotImplementedError

    async def invalidate(self, key: str) -> None:
        raise NotImplementedError

    async def invalidate_many(self, keys: list[str]) -> None:
        for key in keys:
            try:
                await self.invalidate(key)
            except Exception as e:
                logger.warning(f"Cache invalidation failed for {key}: {e}")


class InMemoryCache(CachePort):
    """Process-local cache with expiry; values are stored JSON-encoded like Redis would."""

    def __init__(self):
        self._store: dict[str, tuple[float, str]] = {}

    async def get(self, key: str) -> Optional[Any]:
        entry = self._store.get(key)
        if entry is None:
            return None
        expires_at, payload = entry
        if time.monotonic() >= expires_at:
            self._store.pop(key, None)
            return None
        return json.loads(payload)

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        ttl = ttl_seconds if ttl_seconds is not None else ttl_for_key(key)
        self._store[key] = (time.monotonic() + ttl, json.dumps(value, default=str))

    async def invalidate(self, key: str) -> None:
        self._store.pop(key, None)

    def clear(self) -> None:
        self._store.clear()


class UpstashCache(CachePort):
    """Upstash Redis REST client (commands POSTed as JSON arrays)."""

    def __init__(self, url: str, token: str, http: Optional[httpx.AsyncClient] = None):
        self.url = url.rstrip("/")
        self.token = token
        self._http = http

    async def _command(self, *args) -> Any:
        headers = {"Authorization": f"Bearer {self.token}"}
        if self._http is not None:
            response = await self._http.post(self.url, json=list(args), headers=headers, timeout=5.0)
        else:
            async with httpx.AsyncClient(timeout=5.0) as client:
                response = await client.post(self.url, json=list(args), headers=headers)
        response.raise_for_status()
        return response.json().get("result")

    async def get(self, key: str) -> Optional[Any]:
        try:
            raw = await self._command("GET", key)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Cache read failed for {key}: {e}")
            return None
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        ttl = ttl_seconds if ttl_seconds is not None else ttl_for_key(key)
        try:
            await self._command("SET", key, json.dumps(value, default=str), "EX", ttl)
        except httpx.HTTPError as e:
            logger.warning(f"Cache write failed for {key}: {e}")

    async def invalidate(self, key: str) -> None:
        try:
            await self._command("DEL", key)
        except httpx.HTTPError as e:
            logger.warning(f"Cache invalidation failed for {key}: {e}")


_cache: Optional[CachePort] = None


def get_cache() -> CachePort:
    """Process-wide cache; Upstash when configured, in-memory otherwise."""
    global _cache
    if _cache is None:
        settings = get_settings()
        if settings.upstash_redis_rest_url and settings.upstash_redis_rest_token:
            _cache = UpstashCache(settings.upstash_redis_rest_url, settings.upstash_redis_rest_token)
        else:
            logger.info("Upstash Redis not configured; using in-process cache")
            _cache = InMemoryCache()
    return _cache
