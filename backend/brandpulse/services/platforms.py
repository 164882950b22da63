"""
Review platform clients — Google Places, Facebook Graph, Trustpilot.

Each client turns a platform profile into a list of RawReview records and maps
every failure onto PlatformError(kind). Fetching is read-only and safe to
repeat; deduplication happens in the ingestor.
"""

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import httpx

from brandpulse.config import get_settings
from brandpulse.errors import PlatformError, PlatformErrorKind
from brandpulse.models import SourceType

logger = logging.getLogger(__name__)

GOOGLE_PLACES_URL = "https://maps.googleapis.com/maps/api/place/details/json"
FACEBOOK_GRAPH_URL = "https://graph.facebook.com"
TRUSTPILOT_API_URL = "https://api.trustpilot.com/v1"

# Upper bound on pages followed per fetch
MAX_PAGES = 20


@dataclass
class RawReview:
    external_id: str
    rating: int
    content: str
    author_name: Optional[str]
    published_at: datetime  # naive UTC


def _parse_timestamp(value) -> datetime:
    """Accept unix seconds or ISO-8601 strings; return naive UTC."""
    if value is None or value == "":
        raise ValueError("missing timestamp")
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc).replace(tzinfo=None)
    text = str(value).replace("Z", "+00:00")
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _parse_rating(value) -> Optional[int]:
    """Whole 1..5 star rating, or None when missing or out of range."""
    try:
        rating = float(value)
    except (TypeError, ValueError):
        return None
    if not rating.is_integer() or not 1 <= rating <= 5:
        return None
    return int(rating)


def _require_rating(value) -> int:
    rating = _parse_rating(value)
    if rating is None:
        raise ValueError(f"invalid rating {value!r}")
    return rating


def _status_to_kind(status_code: int) -> PlatformErrorKind:
    if status_code in (401, 403):
        return PlatformErrorKind.AUTH
    if status_code == 429:
        return PlatformErrorKind.RATE_LIMIT
    if status_code == 404:
        return PlatformErrorKind.NOT_FOUND
    return PlatformErrorKind.TRANSIENT


class PlatformClient:
    """Base client: shared HTTP handling and error mapping."""

    source_type: SourceType

    def __init__(self, http: Optional[httpx.AsyncClient] = None, timeout: Optional[float] = None):
        self._http = http
        self.timeout = timeout or get_settings().platform_timeout_seconds

    async def fetch(self, credentials: dict, profile_id: str, since: Optional[datetime] = None) -> list[RawReview]:
        reviews = await self._fetch_all(credentials, profile_id)
        if since is not None:
            reviews = [r for r in reviews if r.published_at >= since]
        logger.info(f"{self.source_type.value} fetch for profile {profile_id}: {len(reviews)} review(s)")
        return reviews

    async def _fetch_all(self, credentials: dict, profile_id: str) -> list[RawReview]:
        raise NotImplementedError

    def _parse_item(self, item: dict, profile_id: str) -> RawReview:
        raise NotImplementedError

    def _parse_items(self, items: list, profile_id: str) -> list[RawReview]:
        """Parse one page of platform records, skipping the malformed ones."""
        reviews = []
        for item in items:
            try:
                reviews.append(self._parse_item(item, profile_id))
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning(f"Skipping malformed {self.source_type.value} review for profile {profile_id}: {e!r}")
        return reviews

    async def _get_json(self, url: str, params: Optional[dict] = None, headers: Optional[dict] = None) -> dict:
        """GET a JSON document, translating transport and HTTP failures to PlatformError."""
        try:
            if self._http is not None:
                response = await self._http.get(url, params=params, headers=headers, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.get(url, params=params, headers=headers)
        except httpx.TimeoutException as e:
            raise PlatformError(PlatformErrorKind.TRANSIENT, f"{self.source_type.value} request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise PlatformError(PlatformErrorKind.TRANSIENT, f"{self.source_type.value} request failed: {e}") from e

        if response.status_code >= 400:
            kind = self._classify_error_response(response)
            raise PlatformError(kind, f"{self.source_type.value} API returned {response.status_code}: {response.text[:300]}")
        try:
            return response.json()
        except ValueError as e:
            raise PlatformError(PlatformErrorKind.TRANSIENT, f"{self.source_type.value} API returned invalid JSON") from e

    def _classify_error_response(self, response: httpx.Response) -> PlatformErrorKind:
        return _status_to_kind(response.status_code)


class GooglePlacesClient(PlatformClient):
    """Google Places Details API. Places returns at most the newest reviews of a place."""

    source_type = SourceType.GOOGLE

    # Places reports errors inside a 200 body
    _BODY_STATUS_KINDS = {
        "REQUEST_DENIED": PlatformErrorKind.AUTH,
        "OVER_QUERY_LIMIT": PlatformErrorKind.RATE_LIMIT,
        "NOT_FOUND": PlatformErrorKind.NOT_FOUND,
        "INVALID_REQUEST": PlatformErrorKind.NOT_FOUND,
        "UNKNOWN_ERROR": PlatformErrorKind.TRANSIENT,
    }

    async def _fetch_all(self, credentials: dict, profile_id: str) -> list[RawReview]:
        api_key = credentials.get("api_key") or get_settings().google_places_api_key
        if not api_key:
            raise PlatformError(PlatformErrorKind.AUTH, "Google Places API key is not configured")

        data = await self._get_json(
            GOOGLE_PLACES_URL,
            params={"place_id": profile_id, "fields": "reviews", "reviews_sort": "newest", "key": api_key},
        )
        status = data.get("status", "OK")
        if status not in ("OK", "ZERO_RESULTS"):
            kind = self._BODY_STATUS_KINDS.get(status, PlatformErrorKind.TRANSIENT)
            raise PlatformError(kind, f"Google Places status {status}: {data.get('error_message', '')}")

        return self._parse_items((data.get("result") or {}).get("reviews", []), profile_id)

    def _parse_item(self, item: dict, profile_id: str) -> RawReview:
        author = item.get("author_name")
        published = item.get("time")
        # Places has no review id; author + timestamp identifies a review
        natural_key = f"{profile_id}:{author}:{published}"
        return RawReview(
            external_id=hashlib.sha256(natural_key.encode()).hexdigest()[:32],
            rating=_require_rating(item.get("rating")),
            content=item.get("text") or "",
            author_name=author,
            published_at=_parse_timestamp(published),
        )


class FacebookGraphClient(PlatformClient):
    """Facebook page ratings via the Graph API (requires a page access token)."""

    source_type = SourceType.FACEBOOK

    _RATE_LIMIT_CODES = {4, 17, 32, 613}
    _AUTH_CODES = {10, 102, 190, 200}
    # Recommendations carry no stars
    _RECOMMENDATION_RATINGS = {"positive": 5, "negative": 1}

    def _classify_error_response(self, response: httpx.Response) -> PlatformErrorKind:
        try:
            code = (response.json().get("error") or {}).get("code")
        except ValueError:
            code = None
        if code in self._AUTH_CODES:
            return PlatformErrorKind.AUTH
        if code in self._RATE_LIMIT_CODES:
            return PlatformErrorKind.RATE_LIMIT
        if code == 100 and response.status_code == 400:
            return PlatformErrorKind.NOT_FOUND
        return _status_to_kind(response.status_code)

    async def _fetch_all(self, credentials: dict, profile_id: str) -> list[RawReview]:
        token = credentials.get("page_access_token")
        if not token:
            raise PlatformError(PlatformErrorKind.AUTH, "Facebook page access token is missing")

        version = get_settings().facebook_graph_api_version
        url = f"{FACEBOOK_GRAPH_URL}/{version}/{profile_id}/ratings"
        params = {
            "fields": "created_time,recommendation_type,review_text,rating,reviewer{name},open_graph_story{id}",
            "limit": 100,
            "access_token": token,
        }
        reviews = []
        for _ in range(MAX_PAGES):
            data = await self._get_json(url, params=params)
            reviews.extend(self._parse_items(data.get("data", []), profile_id))
            next_url = (data.get("paging") or {}).get("next")
            if not next_url:
                break
            url, params = next_url, None
        return reviews

    def _parse_item(self, item: dict, profile_id: str) -> RawReview:
        story = item.get("open_graph_story") or {}
        created = item.get("created_time")
        external_id = story.get("id") or f"{profile_id}:{created}"
        rating = item.get("rating")
        if rating is None:
            rating = self._RECOMMENDATION_RATINGS.get(item.get("recommendation_type"))
        return RawReview(
            external_id=str(external_id),
            rating=_require_rating(rating),
            content=item.get("review_text") or "",
            author_name=(item.get("reviewer") or {}).get("name"),
            published_at=_parse_timestamp(created),
        )


class TrustpilotClient(PlatformClient):
    """Trustpilot public business-unit reviews API."""

    source_type = SourceType.TRUSTPILOT

    async def _fetch_all(self, credentials: dict, profile_id: str) -> list[RawReview]:
        api_key = credentials.get("api_key") or get_settings().trustpilot_api_key
        if not api_key:
            raise PlatformError(PlatformErrorKind.AUTH, "Trustpilot API key is not configured")

        reviews = []
        for page in range(1, MAX_PAGES + 1):
            data = await self._get_json(
                f"{TRUSTPILOT_API_URL}/business-units/{profile_id}/reviews",
                params={"page": page, "perPage": 100, "orderBy": "createdat.desc"},
                headers={"apikey": api_key},
            )
            items = data.get("reviews", [])
            reviews.extend(self._parse_items(items, profile_id))
            has_next = any(link.get("rel") == "next-page" for link in data.get("links", []))
            if not items or not has_next:
                break
        return reviews

    def _parse_item(self, item: dict, profile_id: str) -> RawReview:
        title = item.get("title") or ""
        text = item.get("text") or ""
        external_id = item["id"]
        if not external_id:
            raise ValueError("missing review id")
        return RawReview(
            external_id=str(external_id),
            rating=_require_rating(item.get("stars")),
            content=f"{title}\n{text}".strip() if title else text,
            author_name=(item.get("consumer") or {}).get("displayName"),
            published_at=_parse_timestamp(item.get("createdAt")),
        )


_CLIENTS = {
    SourceType.GOOGLE: GooglePlacesClient,
    SourceType.FACEBOOK: FacebookGraphClient,
    SourceType.TRUSTPILOT: TrustpilotClient,
}


def get_platform_client(source_type: str, http: Optional[httpx.AsyncClient] = None) -> PlatformClient:
    """Return the fetch client for a source type."""
    try:
        client_cls = _CLIENTS[SourceType(source_type)]
    except (KeyError, ValueError):
        raise PlatformError(PlatformErrorKind.NOT_FOUND, f"Unsupported source type: {source_type}")
    return client_cls(http=http)
