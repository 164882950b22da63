"""
Shared utility functions.
"""

import hashlib
import logging
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from fastapi import HTTPException

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def safe_error_detail(exc: Exception, fallback: str = "An internal error occurred. Please try again later.") -> str:
    """
    Return a sanitized error message safe for client consumption.
    Logs the real exception detail server-side.
    """
    logger.error(f"Operation failed: {exc}", exc_info=True)
    return fallback


def utcnow() -> datetime:
    """
    Return the current UTC time as a naive datetime (no tzinfo).
    Naive datetimes are used because our DB columns are TIMESTAMP WITHOUT TIME ZONE.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Normalise an aware datetime to naive UTC; naive values are assumed UTC already."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def isoformat_or_none(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def truncate_error(message: str, max_length: int = 1000) -> str:
    """Cut an error message to fit the job/source error columns."""
    message = message or "Unknown error"
    if len(message) <= max_length:
        return message
    return message[: max_length - 3] + "..."


def content_hash(content: str | None) -> str:
    """SHA-256 hex digest of review content, used to detect edits."""
    return hashlib.sha256((content or "").encode("utf-8")).hexdigest()


def round_half_up(value, places: int = 2) -> float:
    """Round with ROUND_HALF_UP (Python's round() is banker's rounding)."""
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def percentage(part: int, total: int, places: int = 2) -> float:
    """part/total as a percentage rounded half-up; 0.0 when total is zero."""
    if not total:
        return 0.0
    return float((Decimal(part) * 100 / Decimal(total)).quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP))


def validate_pagination(page: int | None, size: int | None) -> tuple[int, int]:
    """Apply defaults and the page size cap; reject negative pages and empty sizes."""
    page = 0 if page is None else page
    size = DEFAULT_PAGE_SIZE if size is None else min(size, MAX_PAGE_SIZE)
    if page < 0 or size <= 0:
        raise HTTPException(status_code=400, detail="Invalid pagination parameters")
    return page, size


def pagination_response(page: int, size: int, total: int) -> dict:
    total_pages = (total + size - 1) // size if size else 0
    return {
        "current_page": page,
        "page_size": size,
        "total_items": total,
        "total_pages": total_pages,
        "has_next": page + 1 < total_pages,
        "has_previous": page > 0,
    }
