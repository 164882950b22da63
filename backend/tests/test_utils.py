"""
Tests for the shared helpers: rounding, percentages, error truncation,
content hashing and pagination.
"""

import pytest
from fastapi import HTTPException

from brandpulse.utils import (
    content_hash,
    pagination_response,
    percentage,
    round_half_up,
    truncate_error,
    validate_pagination,
)


def test_percentage_of_empty_total_is_zero():
    assert percentage(0, 0) == 0.0
    assert percentage(5, 0) == 0.0


def test_percentage_rounds_half_up():
    assert percentage(1, 800) == 0.13
    assert percentage(1, 3) == 33.33
    assert percentage(2, 3) == 66.67
    assert percentage(7, 7) == 100.0


def test_round_half_up_differs_from_bankers_rounding():
    assert round_half_up(2.675) == 2.68
    assert round_half_up(2.5, 0) == 3.0
    assert round_half_up(3.0) == 3.0


def test_truncate_error_keeps_short_messages():
    assert truncate_error("boom") == "boom"
    assert truncate_error("") == "Unknown error"


def test_truncate_error_cuts_long_messages():
    message = truncate_error("x" * 1500, 1000)
    assert len(message) == 1000
    assert message.endswith("...")


def test_content_hash_detects_edits():
    assert content_hash("Great coffee") == content_hash("Great coffee")
    assert content_hash("Great coffee") != content_hash("Great coffee!")
    assert content_hash(None) == content_hash("")


def test_validate_pagination_defaults_and_cap():
    assert validate_pagination(None, None) == (0, 20)
    assert validate_pagination(3, 500) == (3, 100)


@pytest.mark.parametrize("page, size", [(-1, 10), (0, 0)])
def test_validate_pagination_rejects_bad_values(page, size):
    with pytest.raises(HTTPException) as exc_info:
        validate_pagination(page, size)
    assert exc_info.value.status_code == 400


def test_pagination_response():
    assert pagination_response(1, 20, 45) == {
        "current_page": 1,
        "page_size": 20,
        "total_items": 45,
        "total_pages": 3,
        "has_next": True,
        "has_previous": True,
    }
    assert pagination_response(0, 20, 0)["total_pages"] == 0
