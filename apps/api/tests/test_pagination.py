"""
Tests for keyset pagination.
"""
import uuid
from datetime import datetime, timezone

import pytest

from core.exceptions import ValidationError
from services.pagination import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    decode_cursor,
    encode_cursor,
    validate_limit,
)
from services import submission_store


def test_cursor_carries_the_sort_key():
    when = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)
    row_id = uuid.uuid4()
    assert decode_cursor(encode_cursor(when, row_id)) == (when, row_id)


@pytest.mark.parametrize("cursor", ["not-a-cursor", "e30", "!!!"])
def test_malformed_cursor_is_a_validation_error(cursor):
    with pytest.raises(ValidationError):
        decode_cursor(cursor)


def test_limit_bounds():
    assert validate_limit(None) == DEFAULT_PAGE_SIZE
    assert validate_limit(MAX_PAGE_SIZE) == MAX_PAGE_SIZE
    with pytest.raises(ValidationError):
        validate_limit(0)
    with pytest.raises(ValidationError):
        validate_limit(MAX_PAGE_SIZE + 1)


def test_pages_walk_newest_first_without_overlap(db_session, make_submission, athlete):
    created = [make_submission(media_ref=f"clip{i}") for i in range(5)]

    seen = []
    cursor = None
    while True:
        page = submission_store.list_by_athlete(db_session, athlete.uid, limit=2, cursor=cursor)
        seen.extend(s.id for s in page.items)
        if not page.has_more:
            break
        cursor = page.next_cursor

    assert seen == [s.id for s in reversed(created)]
