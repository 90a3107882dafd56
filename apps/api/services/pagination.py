"""
Keyset (cursor) pagination over (created_at, id).

Offsets degrade as tables grow; the cursor instead encodes the sort key
of the last row a client saw. Cursors are opaque URL-safe tokens.
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Generic, List, Optional, Tuple, TypeVar
from uuid import UUID

from sqlalchemy import and_, or_
from sqlalchemy.orm import Query

from core.exceptions import ValidationError
from models import as_utc

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

T = TypeVar("T")


@dataclass
class Page(Generic[T]):
    items: List[T]
    next_cursor: Optional[str]

    @property
    def has_more(self) -> bool:
        return self.next_cursor is not None


def encode_cursor(created_at: datetime, row_id: Any) -> str:
    raw = json.dumps({"t": as_utc(created_at).isoformat(), "id": str(row_id)})
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii").rstrip("=")


def decode_cursor(cursor: str) -> Tuple[datetime, UUID]:
    try:
        padded = cursor + "=" * (-len(cursor) % 4)
        data = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
        return as_utc(datetime.fromisoformat(data["t"])), UUID(data["id"])
    except (binascii.Error, UnicodeError, ValueError, KeyError, TypeError):
        raise ValidationError("Malformed pagination cursor", field="cursor")


def validate_limit(limit: Optional[int]) -> int:
    if limit is None:
        return DEFAULT_PAGE_SIZE
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}", field="limit")
    return limit


def paginate_newest_first(query: Query, model, limit: Optional[int], cursor: Optional[str]) -> Page:
    """Apply keyset pagination ordered by (created_at DESC, id DESC)."""
    limit = validate_limit(limit)
    if cursor:
        after_time, after_id = decode_cursor(cursor)
        query = query.filter(
            or_(
                model.created_at < after_time,
                and_(model.created_at == after_time, model.id < after_id),
            )
        )

    rows = query.order_by(model.created_at.desc(), model.id.desc()).limit(limit + 1).all()
    if len(rows) > limit:
        rows = rows[:limit]
        return Page(items=rows, next_cursor=encode_cursor(rows[-1].created_at, rows[-1].id))
    return Page(items=rows, next_cursor=None)
