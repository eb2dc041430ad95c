"""Cursor codec and query-parameter normalization shared by list endpoints.

A cursor is the URL-safe base64 encoding of ``{"v": 1, "sortValue": ..., "id": ...}``:
the sort value and primary key of the last row on the previous page. Clients
treat it as opaque; decoding is all-or-nothing and every failure is an
``InvalidCursor``.
"""

import base64
import binascii
import json
import math
from dataclasses import dataclass
from typing import Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from supportdesk.api.errors import InvalidCursor

T = TypeVar("T")

Order = Literal["asc", "desc"]
SortValue = str | int | float

CURSOR_VERSION = 1
MAX_CURSOR_LENGTH = 1024


@dataclass(frozen=True)
class CursorPayload:
    sort_value: SortValue
    id: str
    version: int = CURSOR_VERSION


def encode_cursor(payload: CursorPayload) -> str:
    """Encode a cursor payload as an opaque, URL-safe token."""
    body = {"v": payload.version, "sortValue": payload.sort_value, "id": payload.id}
    raw = json.dumps(body, separators=(",", ":"), ensure_ascii=False, allow_nan=False)
    return base64.urlsafe_b64encode(raw.encode()).decode().rstrip("=")


def decode_cursor(cursor: str) -> CursorPayload:
    """Decode a token produced by ``encode_cursor``. Raises ``InvalidCursor``."""
    if not isinstance(cursor, str) or not cursor or len(cursor) > MAX_CURSOR_LENGTH:
        raise InvalidCursor("Invalid cursor encoding.")

    try:
        padded = cursor + "=" * (-len(cursor) % 4)
        raw = base64.b64decode(padded, altchars=b"-_", validate=True)
        text = raw.decode("utf-8")
    except (binascii.Error, UnicodeError, ValueError):
        raise InvalidCursor("Invalid cursor encoding.")

    try:
        data = json.loads(text)
    except (ValueError, RecursionError):
        raise InvalidCursor("Invalid cursor JSON.")

    if not isinstance(data, dict):
        raise InvalidCursor("Invalid cursor payload.")
    version = data.get("v")
    sort_value = data.get("sortValue")
    item_id = data.get("id")
    if type(version) is not int or version != CURSOR_VERSION:
        raise InvalidCursor("Invalid cursor payload.")
    if isinstance(sort_value, bool) or not isinstance(sort_value, (str, int, float)):
        raise InvalidCursor("Invalid cursor payload.")
    if isinstance(sort_value, float) and not math.isfinite(sort_value):
        raise InvalidCursor("Invalid cursor payload.")
    if not isinstance(item_id, str) or not item_id:
        raise InvalidCursor("Invalid cursor payload.")

    return CursorPayload(sort_value=sort_value, id=item_id)


def parse_limit(raw: str | None, default_limit: int, max_limit: int) -> int:
    """Resolve a ``limit`` query value to an integer in ``1..max_limit``."""
    if not raw:
        return default_limit
    try:
        limit = float(raw)
    except ValueError:
        return default_limit
    if not math.isfinite(limit) or limit <= 0:
        return default_limit
    limit = math.floor(limit)
    if limit < 1:
        return default_limit
    return min(limit, max_limit)


def parse_order(raw: str | None) -> Order:
    return "asc" if raw == "asc" else "desc"


def parse_order_with_default(raw: str | None, default_order: Order) -> Order:
    if raw == "asc":
        return "asc"
    if raw == "desc":
        return "desc"
    return default_order


def parse_bool_flag(raw: str | None) -> bool:
    return raw == "true"


class ListResponse(BaseModel, Generic[T]):
    """Generic list envelope: one page of items plus the cursor for the next one."""

    items: list[T]
    next_cursor: str | None = Field(default=None, alias="nextCursor")

    model_config = ConfigDict(populate_by_name=True)
