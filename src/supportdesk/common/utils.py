"""Shared utility functions."""

import re
from datetime import UTC, datetime

EXCERPT_LENGTH = 140

_WHITESPACE = re.compile(r"\s+")


def escape_like(value: str) -> str:
    """Escape SQL ILIKE/LIKE wildcard characters.

    Prevents user-controlled input from being interpreted as wildcard patterns
    when used in ILIKE queries.
    """
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def quote_text_value(value: str) -> str:
    """Quote a text value for a rendered filter expression, doubling embedded quotes."""
    return '"' + value.replace('"', '""') + '"'


def utc_now() -> datetime:
    return datetime.now(UTC)


def to_iso(value: datetime | None) -> str | None:
    """Render a timestamp as ISO-8601 in UTC. Naive values are taken to be UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat()


def make_excerpt(content: str, length: int = EXCERPT_LENGTH) -> str:
    """Collapse whitespace and cut ``content`` to a one-line preview."""
    flat = _WHITESPACE.sub(" ", content).strip()
    if len(flat) <= length:
        return flat
    return flat[: length - 1].rstrip() + "…"
