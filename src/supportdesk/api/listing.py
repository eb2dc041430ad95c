"""Keyset-paginated list queries over org-scoped resources.

Every list endpoint goes through ``ListQuery``:

1. ``org_id = :org`` is always applied; resource filters are AND-ed onto it.
2. Rows are ordered by the sort column, then by ``id``, both in the requested
   direction, which makes the order total even when sort values tie.
3. A cursor adds a seek predicate ``(sort, id)`` strictly past the cursor
   position, never an offset, so concurrent inserts and deletes elsewhere in
   the table cannot shift rows between pages.
4. ``limit + 1`` rows are fetched; the extra row only signals that a next page
   exists, and the cursor is built from the last row that is returned.
"""

import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Generic, Literal, TypeVar

import structlog
from pydantic import BaseModel
from sqlalchemy import Select, and_, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import InstrumentedAttribute
from sqlalchemy.sql.elements import ColumnElement

from supportdesk.api.errors import InvalidCursor, ValidationError, translate_backend_error
from supportdesk.api.pagination import (
    CursorPayload,
    ListResponse,
    Order,
    SortValue,
    decode_cursor,
    encode_cursor,
    parse_limit,
)
from supportdesk.common.cache import ListCache
from supportdesk.common.utils import escape_like, quote_text_value

logger = structlog.get_logger()

DTO = TypeVar("DTO", bound=BaseModel)

SortKind = Literal["timestamp", "text", "decimal"]


@dataclass(frozen=True)
class SortField:
    """An orderable column exposed under an external ``sort`` name."""

    name: str
    column: InstrumentedAttribute
    kind: SortKind

    @property
    def column_key(self) -> str:
        return self.column.key

    def dump(self, value: Any) -> SortValue:
        """Render a row's sort value for a cursor."""
        if self.kind == "timestamp":
            return value.isoformat()
        return str(value)

    def load(self, raw: SortValue) -> Any:
        """Convert a cursor sort value back into the column's type."""
        if self.kind == "timestamp":
            if not isinstance(raw, str):
                raise InvalidCursor("Invalid cursor payload.")
            try:
                return datetime.fromisoformat(raw)
            except ValueError:
                raise InvalidCursor("Invalid cursor payload.")
        if self.kind == "decimal":
            try:
                value = Decimal(str(raw))
            except InvalidOperation:
                raise InvalidCursor("Invalid cursor payload.")
            if not value.is_finite():
                raise InvalidCursor("Invalid cursor payload.")
            return value
        if not isinstance(raw, str):
            raise InvalidCursor("Invalid cursor payload.")
        return raw


@dataclass(frozen=True)
class ResourceSpec:
    """Static description of a listable resource.

    ``cached`` must be False for tables that are also written outside this
    service (the AI worker updates tickets and inserts notifications), since
    only the API's own mutations invalidate the list cache.
    """

    name: str
    model: type
    sorts: dict[str, SortField]
    default_sort: str
    default_limit: int = 20
    max_limit: int = 100
    search_columns: tuple[InstrumentedAttribute, ...] = ()
    cached: bool = True

    def resolve_sort(self, raw: str | None) -> SortField:
        name = raw if raw is not None else self.default_sort
        sort = self.sorts.get(name)
        if sort is None:
            raise ValidationError("Invalid sort value.")
        return sort

    def parse_limit(self, raw: str | None) -> int:
        return parse_limit(raw, self.default_limit, self.max_limit)


def search_predicate(columns: Sequence[ColumnElement[Any]], term: str) -> ColumnElement[bool]:
    """Case-insensitive substring match of ``term`` against any of ``columns``."""
    pattern = f"%{escape_like(term)}%"
    return or_(*(col.ilike(pattern, escape="\\") for col in columns))


def decode_optional_cursor(raw: str | None) -> CursorPayload | None:
    """Decode the ``cursor`` query value; absent or empty means first page."""
    if not raw:
        return None
    return decode_cursor(raw)


@dataclass
class ListQuery(Generic[DTO]):
    resource: ResourceSpec
    org_id: uuid.UUID
    sort: SortField
    order: Order
    limit: int
    cursor: CursorPayload | None = None
    filters: list[ColumnElement[bool]] = field(default_factory=list)

    @property
    def model(self) -> Any:
        return self.resource.model

    def _seek_values(self) -> tuple[Any, uuid.UUID]:
        assert self.cursor is not None
        sort_value = self.sort.load(self.cursor.sort_value)
        try:
            cursor_id = uuid.UUID(self.cursor.id)
        except ValueError:
            raise InvalidCursor("Invalid cursor payload.")
        return sort_value, cursor_id

    def seek_predicate(self) -> ColumnElement[bool] | None:
        """``(sort, id)`` strictly after the cursor position in the requested direction."""
        if self.cursor is None:
            return None
        sort_value, cursor_id = self._seek_values()
        column = self.sort.column
        pk = self.model.id
        if self.order == "desc":
            return or_(column < sort_value, and_(column == sort_value, pk < cursor_id))
        return or_(column > sort_value, and_(column == sort_value, pk > cursor_id))

    def describe_seek(self) -> str | None:
        """Render the seek predicate in filter syntax for debug logs."""
        if self.cursor is None:
            return None
        op = "lt" if self.order == "desc" else "gt"
        col = self.sort.column_key
        raw = self.cursor.sort_value
        value = str(raw) if isinstance(raw, (int, float)) else quote_text_value(raw)
        item_id = quote_text_value(self.cursor.id)
        return f"or({col}.{op}.{value},and({col}.eq.{value},id.{op}.{item_id}))"

    def statement(self, base: Select | None = None) -> Select:
        """Build the bounded SELECT; invalid cursors fail here, before any I/O."""
        stmt = base if base is not None else select(self.model)
        stmt = stmt.where(self.model.org_id == self.org_id)
        for predicate in self.filters:
            stmt = stmt.where(predicate)
        seek = self.seek_predicate()
        if seek is not None:
            stmt = stmt.where(seek)
        if self.order == "asc":
            stmt = stmt.order_by(self.sort.column.asc(), self.model.id.asc())
        else:
            stmt = stmt.order_by(self.sort.column.desc(), self.model.id.desc())
        return stmt.limit(self.limit + 1)

    def page(self, rows: Sequence[Any], mapper: Callable[[Any], DTO]) -> ListResponse[DTO]:
        """Trim the ``limit + 1`` lookahead row and build the next cursor."""
        has_more = len(rows) > self.limit
        page_rows = list(rows[: self.limit])
        next_cursor = None
        if has_more and page_rows:
            last = page_rows[-1]
            next_cursor = encode_cursor(
                CursorPayload(
                    sort_value=self.sort.dump(getattr(last, self.sort.column_key)),
                    id=str(last.id),
                )
            )
        return ListResponse(items=[mapper(row) for row in page_rows], next_cursor=next_cursor)

    async def fetch(
        self,
        db: AsyncSession,
        mapper: Callable[[Any], DTO],
        base: Select | None = None,
    ) -> ListResponse[DTO]:
        stmt = self.statement(base)
        if self.cursor is not None:
            logger.debug("list_seek", resource=self.resource.name, seek=self.describe_seek())
        try:
            result = await db.execute(stmt)
            rows = result.scalars().all()
        except SQLAlchemyError as exc:
            raise translate_backend_error(exc, f"Failed to load {self.resource.name}.") from exc
        return self.page(rows, mapper)

    def cache_params(self, **extra: Any) -> dict[str, Any]:
        params: dict[str, Any] = {
            "sort": self.sort.name,
            "order": self.order,
            "limit": self.limit,
            "cursor": None
            if self.cursor is None
            else [self.cursor.sort_value, self.cursor.id],
        }
        params.update(extra)
        return params


async def serve_list(
    query: ListQuery[DTO],
    db: AsyncSession,
    mapper: Callable[[Any], DTO],
    cache: ListCache | None,
    base: Select | None = None,
    **cache_extra: Any,
) -> ListResponse[DTO] | dict[str, Any]:
    """Serve one page through the read-through list cache when it is available."""
    # Validate the cursor against the sort column before touching cache or DB.
    query.seek_predicate()

    if not query.resource.cached:
        cache = None
    params = query.cache_params(**cache_extra)
    if cache is not None:
        hit = await cache.get_page(query.org_id, query.resource.name, params)
        if hit is not None:
            return hit

    page = await query.fetch(db, mapper, base)
    if cache is not None:
        await cache.set_page(
            query.org_id,
            query.resource.name,
            params,
            page.model_dump(mode="json", by_alias=True),
        )
    return page
