"""Ticket analytics over a trailing 7 or 30 day window, bucketed by UTC day."""

from collections import Counter
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from supportdesk.api.auth import OrgContext, require_org
from supportdesk.api.deps import get_db
from supportdesk.api.errors import ValidationError, translate_backend_error
from supportdesk.common.models import (
    AnalyticsDTO,
    AnalyticsRange,
    AnalyticsResponse,
    AnalyticsSummary,
    CategoryCount,
    ResolutionSplit,
    Ticket,
    VolumeBucket,
)
from supportdesk.common.utils import to_iso, utc_now

logger = structlog.get_logger()
router = APIRouter()

RANGES: dict[str, int] = {"7d": 7, "30d": 30}


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _start_of_day(value: datetime) -> datetime:
    return _as_utc(value).replace(hour=0, minute=0, second=0, microsecond=0)


def summarize_tickets(rows: Sequence[Any], start: datetime, end: datetime) -> AnalyticsDTO:
    """Aggregate ticket rows created in ``[start, end]``.

    Each row needs ``status``, ``ai_status``, ``category``, ``created_at``,
    ``updated_at`` and ``archived_at``.
    """
    open_tickets = sum(1 for t in rows if t.status == "open" and t.archived_at is None)
    resolved = [t for t in rows if t.status == "resolved"]
    human_needed = sum(1 for t in rows if t.ai_status == "human_needed" and t.archived_at is None)
    ai_resolved = sum(1 for t in resolved if t.ai_status is not None)

    durations = [
        max(0, int((_as_utc(t.updated_at) - _as_utc(t.created_at)).total_seconds()))
        for t in resolved
        if t.created_at is not None and t.updated_at is not None
    ]
    avg_handle = round(sum(durations) / len(durations)) if durations else None

    per_day = Counter(_start_of_day(t.created_at) for t in rows)
    volume = []
    day = _start_of_day(start)
    last_day = _start_of_day(end)
    while day <= last_day:
        volume.append(VolumeBucket(bucket_start=to_iso(day), tickets=per_day.get(day, 0)))
        day += timedelta(days=1)

    categories = Counter(t.category for t in rows)

    return AnalyticsDTO(
        range=AnalyticsRange(from_=to_iso(start), to=to_iso(end), timezone="UTC"),
        summary=AnalyticsSummary(
            total_tickets=len(rows),
            open_tickets=open_tickets,
            resolved_tickets=len(resolved),
            human_needed_tickets=human_needed,
            ai_resolution_rate=ai_resolved / len(resolved) if resolved else None,
            avg_handle_time_seconds=avg_handle,
        ),
        ticket_volume=volume,
        resolution_split=ResolutionSplit(
            ai_resolved=ai_resolved,
            human_resolved=max(len(resolved) - ai_resolved, 0),
        ),
        categories=[CategoryCount(category=c, count=n) for c, n in categories.items()],
    )


@router.get("/analytics", response_model=AnalyticsResponse)
async def get_analytics(
    range: str | None = None,  # noqa: A002
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(require_org),
):
    days = RANGES.get(range if range is not None else "7d")
    if days is None:
        raise ValidationError("Invalid range value.")

    end = utc_now()
    start = end - timedelta(days=days)
    stmt = (
        select(
            Ticket.status,
            Ticket.ai_status,
            Ticket.category,
            Ticket.created_at,
            Ticket.updated_at,
            Ticket.archived_at,
        )
        .where(Ticket.org_id == ctx.org_id, Ticket.created_at >= start, Ticket.created_at <= end)
        .order_by(Ticket.created_at)
    )
    try:
        result = await db.execute(stmt)
        rows = result.all()
    except SQLAlchemyError as exc:
        raise translate_backend_error(exc, "Failed to load analytics.") from exc

    logger.debug("analytics_loaded", days=days, tickets=len(rows))
    return AnalyticsResponse(analytics=summarize_tickets(rows, start, end))
