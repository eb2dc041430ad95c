"""Notification feed and read receipts."""

import uuid

import structlog
from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession

from supportdesk.api.auth import OrgContext, require_org
from supportdesk.api.deps import get_db, get_list_cache
from supportdesk.api.errors import NotFound
from supportdesk.api.listing import ListQuery, ResourceSpec, SortField, decode_optional_cursor, serve_list
from supportdesk.api.mappers import map_notification_row
from supportdesk.api.mutations import execute_scoped
from supportdesk.api.pagination import ListResponse, parse_bool_flag, parse_order_with_default
from supportdesk.common.cache import ListCache
from supportdesk.common.models import Notification, NotificationDTO, NotificationResponse
from supportdesk.common.utils import utc_now

logger = structlog.get_logger()
router = APIRouter()

NOTIFICATIONS = ResourceSpec(
    name="notifications",
    model=Notification,
    sorts={"createdAt": SortField("createdAt", Notification.created_at, "timestamp")},
    default_sort="createdAt",
    cached=False,
)


@router.get("/notifications", response_model=ListResponse[NotificationDTO])
async def list_notifications(
    limit: str | None = None,
    cursor: str | None = None,
    order: str | None = None,
    unread_only_raw: str | None = Query(default=None, alias="unreadOnly"),
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(require_org),
    cache: ListCache | None = Depends(get_list_cache),
):
    unread_only = parse_bool_flag(unread_only_raw)
    query = ListQuery(
        resource=NOTIFICATIONS,
        org_id=ctx.org_id,
        sort=NOTIFICATIONS.resolve_sort(None),
        order=parse_order_with_default(order, "desc"),
        limit=NOTIFICATIONS.parse_limit(limit),
        cursor=decode_optional_cursor(cursor),
    )
    if unread_only:
        query.filters.append(Notification.read_at.is_(None))
    return await serve_list(query, db, map_notification_row, cache, unread_only=unread_only)


@router.post("/notifications/{notification_id}/read", response_model=NotificationResponse)
async def mark_notification_read(
    notification_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(require_org),
):
    """Mark one notification read. The first read timestamp wins."""
    stmt = (
        update(Notification)
        .where(Notification.org_id == ctx.org_id, Notification.id == notification_id)
        .values(read_at=func.coalesce(Notification.read_at, utc_now()))
        .returning(Notification)
        .execution_options(synchronize_session=False, populate_existing=True)
    )
    row = await execute_scoped(
        db,
        stmt,
        failure_message="Failed to mark notification read.",
        not_found=NotFound("Notification not found."),
    )
    logger.info("notification_read", notification_id=str(notification_id))
    return NotificationResponse(notification=map_notification_row(row))
