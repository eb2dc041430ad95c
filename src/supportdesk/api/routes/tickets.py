"""Ticket endpoints: inbox listing, creation with AI queueing, updates, archive,
the message thread and manual AI re-runs."""

import json
import uuid

import pydantic
import redis.asyncio as aioredis
import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.encoders import jsonable_encoder
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import contains_eager, joinedload
from sqlalchemy.sql.elements import ColumnElement

from supportdesk.ai.runs import dispatch_run, enqueue_run, get_active_run, is_ai_enabled
from supportdesk.api.auth import OrgContext, require_org
from supportdesk.api.deps import get_db, get_list_cache, get_redis_client
from supportdesk.api.errors import BackendFailure, Conflict, NotFound, ValidationError, translate_backend_error
from supportdesk.api.listing import ListQuery, ResourceSpec, SortField, decode_optional_cursor, search_predicate, serve_list
from supportdesk.api.mappers import map_ticket_message_row, map_ticket_row, normalize_email, ticket_updates
from supportdesk.api.mutations import insert_row, update_scoped
from supportdesk.api.pagination import ListResponse, parse_order, parse_order_with_default
from supportdesk.api.routes.customers import CUSTOMERS, email_conflicts, find_customer_by_email
from supportdesk.common.cache import ListCache
from supportdesk.common.models import (
    CreateTicketMessageRequest,
    CreateTicketRequest,
    Customer,
    PatchTicketRequest,
    Ticket,
    TicketDTO,
    TicketMessage,
    TicketMessageDTO,
    TicketMessageResponse,
    TicketResponse,
    TicketRunResponse,
    TriggerAIRunRequest,
)
from supportdesk.common.utils import make_excerpt, utc_now

logger = structlog.get_logger()
router = APIRouter()

TICKETS = ResourceSpec(
    name="tickets",
    model=Ticket,
    sorts={
        "updatedAt": SortField("updatedAt", Ticket.updated_at, "timestamp"),
        "createdAt": SortField("createdAt", Ticket.created_at, "timestamp"),
    },
    default_sort="updatedAt",
    search_columns=(Ticket.subject, Ticket.content, Customer.name, Customer.email),
    cached=False,
)

TICKET_MESSAGES = ResourceSpec(
    name="ticket_messages",
    model=TicketMessage,
    sorts={"createdAt": SortField("createdAt", TicketMessage.created_at, "timestamp")},
    default_sort="createdAt",
    default_limit=50,
    max_limit=200,
)

TICKET_NUMBER_PREFIX = "TCK-"


def tab_filters(tab: str) -> list[ColumnElement[bool]]:
    """Inbox tab predicates. Every tab except ``archived`` hides archived tickets."""
    if tab == "archived":
        return [Ticket.archived_at.is_not(None)]
    active = Ticket.archived_at.is_(None)
    if tab == "all":
        return [active]
    if tab == "priority":
        return [active, Ticket.priority == "high"]
    if tab in ("draft_ready", "human_needed"):
        return [active, Ticket.ai_status == tab]
    if tab == "resolved":
        return [active, Ticket.status == "resolved"]
    raise ValidationError("Invalid tab value.")


def _ticket_not_found() -> NotFound:
    return NotFound("Ticket not found.")


async def load_ticket(db: AsyncSession, org_id: uuid.UUID, ticket_id: uuid.UUID) -> Ticket:
    """Fetch one ticket with its customer, or raise ``NotFound``."""
    stmt = (
        select(Ticket)
        .options(joinedload(Ticket.customer))
        .where(Ticket.org_id == org_id, Ticket.id == ticket_id)
        .execution_options(populate_existing=True)
    )
    try:
        result = await db.execute(stmt)
        row = result.scalars().first()
    except SQLAlchemyError as exc:
        raise translate_backend_error(exc, "Failed to load ticket.") from exc
    if row is None:
        raise _ticket_not_found()
    return row


async def ensure_ticket(db: AsyncSession, org_id: uuid.UUID, ticket_id: uuid.UUID) -> None:
    result = await db.execute(select(Ticket.id).where(Ticket.org_id == org_id, Ticket.id == ticket_id))
    if result.scalar_one_or_none() is None:
        raise _ticket_not_found()


async def next_ticket_number(db: AsyncSession, org_id: uuid.UUID) -> str:
    """Sequential per-org ticket number; tickets are archived, never deleted."""
    result = await db.execute(select(func.count()).select_from(Ticket).where(Ticket.org_id == org_id))
    return f"{TICKET_NUMBER_PREFIX}{result.scalar_one() + 1:05d}"


async def resolve_customer(db: AsyncSession, org_id: uuid.UUID, body: CreateTicketRequest) -> uuid.UUID:
    """Return the ticket's customer id, creating the customer by email if needed."""
    if body.customer_id is not None:
        result = await db.execute(
            select(Customer.id).where(Customer.org_id == org_id, Customer.id == body.customer_id)
        )
        customer_id = result.scalar_one_or_none()
        if customer_id is None:
            raise NotFound("Customer not found.")
        return customer_id

    assert body.customer is not None
    email = normalize_email(body.customer.email)
    existing = await find_customer_by_email(db, org_id, email)
    if existing is not None:
        return existing.id

    try:
        created = await insert_row(
            db,
            Customer(org_id=org_id, name=body.customer.name, email=email),
            failure_message="Failed to create customer.",
            conflicts=email_conflicts(),
        )
    except Conflict:
        # Lost a race with a concurrent insert of the same email.
        existing = await find_customer_by_email(db, org_id, email)
        if existing is None:
            raise
        return existing.id
    logger.info("customer_created", customer_id=str(created.id), via="ticket")
    return created.id


async def _invalidate(cache: ListCache | None, org_id: uuid.UUID, *resources: str) -> None:
    if cache is not None:
        await cache.invalidate(org_id, *resources)


async def run_options(request: Request) -> TriggerAIRunRequest:
    """Read the optional ``{force}`` body. A missing or unparseable body means no options."""
    try:
        payload = json.loads(await request.body() or b"{}")
    except ValueError:
        payload = {}
    try:
        return TriggerAIRunRequest.model_validate(payload)
    except pydantic.ValidationError as exc:
        details = jsonable_encoder(exc.errors(), exclude={"ctx", "url"})
        raise ValidationError("Invalid request body.", details=details) from exc


@router.get("/tickets", response_model=ListResponse[TicketDTO])
async def list_tickets(
    limit: str | None = None,
    cursor: str | None = None,
    sort: str | None = None,
    order: str | None = None,
    search: str | None = None,
    tab: str | None = None,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(require_org),
    cache: ListCache | None = Depends(get_list_cache),
):
    tab = tab if tab is not None else "all"
    query = ListQuery(
        resource=TICKETS,
        org_id=ctx.org_id,
        sort=TICKETS.resolve_sort(sort),
        order=parse_order(order),
        limit=TICKETS.parse_limit(limit),
        cursor=decode_optional_cursor(cursor),
        filters=tab_filters(tab),
    )
    term = (search or "").strip()
    if term:
        query.filters.append(search_predicate(TICKETS.search_columns, term))

    base = select(Ticket).join(Ticket.customer).options(contains_eager(Ticket.customer))
    return await serve_list(query, db, map_ticket_row, cache, base=base, tab=tab, search=term)


@router.post("/tickets", response_model=TicketRunResponse)
async def create_ticket(
    body: CreateTicketRequest,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(require_org),
    cache: ListCache | None = Depends(get_list_cache),
    redis_client: aioredis.Redis | None = Depends(get_redis_client),
):
    customer_id = await resolve_customer(db, ctx.org_id, body)
    run_ai = await is_ai_enabled(db, ctx.org_id) and body.run_ai is not False

    now = utc_now()
    ticket = Ticket(
        org_id=ctx.org_id,
        ticket_number=await next_ticket_number(db, ctx.org_id),
        customer_id=customer_id,
        subject=body.subject,
        excerpt=make_excerpt(body.content),
        content=body.content,
        category=body.category,
        priority=body.priority or "medium",
        status="open",
        ai_status="pending" if run_ai else None,
    )
    run_id = None
    try:
        db.add(ticket)
        await db.flush()
        await db.execute(
            update(Customer)
            .where(Customer.org_id == ctx.org_id, Customer.id == customer_id)
            .values(last_ticket_at=now)
            .execution_options(synchronize_session=False)
        )
        if run_ai:
            run = await enqueue_run(db, ctx.org_id, ticket.id)
            run_id = run.id
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        raise translate_backend_error(
            exc,
            "Failed to create ticket.",
            {
                BackendFailure.UNIQUE_VIOLATION: Conflict(
                    "Ticket number already taken, retry the request.", code="TICKET_NUMBER_CONFLICT"
                )
            },
        ) from exc

    logger.info("ticket_created", ticket_id=str(ticket.id), run_id=str(run_id) if run_id else None)
    if run_id is not None:
        await dispatch_run(redis_client, run_id)
    await _invalidate(cache, ctx.org_id, CUSTOMERS.name)

    row = await load_ticket(db, ctx.org_id, ticket.id)
    return TicketRunResponse(ticket=map_ticket_row(row), run_id=str(run_id) if run_id else None)


@router.get("/tickets/{ticket_id}", response_model=TicketResponse)
async def get_ticket(
    ticket_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(require_org),
):
    row = await load_ticket(db, ctx.org_id, ticket_id)
    return TicketResponse(ticket=map_ticket_row(row))


@router.patch("/tickets/{ticket_id}", response_model=TicketResponse)
async def patch_ticket(
    ticket_id: uuid.UUID,
    body: PatchTicketRequest,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(require_org),
):
    await update_scoped(
        db,
        Ticket,
        ctx.org_id,
        ticket_id,
        ticket_updates(body),
        failure_message="Failed to update ticket.",
        not_found=_ticket_not_found(),
        returning=Ticket.id,
        ignore=("excerpt", "draft_updated_at"),
    )
    logger.info("ticket_updated", ticket_id=str(ticket_id), fields=sorted(body.model_fields_set))
    row = await load_ticket(db, ctx.org_id, ticket_id)
    return TicketResponse(ticket=map_ticket_row(row))


@router.post("/tickets/{ticket_id}/archive", response_model=TicketResponse)
async def archive_ticket(
    ticket_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(require_org),
):
    """Soft-delete a ticket. Archiving twice keeps the first timestamp."""
    await update_scoped(
        db,
        Ticket,
        ctx.org_id,
        ticket_id,
        {"archived_at": func.coalesce(Ticket.archived_at, utc_now())},
        failure_message="Failed to archive ticket.",
        not_found=_ticket_not_found(),
        returning=Ticket.id,
    )
    logger.info("ticket_archived", ticket_id=str(ticket_id))
    row = await load_ticket(db, ctx.org_id, ticket_id)
    return TicketResponse(ticket=map_ticket_row(row))


@router.get("/tickets/{ticket_id}/messages", response_model=ListResponse[TicketMessageDTO])
async def list_ticket_messages(
    ticket_id: uuid.UUID,
    limit: str | None = None,
    cursor: str | None = None,
    order: str | None = None,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(require_org),
    cache: ListCache | None = Depends(get_list_cache),
):
    query = ListQuery(
        resource=TICKET_MESSAGES,
        org_id=ctx.org_id,
        sort=TICKET_MESSAGES.resolve_sort(None),
        order=parse_order_with_default(order, "asc"),
        limit=TICKET_MESSAGES.parse_limit(limit),
        cursor=decode_optional_cursor(cursor),
        filters=[TicketMessage.ticket_id == ticket_id],
    )
    query.seek_predicate()
    await ensure_ticket(db, ctx.org_id, ticket_id)
    return await serve_list(query, db, map_ticket_message_row, cache, ticket_id=str(ticket_id))


@router.post("/tickets/{ticket_id}/messages", response_model=TicketMessageResponse)
async def create_ticket_message(
    ticket_id: uuid.UUID,
    body: CreateTicketMessageRequest,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(require_org),
    cache: ListCache | None = Depends(get_list_cache),
):
    await ensure_ticket(db, ctx.org_id, ticket_id)
    row = await insert_row(
        db,
        TicketMessage(
            org_id=ctx.org_id,
            ticket_id=ticket_id,
            author_type=body.author_type or "agent",
            author_name=body.author_name,
            content=body.content,
        ),
        failure_message="Failed to create ticket message.",
    )
    await _invalidate(cache, ctx.org_id, TICKET_MESSAGES.name)
    logger.info("ticket_message_created", ticket_id=str(ticket_id), message_id=str(row.id))
    return TicketMessageResponse(message=map_ticket_message_row(row))


@router.post("/tickets/{ticket_id}/ai/run", response_model=TicketRunResponse)
async def trigger_ai_run(
    ticket_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(require_org),
    options: TriggerAIRunRequest = Depends(run_options),
    redis_client: aioredis.Redis | None = Depends(get_redis_client),
):
    """Queue a draft run. An in-flight run is reused unless ``force`` is set."""
    force = options.force
    ticket = await load_ticket(db, ctx.org_id, ticket_id)

    if not await is_ai_enabled(db, ctx.org_id):
        return TicketRunResponse(ticket=map_ticket_row(ticket), run_id=None)

    if not force and ticket.latest_run_id is not None:
        active = await get_active_run(db, ctx.org_id, ticket.latest_run_id)
        if active is not None:
            logger.info("ai_run_reused", ticket_id=str(ticket_id), run_id=str(active.id))
            return TicketRunResponse(ticket=map_ticket_row(ticket), run_id=str(active.id))

    try:
        run = await enqueue_run(db, ctx.org_id, ticket_id)
        run_id = run.id
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        raise translate_backend_error(exc, "Failed to enqueue AI run.") from exc

    logger.info("ai_run_queued", ticket_id=str(ticket_id), run_id=str(run_id), force=force)
    await dispatch_run(redis_client, run_id)

    row = await load_ticket(db, ctx.org_id, ticket_id)
    return TicketRunResponse(ticket=map_ticket_row(row), run_id=str(run_id))
