"""Customer endpoints: keyset-paginated list, create, patch and delete."""

import uuid

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from supportdesk.api.auth import OrgContext, require_org
from supportdesk.api.deps import get_db, get_list_cache
from supportdesk.api.errors import BackendFailure, Conflict, NotFound
from supportdesk.api.listing import ListQuery, ResourceSpec, SortField, decode_optional_cursor, search_predicate, serve_list
from supportdesk.api.mappers import customer_updates, map_customer_row, normalize_email
from supportdesk.api.mutations import delete_scoped, insert_row, update_scoped
from supportdesk.api.pagination import ListResponse, parse_order_with_default
from supportdesk.common.cache import ListCache
from supportdesk.common.models import (
    CreateCustomerRequest,
    Customer,
    CustomerDTO,
    CustomerResponse,
    PatchCustomerRequest,
)

logger = structlog.get_logger()
router = APIRouter()

CUSTOMERS = ResourceSpec(
    name="customers",
    model=Customer,
    sorts={
        "name": SortField("name", Customer.name, "text"),
        "updatedAt": SortField("updatedAt", Customer.updated_at, "timestamp"),
        "createdAt": SortField("createdAt", Customer.created_at, "timestamp"),
        "ltv": SortField("ltv", Customer.ltv, "decimal"),
    },
    default_sort="name",
    search_columns=(Customer.name, Customer.email),
)


def email_conflicts() -> dict[BackendFailure, Conflict]:
    return {
        BackendFailure.UNIQUE_VIOLATION: Conflict(
            "Customer email already exists in this org.", code="CUSTOMER_EMAIL_EXISTS"
        )
    }


def _not_found() -> NotFound:
    return NotFound("Customer not found.")


async def find_customer_by_email(db: AsyncSession, org_id: uuid.UUID, email: str) -> Customer | None:
    """Case-insensitive lookup of an already normalized email within one org."""
    result = await db.execute(
        select(Customer).where(Customer.org_id == org_id, func.lower(Customer.email) == email)
    )
    return result.scalars().first()


@router.get("/customers", response_model=ListResponse[CustomerDTO])
async def list_customers(
    limit: str | None = None,
    cursor: str | None = None,
    sort: str | None = None,
    order: str | None = None,
    search: str | None = None,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(require_org),
    cache: ListCache | None = Depends(get_list_cache),
):
    sort_field = CUSTOMERS.resolve_sort(sort)
    query = ListQuery(
        resource=CUSTOMERS,
        org_id=ctx.org_id,
        sort=sort_field,
        order=parse_order_with_default(order, "desc" if sort_field.kind == "timestamp" else "asc"),
        limit=CUSTOMERS.parse_limit(limit),
        cursor=decode_optional_cursor(cursor),
    )
    term = (search or "").strip()
    if term:
        query.filters.append(search_predicate(CUSTOMERS.search_columns, term))
    return await serve_list(query, db, map_customer_row, cache, search=term)


@router.post("/customers", response_model=CustomerResponse)
async def create_customer(
    body: CreateCustomerRequest,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(require_org),
    cache: ListCache | None = Depends(get_list_cache),
):
    email = normalize_email(body.email)
    if await find_customer_by_email(db, ctx.org_id, email) is not None:
        raise email_conflicts()[BackendFailure.UNIQUE_VIOLATION]

    row = await insert_row(
        db,
        Customer(org_id=ctx.org_id, name=body.name, email=email),
        failure_message="Failed to create customer.",
        conflicts=email_conflicts(),
    )
    if cache is not None:
        await cache.invalidate(ctx.org_id, CUSTOMERS.name)
    logger.info("customer_created", customer_id=str(row.id))
    return CustomerResponse(customer=map_customer_row(row))


@router.patch("/customers/{customer_id}", response_model=CustomerResponse)
async def patch_customer(
    customer_id: uuid.UUID,
    body: PatchCustomerRequest,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(require_org),
    cache: ListCache | None = Depends(get_list_cache),
):
    row = await update_scoped(
        db,
        Customer,
        ctx.org_id,
        customer_id,
        customer_updates(body),
        failure_message="Failed to update customer.",
        not_found=_not_found(),
        conflicts=email_conflicts(),
    )
    if cache is not None:
        await cache.invalidate(ctx.org_id, CUSTOMERS.name)
    logger.info("customer_updated", customer_id=str(customer_id), fields=sorted(body.model_fields_set))
    return CustomerResponse(customer=map_customer_row(row))


@router.delete("/customers/{customer_id}", response_model=CustomerResponse)
async def delete_customer(
    customer_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(require_org),
    cache: ListCache | None = Depends(get_list_cache),
):
    try:
        row = await delete_scoped(
            db,
            Customer,
            ctx.org_id,
            customer_id,
            failure_message="Failed to delete customer.",
            not_found=_not_found(),
            conflicts={
                BackendFailure.FOREIGN_KEY_VIOLATION: Conflict(
                    "Cannot delete a customer that has tickets.", code="CUSTOMER_HAS_TICKETS"
                )
            },
        )
    except Conflict:
        logger.info("customer_delete_conflict", customer_id=str(customer_id))
        raise
    if cache is not None:
        await cache.invalidate(ctx.org_id, CUSTOMERS.name)
    logger.info("customer_deleted", customer_id=str(customer_id))
    return CustomerResponse(customer=map_customer_row(row))
