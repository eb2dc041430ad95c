"""Response template endpoints."""

import uuid

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from supportdesk.api.auth import OrgContext, require_org
from supportdesk.api.deps import get_db, get_list_cache
from supportdesk.api.errors import NotFound
from supportdesk.api.listing import ListQuery, ResourceSpec, SortField, decode_optional_cursor, search_predicate, serve_list
from supportdesk.api.mappers import map_template_row, template_updates
from supportdesk.api.mutations import delete_scoped, insert_row, update_scoped
from supportdesk.api.pagination import ListResponse, parse_order
from supportdesk.common.cache import ListCache
from supportdesk.common.models import (
    CreateTemplateRequest,
    PatchTemplateRequest,
    ResponseTemplate,
    TemplateDTO,
    TemplateResponse,
)

logger = structlog.get_logger()
router = APIRouter()

TEMPLATES = ResourceSpec(
    name="templates",
    model=ResponseTemplate,
    sorts={
        "updatedAt": SortField("updatedAt", ResponseTemplate.updated_at, "timestamp"),
        "createdAt": SortField("createdAt", ResponseTemplate.created_at, "timestamp"),
        "title": SortField("title", ResponseTemplate.title, "text"),
    },
    default_sort="updatedAt",
    search_columns=(ResponseTemplate.title, ResponseTemplate.category, ResponseTemplate.content),
)


@router.get("/templates", response_model=ListResponse[TemplateDTO])
async def list_templates(
    limit: str | None = None,
    cursor: str | None = None,
    sort: str | None = None,
    order: str | None = None,
    search: str | None = None,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(require_org),
    cache: ListCache | None = Depends(get_list_cache),
):
    query = ListQuery(
        resource=TEMPLATES,
        org_id=ctx.org_id,
        sort=TEMPLATES.resolve_sort(sort),
        order=parse_order(order),
        limit=TEMPLATES.parse_limit(limit),
        cursor=decode_optional_cursor(cursor),
    )
    term = (search or "").strip()
    if term:
        query.filters.append(search_predicate(TEMPLATES.search_columns, term))
    return await serve_list(query, db, map_template_row, cache, search=term)


@router.post("/templates", response_model=TemplateResponse)
async def create_template(
    body: CreateTemplateRequest,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(require_org),
    cache: ListCache | None = Depends(get_list_cache),
):
    row = await insert_row(
        db,
        ResponseTemplate(org_id=ctx.org_id, title=body.title, category=body.category, content=body.content),
        failure_message="Failed to create template.",
    )
    if cache is not None:
        await cache.invalidate(ctx.org_id, TEMPLATES.name)
    logger.info("template_created", template_id=str(row.id))
    return TemplateResponse(template=map_template_row(row))


@router.patch("/templates/{template_id}", response_model=TemplateResponse)
async def patch_template(
    template_id: uuid.UUID,
    body: PatchTemplateRequest,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(require_org),
    cache: ListCache | None = Depends(get_list_cache),
):
    row = await update_scoped(
        db,
        ResponseTemplate,
        ctx.org_id,
        template_id,
        template_updates(body),
        failure_message="Failed to update template.",
        not_found=NotFound("Template not found."),
    )
    if cache is not None:
        await cache.invalidate(ctx.org_id, TEMPLATES.name)
    logger.info("template_updated", template_id=str(template_id), fields=sorted(body.model_fields_set))
    return TemplateResponse(template=map_template_row(row))


@router.delete("/templates/{template_id}", response_model=TemplateResponse)
async def delete_template(
    template_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(require_org),
    cache: ListCache | None = Depends(get_list_cache),
):
    row = await delete_scoped(
        db,
        ResponseTemplate,
        ctx.org_id,
        template_id,
        failure_message="Failed to delete template.",
        not_found=NotFound("Template not found."),
    )
    if cache is not None:
        await cache.invalidate(ctx.org_id, TEMPLATES.name)
    logger.info("template_deleted", template_id=str(template_id))
    return TemplateResponse(template=map_template_row(row))
