"""Per-org AI settings. The row is created with defaults on first access."""

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from supportdesk.ai.runs import get_or_create_settings
from supportdesk.api.auth import OrgContext, require_org
from supportdesk.api.deps import get_db
from supportdesk.api.errors import NotFound
from supportdesk.api.mappers import ai_settings_updates, map_ai_settings_row
from supportdesk.api.mutations import update_scoped
from supportdesk.common.models import AISettings, AISettingsResponse, PatchAISettingsRequest

logger = structlog.get_logger()
router = APIRouter()


@router.get("/ai-settings", response_model=AISettingsResponse)
async def get_ai_settings(
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(require_org),
):
    row = await get_or_create_settings(db, ctx.org_id)
    return AISettingsResponse(settings=map_ai_settings_row(row))


@router.patch("/ai-settings", response_model=AISettingsResponse)
async def patch_ai_settings(
    body: PatchAISettingsRequest,
    db: AsyncSession = Depends(get_db),
    ctx: OrgContext = Depends(require_org),
):
    current = await get_or_create_settings(db, ctx.org_id)
    row = await update_scoped(
        db,
        AISettings,
        ctx.org_id,
        current.id,
        ai_settings_updates(body),
        failure_message="Failed to update AI settings.",
        not_found=NotFound("AI settings not found."),
    )
    logger.info("ai_settings_updated", fields=sorted(body.model_fields_set))
    return AISettingsResponse(settings=map_ai_settings_row(row))
