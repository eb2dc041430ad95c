"""AI run lifecycle: org settings, queueing runs, and handing them to the worker.

The ``ai_runs`` row is the source of truth. The worker that drafts replies lives
outside this service and pops run IDs from a Redis list; pushing onto that list
is best-effort, so a run whose dispatch failed stays ``queued`` until the worker
sweeps it up.
"""

import json
import uuid

import redis.asyncio as aioredis
import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from supportdesk.common.config import settings
from supportdesk.common.models import AIRun, AISettings, Ticket
from supportdesk.common.utils import utc_now

logger = structlog.get_logger()

ACTIVE_RUN_STATUSES = ("queued", "running")


async def get_or_create_settings(db: AsyncSession, org_id: uuid.UUID) -> AISettings:
    """Return the org's AI settings row, creating it with defaults on first use."""
    result = await db.execute(select(AISettings).where(AISettings.org_id == org_id))
    existing = result.scalar_one_or_none()
    if existing is not None:
        return existing

    row = AISettings(org_id=org_id)
    db.add(row)
    try:
        await db.commit()
    except IntegrityError:
        # Another request created it first.
        await db.rollback()
        result = await db.execute(select(AISettings).where(AISettings.org_id == org_id))
        return result.scalar_one()
    await db.refresh(row)
    logger.info("ai_settings_created", org_id=str(org_id))
    return row


async def is_ai_enabled(db: AsyncSession, org_id: uuid.UUID) -> bool:
    """AI is off for orgs that never saved settings."""
    result = await db.execute(select(AISettings.ai_enabled).where(AISettings.org_id == org_id))
    return bool(result.scalar_one_or_none())


async def get_active_run(db: AsyncSession, org_id: uuid.UUID, run_id: uuid.UUID) -> AIRun | None:
    """Return the run if it is still queued or running."""
    result = await db.execute(
        select(AIRun).where(
            AIRun.org_id == org_id,
            AIRun.id == run_id,
            AIRun.status.in_(ACTIVE_RUN_STATUSES),
        )
    )
    return result.scalar_one_or_none()


async def enqueue_run(db: AsyncSession, org_id: uuid.UUID, ticket_id: uuid.UUID) -> AIRun:
    """Insert a queued run and point the ticket at it. The caller commits."""
    run = AIRun(org_id=org_id, ticket_id=ticket_id, status="queued")
    db.add(run)
    await db.flush()
    await db.execute(
        update(Ticket)
        .where(Ticket.org_id == org_id, Ticket.id == ticket_id)
        .values(latest_run_id=run.id, ai_status="pending", updated_at=utc_now())
        .execution_options(synchronize_session=False)
    )
    return run


async def dispatch_run(redis_client: aioredis.Redis | None, run_id: uuid.UUID) -> bool:
    """Push the run onto the worker queue. Never raises."""
    if redis_client is None:
        logger.info("ai_run_dispatch_skipped", run_id=str(run_id), reason="no_redis")
        return False
    try:
        await redis_client.rpush(settings.ai_queue_key, json.dumps({"runId": str(run_id)}))
    except aioredis.RedisError:
        logger.warning("ai_run_dispatch_failed", run_id=str(run_id), exc_info=True)
        return False
    logger.info("ai_run_dispatched", run_id=str(run_id))
    return True
