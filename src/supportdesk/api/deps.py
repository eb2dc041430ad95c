"""FastAPI dependency injection."""

from __future__ import annotations

from collections.abc import AsyncGenerator

import redis.asyncio as aioredis
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from supportdesk.common.cache import ListCache
from supportdesk.common.database import get_session_factory


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    session_factory = getattr(request.app.state, "session_factory", None) or get_session_factory()
    async with session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


def get_redis_client(request: Request) -> aioredis.Redis | None:
    return getattr(request.app.state, "redis_client", None)


def get_list_cache(request: Request) -> ListCache | None:
    return getattr(request.app.state, "list_cache", None)
