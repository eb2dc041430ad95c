"""FastAPI application factory."""

from contextlib import asynccontextmanager

import redis.asyncio as aioredis
import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from supportdesk.api.deps import get_db, get_redis_client
from supportdesk.api.errors import register_error_handlers
from supportdesk.api.middleware import CorrelationIdMiddleware, RequestLoggingMiddleware
from supportdesk.api.routes import ai_settings, analytics, customers, notifications, templates, tickets
from supportdesk.common.cache import ListCache
from supportdesk.common.config import settings
from supportdesk.common.database import get_engine, get_session_factory, reset_database
from supportdesk.common.logging import configure_logging

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    configure_logging(settings.log_level)
    settings.validate_jwt_secret()

    # --- Database engine + session factory ---
    engine = get_engine()
    app.state.db_engine = engine
    app.state.session_factory = get_session_factory()

    # --- Redis client (list cache + AI queue); the API runs without it ---
    redis_client = None
    try:
        redis_client = aioredis.from_url(settings.redis_url, decode_responses=True)
        await redis_client.ping()
        logger.info("redis_connected", url=settings.redis_url)
    except (aioredis.RedisError, OSError):
        logger.warning("redis_connect_failed", exc_info=True)
        redis_client = None
    app.state.redis_client = redis_client

    list_cache = None
    if redis_client is not None and settings.list_cache_enabled:
        list_cache = ListCache(redis_client, ttl=settings.list_cache_ttl)
    app.state.list_cache = list_cache

    yield

    # Shutdown
    if redis_client is not None:
        await redis_client.aclose()
    await engine.dispose()
    reset_database()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Support Desk API",
        description="Org-scoped tickets, customers, templates and notifications",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Middleware (outermost last)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Correlation-ID"],
        expose_headers=["X-Correlation-ID"],
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(CorrelationIdMiddleware)

    register_error_handlers(app)

    app.include_router(tickets.router, prefix="/api", tags=["tickets"])
    app.include_router(customers.router, prefix="/api", tags=["customers"])
    app.include_router(templates.router, prefix="/api", tags=["templates"])
    app.include_router(notifications.router, prefix="/api", tags=["notifications"])
    app.include_router(ai_settings.router, prefix="/api", tags=["ai-settings"])
    app.include_router(analytics.router, prefix="/api", tags=["analytics"])

    @app.get("/api/health")
    async def health(
        db: AsyncSession = Depends(get_db),
        redis_client: aioredis.Redis | None = Depends(get_redis_client),
    ):
        services: dict[str, str] = {}

        try:
            await db.execute(text("SELECT 1"))
            services["postgres"] = "up"
        except SQLAlchemyError:
            logger.warning("health_check_pg_failed", exc_info=True)
            services["postgres"] = "down"

        if redis_client is not None:
            try:
                services["redis"] = "up" if await redis_client.ping() else "down"
            except (aioredis.RedisError, OSError):
                logger.warning("health_check_redis_failed", exc_info=True)
                services["redis"] = "down"
        else:
            services["redis"] = "disabled"

        # Redis is optional; only the database decides health.
        healthy = services["postgres"] == "up"
        return JSONResponse(
            status_code=200 if healthy else 503,
            content={"status": "healthy" if healthy else "unhealthy", "services": services},
        )

    return app


app = create_app()
