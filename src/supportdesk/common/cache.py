"""Redis read-through cache for list pages, with per-resource invalidation."""

import hashlib
import json
import uuid
from typing import Any

import redis.asyncio as redis
import structlog

from supportdesk.common.config import settings

logger = structlog.get_logger()

_redis_client: redis.Redis | None = None


async def get_redis() -> redis.Redis:
    """Get or create a shared async Redis client."""
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(settings.redis_url, decode_responses=True)
    return _redis_client


async def close_redis() -> None:
    """Close the shared Redis client."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None


def _key_prefix(org_id: uuid.UUID, resource: str) -> str:
    return f"list:{org_id}:{resource}:"


def _make_list_key(org_id: uuid.UUID, resource: str, params: dict[str, Any]) -> str:
    """Build a deterministic cache key for one page of a list endpoint."""
    raw = json.dumps(params, sort_keys=True, default=str)
    digest = hashlib.sha256(raw.encode()).hexdigest()[:16]
    return _key_prefix(org_id, resource) + digest


class ListCache:
    """Caches serialized list pages keyed by org, resource and normalized params.

    Entries expire after ``ttl`` seconds and are dropped explicitly by
    ``invalidate`` whenever a mutation touches the resource.
    """

    def __init__(self, client: redis.Redis, ttl: int = 30) -> None:
        self.client = client
        self.ttl = ttl

    async def get_page(self, org_id: uuid.UUID, resource: str, params: dict[str, Any]) -> dict[str, Any] | None:
        key = _make_list_key(org_id, resource, params)
        try:
            raw = await self.client.get(key)
        except redis.RedisError:
            logger.warning("list_cache_get_failed", key=key, exc_info=True)
            return None
        if raw is None:
            return None
        logger.debug("list_cache_hit", key=key)
        page: dict[str, Any] = json.loads(raw)
        return page

    async def set_page(
        self, org_id: uuid.UUID, resource: str, params: dict[str, Any], page: dict[str, Any]
    ) -> None:
        key = _make_list_key(org_id, resource, params)
        try:
            await self.client.set(key, json.dumps(page), ex=self.ttl)
        except redis.RedisError:
            logger.warning("list_cache_set_failed", key=key, exc_info=True)
            return
        logger.debug("list_cache_set", key=key, ttl=self.ttl)

    async def invalidate(self, org_id: uuid.UUID, *resources: str) -> int:
        """Drop every cached page of ``resources`` for one organization."""
        deleted = 0
        for resource in resources:
            try:
                keys = [k async for k in self.client.scan_iter(match=_key_prefix(org_id, resource) + "*")]
                if keys:
                    deleted += await self.client.delete(*keys)
            except redis.RedisError:
                logger.warning("list_cache_invalidate_failed", resource=resource, exc_info=True)
        if deleted:
            logger.debug("list_cache_invalidated", resources=list(resources), deleted=deleted)
        return deleted
