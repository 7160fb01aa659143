"""
Short-lived cache of per-user role names and permission names.

Entries are keyed by a cluster-wide generation counter. Every grant, revoke
and role assignment bumps the generation, which orphans all existing entries
at once; orphans then expire through their TTL. A Redis failure never fails
an authorization check: reads fall back to the database.
"""
from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass

from redis.asyncio import Redis as AsyncRedis
from redis.exceptions import RedisError

from ...config import settings
from ...infra.redis import get_async_redis_client

logger = logging.getLogger("rbac.cache")

GENERATION_KEY = "rbac:generation"


@dataclass(frozen=True)
class CachedGrants:
    roles: frozenset[str]
    permissions: frozenset[str]


class PermissionCache:
    def __init__(self, redis_client: AsyncRedis, ttl_seconds: int):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be greater than 0")
        self._redis = redis_client
        self._ttl = ttl_seconds

    async def generation(self) -> str | None:
        """Current generation, or None when Redis is unreachable.

        Read it once before loading grants from the database and pass it to
        both ``get`` and ``set``: a fill keyed to the generation seen before
        the read is orphaned by any invalidation that lands in between.
        """
        try:
            value = await self._redis.get(GENERATION_KEY)
        except RedisError as exc:
            logger.error("Redis operation failed operation=GET key=%s error=%s", GENERATION_KEY, exc)
            return None
        return str(value) if value is not None else "0"

    @staticmethod
    def _user_key(generation: str, user_id: uuid.UUID) -> str:
        return f"rbac:grants:{generation}:{user_id}"

    async def get(self, user_id: uuid.UUID, generation: str) -> CachedGrants | None:
        try:
            raw = await self._redis.get(self._user_key(generation, user_id))
        except RedisError as exc:
            logger.error("Redis operation failed operation=GET user_id=%s error=%s", user_id, exc)
            return None
        if raw is None:
            return None
        try:
            payload = json.loads(raw)
            return CachedGrants(
                roles=frozenset(payload["roles"]),
                permissions=frozenset(payload["permissions"]),
            )
        except (ValueError, KeyError, TypeError):
            logger.warning("Discarding malformed permission cache entry user_id=%s", user_id)
            return None

    async def set(self, user_id: uuid.UUID, grants: CachedGrants, generation: str) -> None:
        payload = json.dumps(
            {"roles": sorted(grants.roles), "permissions": sorted(grants.permissions)}
        )
        try:
            await self._redis.set(self._user_key(generation, user_id), payload, ex=self._ttl)
        except RedisError as exc:
            logger.error("Redis operation failed operation=SET user_id=%s error=%s", user_id, exc)

    async def invalidate(self) -> None:
        """Orphan every cached entry by advancing the generation."""
        try:
            generation = await self._redis.incr(GENERATION_KEY)
            logger.debug("Permission cache invalidated generation=%s", generation)
        except RedisError as exc:
            # Stale entries survive at most one TTL
            logger.error("Redis operation failed operation=INCR key=%s error=%s", GENERATION_KEY, exc)


_cache: PermissionCache | None = None


def get_permission_cache() -> PermissionCache | None:
    """Return the process-wide cache, or None when caching is disabled."""
    global _cache
    if not settings.permission_cache_enabled:
        return None
    if _cache is None:
        _cache = PermissionCache(
            get_async_redis_client(settings.redis_url),
            settings.permission_cache_ttl_seconds,
        )
    return _cache
