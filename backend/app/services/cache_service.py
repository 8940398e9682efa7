"""
Redis Cache Service - read-through cache for guidance and milestone reads

Entries are keyed by ``(entity, id)`` and expire after a per-entity TTL.
Nothing refreshes in the background: every mutation in the guidance and
milestone services calls ``invalidate`` for the entries it touched, and
queues the same entries to be dropped again after the request commits.

Cache failures never fail a request. A broken Redis only costs a miss.
"""

import json
from typing import Any, Dict, Optional

import redis.asyncio as redis

from app.core.config import settings
from app.core.logging_config import logger


class CacheService:
    """
    Redis-based (entity, id) cache

    Cache Strategy:
    - guidance:<session id>          CACHE_TTL_GUIDANCE
    - thesis_milestones:<thesis id>  CACHE_TTL_MILESTONES
    """

    ENTITY_GUIDANCE = "guidance"
    ENTITY_THESIS_MILESTONES = "thesis_milestones"

    KEY_PREFIX = "supervision:"

    def __init__(self, client: Optional[redis.Redis] = None):
        self._pool = None
        self._redis = client

    @property
    def enabled(self) -> bool:
        return settings.CACHE_ENABLED

    def ttl_for(self, entity: str) -> int:
        if entity == self.ENTITY_GUIDANCE:
            return settings.CACHE_TTL_GUIDANCE
        if entity == self.ENTITY_THESIS_MILESTONES:
            return settings.CACHE_TTL_MILESTONES
        return settings.CACHE_TTL_GUIDANCE

    def key(self, entity: str, entity_id: str) -> str:
        return f"{self.KEY_PREFIX}{entity}:{entity_id}"

    async def _get_redis(self) -> redis.Redis:
        """Lazy initialization of Redis connection pool"""
        if self._redis is None:
            self._pool = redis.ConnectionPool.from_url(
                settings.REDIS_URL,
                db=settings.REDIS_CACHE_DB,
                max_connections=20,
                decode_responses=True,
            )
            self._redis = redis.Redis(connection_pool=self._pool)
            logger.info("Redis cache connection established")
        return self._redis

    async def close(self):
        """Close Redis connection"""
        if self._redis:
            await self._redis.close()
            self._redis = None
        if self._pool:
            await self._pool.disconnect()
            self._pool = None

    async def ping(self) -> bool:
        """True when Redis answers; used by the readiness probe"""
        try:
            r = await self._get_redis()
            return bool(await r.ping())
        except Exception as e:
            logger.warning(f"Cache ping failed: {e}")
            return False

    async def get(self, entity: str, entity_id: str) -> Optional[Dict[str, Any]]:
        if not self.enabled:
            return None
        try:
            r = await self._get_redis()
            data = await r.get(self.key(entity, entity_id))
            if data:
                logger.debug(f"Cache HIT: {entity} {entity_id}")
                return json.loads(data)
            logger.debug(f"Cache MISS: {entity} {entity_id}")
            return None
        except Exception as e:
            logger.warning(f"Cache error (get {entity}): {e}")
            return None

    async def set(self, entity: str, entity_id: str, data: Dict[str, Any],
                  ttl: Optional[int] = None) -> bool:
        if not self.enabled:
            return False
        try:
            r = await self._get_redis()
            await r.setex(
                self.key(entity, entity_id),
                ttl or self.ttl_for(entity),
                json.dumps(data, default=str),
            )
            logger.debug(f"Cached {entity}: {entity_id}")
            return True
        except Exception as e:
            logger.warning(f"Cache error (set {entity}): {e}")
            return False

    async def invalidate(self, entity: str, *entity_ids: str) -> bool:
        """Drop the given entries. Called by every mutation."""
        if not self.enabled or not entity_ids:
            return False
        try:
            r = await self._get_redis()
            await r.delete(*[self.key(entity, str(i)) for i in entity_ids])
            logger.debug(f"Invalidated cache for {entity}: {', '.join(str(i) for i in entity_ids)}")
            return True
        except Exception as e:
            logger.warning(f"Cache error (invalidate {entity}): {e}")
            return False

    # ========== Post-commit invalidation ==========

    PENDING_INFO_KEY = "cache_invalidations"

    def invalidate_after_commit(self, db: Any, entity: str, entity_id: str) -> None:
        """
        Queue an entry to be dropped again once ``db`` commits.

        A read running between the mutation's flush and its commit still
        sees the old row and may cache it; the second drop clears that copy.
        """
        db.info.setdefault(self.PENDING_INFO_KEY, set()).add((entity, str(entity_id)))

    async def invalidate_committed(self, db: Any) -> int:
        """Drop everything queued on ``db``. Call right after commit."""
        pending = db.info.pop(self.PENDING_INFO_KEY, None) or set()
        for entity, entity_id in sorted(pending):
            await self.invalidate(entity, entity_id)
        return len(pending)

    def discard_pending(self, db: Any) -> None:
        """Forget queued entries after a rollback"""
        db.info.pop(self.PENDING_INFO_KEY, None)

    # ========== Convenience wrappers ==========

    async def invalidate_guidance(self, guidance_id: str) -> bool:
        return await self.invalidate(self.ENTITY_GUIDANCE, guidance_id)

    async def invalidate_thesis_milestones(self, thesis_id: str) -> bool:
        return await self.invalidate(self.ENTITY_THESIS_MILESTONES, thesis_id)


# Singleton instance
cache_service = CacheService()
