"""Read-through cache for report statistics.

Dashboard counts are read far more often than reports change, so the
aggregation result is cached per organization:

    reports:{org_id}:stats     organization totals per status
    reports:{org_id}:interns   per-intern counts for the intern listing

Entries expire after ``STATS_TTL_SECONDS`` and every report mutation
deletes ``reports:{org_id}:*`` twice: straight away, and again once the
request's transaction has committed (``PendingInvalidations``).  The
second pass drops any entry a concurrent reader built from rows that
were not yet committed.  The TTL only bounds staleness if an
invalidation is ever missed.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from app.core.metrics import CACHE_OPERATIONS
from app.db.redis import redis_pool

logger = logging.getLogger(__name__)

STATS_TTL_SECONDS = 60


@runtime_checkable
class CacheService(Protocol):
    async def get(self, key: str) -> str | None: ...
    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...
    async def delete(self, key: str) -> None: ...
    async def delete_pattern(self, pattern: str) -> None:
        """Delete all keys matching a trailing-``*`` glob."""
        ...


class InMemoryCacheService:
    """Process-local cache without TTL enforcement (dev and tests)."""

    def __init__(self) -> None:
        self._store: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        return self._store.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._store[key] = value

    async def delete(self, key: str) -> None:
        self._store.pop(key, None)

    async def delete_pattern(self, pattern: str) -> None:
        prefix = pattern.rstrip("*")
        for k in [k for k in self._store if k.startswith(prefix)]:
            del self._store[k]


class RedisCacheService:
    """Redis-backed cache shared by every API instance."""

    _PREFIX = "cache:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    async def get(self, key: str) -> str | None:
        return await self._redis.get(f"{self._PREFIX}{key}")

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._redis.setex(f"{self._PREFIX}{key}", ttl_seconds, value)

    async def delete(self, key: str) -> None:
        await self._redis.delete(f"{self._PREFIX}{key}")

    async def delete_pattern(self, pattern: str) -> None:
        # SCAN in batches; KEYS would block the server on a large keyspace.
        cursor = 0
        while True:
            cursor, keys = await self._redis.scan(
                cursor, match=f"{self._PREFIX}{pattern}", count=100
            )
            if keys:
                await self._redis.delete(*keys)
            if cursor == 0:
                break


def stats_key(org_id: UUID) -> str:
    return f"reports:{org_id}:stats"


def interns_key(org_id: UUID) -> str:
    return f"reports:{org_id}:interns"


async def read_through(
    cache: CacheService,
    key: str,
    load: Callable[[], Awaitable[Any]],
    *,
    ttl_seconds: int = STATS_TTL_SECONDS,
) -> Any:
    """Return the cached JSON value for ``key``, loading it on a miss."""
    cached = await cache.get(key)
    if cached is not None:
        CACHE_OPERATIONS.labels(operation="hit").inc()
        return json.loads(cached)
    CACHE_OPERATIONS.labels(operation="miss").inc()
    value = await load()
    await cache.set(key, json.dumps(value), ttl_seconds)
    return value


async def invalidate_org(cache: CacheService, org_id: UUID) -> None:
    await cache.delete_pattern(f"reports:{org_id}:*")
    logger.debug("Report cache invalidated org_id=%s", org_id)


class PendingInvalidations:
    """Organizations whose report cache is cleared after the commit.

    One instance per request.  ``flush`` runs once the transaction that
    changed the reports has committed.
    """

    def __init__(self, cache: CacheService) -> None:
        self._cache = cache
        self._org_ids: set[UUID] = set()

    def add(self, org_id: UUID) -> None:
        self._org_ids.add(org_id)

    async def flush(self) -> None:
        org_ids, self._org_ids = self._org_ids, set()
        for org_id in org_ids:
            await invalidate_org(self._cache, org_id)


if redis_pool is not None:
    cache_service: CacheService = RedisCacheService(redis_pool)
else:
    cache_service = InMemoryCacheService()
