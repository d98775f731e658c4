"""Liveness and readiness probes.

/health answers 200 while the process runs and reports each backing
service; /ready answers 503 when a configured critical dependency
(the database) cannot be reached.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Response
from sqlalchemy import text

from app.db.engine import engine
from app.db.redis import redis_pool
from app.services import storage

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


async def _check_database() -> str:
    if engine is None:
        return "not_configured"
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return "ok"
    except Exception:
        logger.exception("Database health check failed")
        return "degraded"


async def _check_redis() -> str:
    if redis_pool is None:
        return "not_configured"
    try:
        await redis_pool.ping()  # type: ignore[misc]
        return "ok"
    except Exception:
        logger.exception("Redis health check failed")
        return "degraded"


@router.get("/health")
async def health() -> dict:
    """Always 200; ``status`` is "degraded" when a dependency is down."""
    checks = {
        "database": await _check_database(),
        "redis": await _check_redis(),
        "storage": type(storage.storage_backend).__name__,
    }
    overall = "degraded" if "degraded" in checks.values() else "ok"
    return {"status": overall, "checks": checks}


@router.get("/ready")
async def ready() -> Response:
    # Redis only backs a cache, so it never blocks readiness.
    if await _check_database() == "degraded":
        return Response(status_code=503)
    return Response(status_code=200)
