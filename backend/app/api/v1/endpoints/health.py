"""
Health Check Endpoints

- /health/live  - the process answers
- /health/ready - the database is reachable and the guidance tables exist;
                  Redis is reported but never blocks readiness
"""

import asyncio
import time
from datetime import datetime
from typing import Any, Dict

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text

from app.core.config import settings
from app.core.database import get_session_local
from app.core.logging_config import logger
from app.services.cache_service import cache_service


router = APIRouter(prefix="/health", tags=["Health Checks"])


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


async def check_database() -> Dict[str, Any]:
    started = time.perf_counter()
    try:
        async with get_session_local()() as session:
            await session.execute(text("SELECT 1"))
            await session.execute(text("SELECT COUNT(*) FROM guidance_sessions"))
    except Exception as e:
        logger.error(f"[HealthCheck] Database check failed: {e}")
        return {"status": "unhealthy", "latency_ms": _elapsed_ms(started), "error": str(e)}
    return {"status": "healthy", "latency_ms": _elapsed_ms(started)}


async def check_cache() -> Dict[str, Any]:
    """Redis only speeds up reads, so a failure is "degraded" at worst"""
    if not settings.CACHE_ENABLED:
        return {"status": "disabled"}

    started = time.perf_counter()
    if await cache_service.ping():
        return {"status": "healthy", "latency_ms": _elapsed_ms(started)}
    logger.warning("[HealthCheck] Redis unreachable, reads are served uncached")
    return {"status": "degraded", "latency_ms": _elapsed_ms(started)}


@router.get("/live")
async def liveness_check():
    return {"status": "alive", "timestamp": datetime.utcnow().isoformat(), "app": settings.APP_NAME}


@router.get("/ready")
async def readiness_check():
    database, cache = await asyncio.gather(check_database(), check_cache())
    ready = database["status"] == "healthy"

    body = {
        "status": "ready" if ready else "not_ready",
        "timestamp": datetime.utcnow().isoformat(),
        "environment": settings.ENVIRONMENT,
        "checks": {"database": database, "cache": cache},
    }
    if not ready:
        logger.warning(f"[HealthCheck] Not ready: {body['checks']}")
        return JSONResponse(status_code=503, content=body)
    return body
