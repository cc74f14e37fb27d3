"""Health check endpoints.

``GET /health``      liveness probe, no dependency checks.
``GET /api/health``  database and Redis connectivity.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import redis.asyncio as aioredis
from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text

from skybridge.config.settings import get_settings
from skybridge.core.database import get_session_factory

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


async def _check_database() -> str:
    try:
        async with get_session_factory()() as session:
            await session.execute(text("SELECT 1"))
        return "ok"
    except Exception:
        logger.exception("Health check: database unreachable")
        return "error"


async def _check_redis() -> str:
    settings = get_settings()
    try:
        client: aioredis.Redis = aioredis.from_url(
            settings.redis_url,
            socket_connect_timeout=2,
            socket_timeout=2,
        )
        await client.ping()
        await client.aclose()
        return "ok"
    except Exception:
        logger.exception("Health check: Redis unreachable")
        return "error"


@router.get("/health")
async def liveness() -> dict[str, Any]:
    return {"status": "ok", "service": get_settings().app_name}


@router.get("/api/health")
async def system_health() -> JSONResponse:
    """Report dependency connectivity.  Always HTTP 200; ``status`` is
    ``"degraded"`` when any check fails."""
    database, redis_status = await asyncio.gather(_check_database(), _check_redis())
    checks = {"database": database, "redis": redis_status}
    overall = "ok" if all(value == "ok" for value in checks.values()) else "degraded"
    return JSONResponse({"status": overall, "checks": checks})
