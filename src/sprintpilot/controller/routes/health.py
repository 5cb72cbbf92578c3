"""Health check endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from sqlalchemy import text

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])


@router.get("/healthz")
async def healthz() -> dict:
    return {"status": "ok"}


@router.get("/readyz")
async def readyz(request: Request) -> dict:
    """Readiness check: verifies the database and, when configured, Redis."""
    checks = {"database": False}

    try:
        async with request.app.state.session_factory() as session:
            await session.execute(text("SELECT 1"))
            checks["database"] = True
    except Exception as e:
        logger.warning("Database readiness check failed: %s", e)

    redis_client = request.app.state.redis
    if redis_client is not None:
        checks["redis"] = False
        try:
            await redis_client.ping()
            checks["redis"] = True
        except Exception as e:
            logger.warning("Redis readiness check failed: %s", e)

    ready = all(checks.values())
    return {"status": "ready" if ready else "not_ready", "checks": checks}
