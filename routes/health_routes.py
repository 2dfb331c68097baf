"""
Health check endpoint.

GET /health - pings MongoDB and Redis.
- MongoDB failure → "unhealthy" (503); accounts and challenges live there.
- Redis failure or absence → "degraded" (200); only the resend cooldown
  uses it, and that falls back to MongoDB.
"""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from schemas.dto.responses.common import HealthResponse
from shared.logging import get_logger

log = get_logger(__name__)

router = APIRouter(tags=["health"])


async def _check_mongo(db) -> str:
    try:
        await db.client.admin.command("ping")
    except Exception as e:
        log.error("health_mongo_failed", error=str(e), error_type=type(e).__name__)
        return "error"
    return "ok"


async def _check_redis(redis) -> str:
    if redis is None:
        return "not_configured"
    try:
        await redis.ping()
    except Exception as e:
        log.warning("health_redis_failed", error=str(e), error_type=type(e).__name__)
        return "error"
    return "ok"


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> JSONResponse:
    checks = {
        "mongodb": await _check_mongo(request.app.state.db),
        "redis": await _check_redis(getattr(request.app.state, "redis", None)),
    }

    if checks["mongodb"] != "ok":
        overall = "unhealthy"
    elif checks["redis"] != "ok":
        overall = "degraded"
    else:
        overall = "healthy"

    return JSONResponse(
        status_code=503 if overall == "unhealthy" else 200,
        content=HealthResponse(status=overall, checks=checks).model_dump(),
    )
