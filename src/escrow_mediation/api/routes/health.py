"""Liveness probe for load balancers and container orchestration.

Reports "degraded" rather than failing the request, so the probe itself
never masks which dependency is down.
"""

from __future__ import annotations

from fastapi import APIRouter
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from escrow_mediation.config import get_settings
from escrow_mediation.infrastructure.database.engine import get_session_factory
from escrow_mediation.infrastructure.redis_client import redis_status as check_redis
from escrow_mediation.logging_config import get_logger
from escrow_mediation.schemas.account import HealthResponse

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)


async def _database_status() -> str:
    try:
        async with get_session_factory()() as session:
            await session.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as exc:
        logger.error("health.db_check_failed", error=str(exc))
        return f"unhealthy: {exc}"
    return "healthy"


@router.get("/health", response_model=HealthResponse, summary="Service and dependency status")
async def health_check() -> HealthResponse:
    database = await _database_status()
    redis = await check_redis() if get_settings().presence_backend == "redis" else "disabled"
    ok = database == "healthy" and redis in ("healthy", "disabled")
    return HealthResponse(status="ok" if ok else "degraded", database=database, redis=redis)
