"""
Amora — Health checks

``/health`` answers as long as the process serves requests.  ``/health/deep``
also round-trips the database and, when the change bus is Redis-backed,
pings Redis.  A failed dependency reports ``degraded`` rather than an error
status so that load balancers can tell the two apart.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from amora.api.deps import Services, get_services
from amora.services.change_bus import RedisChangeBus

logger = structlog.get_logger("amora.api.health")

router = APIRouter()


@router.get("/health")
async def liveness() -> dict:
    return {"status": "healthy"}


@router.get("/health/deep")
async def readiness(services: Services = Depends(get_services)) -> dict:
    report: dict = {"status": "healthy", "database": "connected", "redis": "not_configured"}

    try:
        async with services.session_factory() as session:
            await session.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as exc:
        logger.error("health_database_unreachable", error=str(exc))
        report["database"] = f"error: {exc}"
        report["status"] = "degraded"

    if isinstance(services.bus, RedisChangeBus):
        try:
            await services.bus.client.ping()
        except (RedisError, OSError) as exc:
            logger.error("health_redis_unreachable", error=str(exc))
            report["redis"] = f"error: {exc}"
            report["status"] = "degraded"
        else:
            report["redis"] = "connected"
        if services.bus.failure is not None:
            report["redis"] = f"error: {services.bus.failure}"
            report["status"] = "degraded"

    return report
