from __future__ import annotations

import asyncio
import time
from typing import Any, Dict, List

import psutil
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from widgetgate import __version__
from widgetgate.core.clock import utc_now
from widgetgate.core.config import settings
from widgetgate.core.logging import get_structlog_logger
from widgetgate.db.session import get_session
from widgetgate.services.redis import health_check as redis_health_check

logger = get_structlog_logger(__name__)

router = APIRouter(tags=["health"])

CRITICAL_SERVICES = ("database",)


class HealthCheckResponse(BaseModel):
    status: str
    service: str
    environment: str
    version: str
    timestamp: str
    uptime: float
    checks: Dict[str, Dict[str, Any]]
    dependencies: List[str]


async def check_database(session: AsyncSession) -> Dict[str, Any]:
    try:
        loop = asyncio.get_running_loop()
        start = loop.time()
        result = await asyncio.wait_for(
            session.execute(text("SELECT version()")),
            timeout=settings.health_check_timeout,
        )
        row = result.fetchone()
        version = row[0].split()[1] if row and row[0] and len(row[0].split()) > 1 else "unknown"
        return {
            "status": "healthy",
            "response_time_ms": round((loop.time() - start) * 1000, 2),
            "version": version,
        }
    except Exception as e:
        return {"status": "unhealthy", "error": str(e) or e.__class__.__name__}


async def check_redis() -> Dict[str, Any]:
    # Redis only backs the edge throttle; it is not critical for admission.
    try:
        return await asyncio.wait_for(redis_health_check(), timeout=settings.health_check_timeout)
    except Exception as e:
        return {"status": "unhealthy", "error": str(e) or e.__class__.__name__}


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(session: AsyncSession = Depends(get_session)):
    db_result, redis_result = await asyncio.gather(check_database(session), check_redis())
    checks = {"database": db_result, "redis": redis_result}

    overall = "healthy"
    for service, result in checks.items():
        if result.get("status") != "healthy":
            overall = "unhealthy" if service in CRITICAL_SERVICES else "degraded"
            if overall == "unhealthy":
                break

    dependencies = ["postgresql", "redis", "prometheus"]
    if settings.sentry_dsn:
        dependencies.append("sentry")

    response = HealthCheckResponse(
        status=overall,
        service="widgetgate",
        environment=settings.environment,
        version=__version__,
        timestamp=utc_now().isoformat(),
        uptime=round(time.time() - psutil.Process().create_time(), 3),
        checks=checks,
        dependencies=dependencies,
    )

    log = logger.info if overall == "healthy" else logger.warning
    log("health.check", status=overall, checks=checks)

    return response


@router.get("/health/live")
async def liveness_probe():
    return {"status": "alive", "timestamp": utc_now().isoformat()}


@router.get("/health/ready")
async def readiness_probe(session: AsyncSession = Depends(get_session)):
    checks = {
        "database": (await check_database(session)).get("status"),
        "redis": (await check_redis()).get("status"),
    }
    ready = all(checks[name] == "healthy" for name in CRITICAL_SERVICES)

    return JSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if ready else "not_ready",
            "timestamp": utc_now().isoformat(),
            "checks": checks,
        },
    )
