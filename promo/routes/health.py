# promo/routes/health.py
from __future__ import annotations

import time
from datetime import datetime
from typing import Dict

import psutil
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from promo.core.config import settings
from promo.core.logging import get_structlog_logger
from promo.db.session import get_session

logger = get_structlog_logger()

router = APIRouter(tags=["health"])


class HealthCheckResponse(BaseModel):
    status: str
    service: str
    environment: str
    version: str
    timestamp: str
    uptime: float
    checks: Dict[str, Dict[str, str]]


async def check_database(session: AsyncSession) -> Dict[str, str]:
    """Check database connectivity."""
    start_time = time.perf_counter()
    try:
        result = await session.execute(text("SELECT version()"))
        row = result.fetchone()
    except Exception as e:
        return {"status": "unhealthy", "error": str(e)}

    db_version = row[0] if row else "unknown"
    return {
        "status": "healthy",
        "response_time_ms": f"{(time.perf_counter() - start_time) * 1000:.2f}",
        "database": "postgresql",
        "version": db_version.split()[0] if db_version != "unknown" else "unknown",
    }


@router.get("/health", response_model=HealthCheckResponse, status_code=status.HTTP_200_OK)
async def health_check(session: AsyncSession = Depends(get_session)):
    checks = {"database": await check_database(session)}
    overall_status = "healthy" if checks["database"]["status"] == "healthy" else "unhealthy"

    process = psutil.Process()
    response = HealthCheckResponse(
        status=overall_status,
        service="promo_api",
        environment=settings.environment,
        version="1.0.0",
        timestamp=datetime.utcnow().isoformat() + "Z",
        uptime=time.time() - process.create_time(),
        checks=checks,
    )

    if overall_status == "healthy":
        logger.info("health.check", status=overall_status, checks=checks)
    else:
        logger.warning("health.check", status=overall_status, checks=checks)
    return response


@router.get("/health/live", status_code=status.HTTP_200_OK)
async def liveness_probe():
    """Simple liveness probe for Kubernetes/containers."""
    return {
        "status": "alive",
        "timestamp": datetime.utcnow().isoformat() + "Z",
    }


@router.get("/health/ready")
async def readiness_probe(session: AsyncSession = Depends(get_session)):
    db = await check_database(session)
    is_ready = db["status"] == "healthy"
    return JSONResponse(
        status_code=status.HTTP_200_OK if is_ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if is_ready else "not_ready",
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "checks": {"database": db["status"]},
        },
    )
