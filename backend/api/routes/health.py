"""Health check endpoints.

Provides:
- Basic liveness probe (/health)
- Dependency check (/health/ready)
- Engine status (/health/status)
"""

import platform
import sys
import time
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import text
import logging

from app.config import get_settings
from app.dependencies import get_scheduler
from workflow.engine import ExecutionScheduler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["health"])

_start_time = time.monotonic()
_start_datetime = datetime.now(timezone.utc).isoformat()


@router.get("", response_model=dict[str, Any])
async def root() -> dict[str, Any]:
    """
    Get API name and version.
    Used as a simple liveness probe.
    """
    settings = get_settings()
    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "ok",
    }


@router.get("/ready", response_model=dict[str, Any])
async def readiness(scheduler: ExecutionScheduler = Depends(get_scheduler)) -> dict[str, Any]:
    """
    Readiness check: the workflow store must answer.
    Returns 503 if it does not.
    """
    checks: dict[str, str] = {}

    try:
        async with scheduler.session_factory() as session:
            await session.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        logger.error("Database health check failed: %s", e)
        checks["database"] = "unavailable"

    checks["workers"] = "running" if scheduler.is_running else "stopped"

    if checks["database"] == "unavailable":
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"status": "unhealthy", "checks": checks},
        )

    return {"status": "healthy", **checks}


@router.get("/status", response_model=dict[str, Any])
async def system_status(scheduler: ExecutionScheduler = Depends(get_scheduler)) -> dict[str, Any]:
    """
    Uptime, versions and worker pool state.
    Intended for monitoring.
    """
    settings = get_settings()
    uptime_seconds = time.monotonic() - _start_time
    hours, remainder = divmod(int(uptime_seconds), 3600)
    minutes, seconds = divmod(remainder, 60)

    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "started_at": _start_datetime,
        "uptime": f"{hours}h {minutes}m {seconds}s",
        "uptime_seconds": round(uptime_seconds, 1),
        "python": {
            "version": sys.version,
            "platform": platform.platform(),
        },
        "engine": {
            "worker_id": scheduler.worker_id,
            "workers": scheduler.pool_size if scheduler.is_running else 0,
            "queue_size": scheduler.queue_size,
            "inflight": scheduler.inflight_count(),
            "node_types": scheduler.registry.list_types(),
        },
    }
