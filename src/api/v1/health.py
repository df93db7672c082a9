"""Liveness and readiness probes.

``/api/health`` answers whenever the process is serving.  ``/api/health/ready``
pings the document store and reports the mailer provider and the state of
the escalation scheduler, including when it last swept.
"""

from __future__ import annotations

import time

import structlog
from fastapi import APIRouter, Request
from pydantic import BaseModel

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

router = APIRouter(prefix="/health", tags=["health"])


class LivenessResponse(BaseModel):
    status: str
    version: str
    storage_backend: str
    uptime_seconds: float


class ReadinessResponse(BaseModel):
    """Overall status plus one entry per component."""

    status: str
    checks: dict[str, str]
    last_sweep_at: str | None = None


async def _store_status(request: Request) -> str:
    store = getattr(request.app.state, "store", None)
    if store is None:
        return "not_initialised"
    try:
        return "ok" if await store.ping() else "unreachable"
    except Exception as exc:
        logger.warning("health.store_ping_failed", error=str(exc))
        return f"error: {exc!s}"


def _scheduler_status(request: Request) -> str:
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        return "disabled"
    return "running" if scheduler.is_running else "stopped"


@router.get("", response_model=LivenessResponse)
async def liveness(request: Request) -> LivenessResponse:
    started: float = getattr(request.app.state, "start_time", time.time())
    return LivenessResponse(
        status="healthy",
        version=request.app.version,
        storage_backend=request.app.state.settings.storage_backend,
        uptime_seconds=round(time.time() - started, 2),
    )


@router.get("/ready", response_model=ReadinessResponse)
async def readiness(request: Request) -> ReadinessResponse:
    mailer = getattr(request.app.state, "mailer", None)
    checks = {
        "store": await _store_status(request),
        "email": f"ok ({mailer.provider})" if mailer is not None else "not_initialised",
        "escalation_scheduler": _scheduler_status(request),
    }
    healthy = (
        checks["store"] == "ok"
        and mailer is not None
        and checks["escalation_scheduler"] in ("running", "disabled")
    )

    scheduler = getattr(request.app.state, "scheduler", None)
    last_run = scheduler.last_run if scheduler is not None else None

    status = "ready" if healthy else "degraded"
    logger.info("health.readiness_check", status=status, checks=checks)
    return ReadinessResponse(
        status=status,
        checks=checks,
        last_sweep_at=last_run.isoformat() if last_run else None,
    )
