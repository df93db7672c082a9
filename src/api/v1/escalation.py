"""Admin endpoints for the escalation sweep.

``POST /api/admin/escalation/sweep`` runs one sweep immediately (useful
when the in-process scheduler is disabled and an external cron drives
the sweep instead).  ``GET /api/admin/escalation/status`` reports the
scheduler state and the last sweep result.

Both require the ``X-Admin-API-Key`` header.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from src.middleware.auth import require_admin_api_key

logger = structlog.get_logger(__name__)

router = APIRouter(
    prefix="/admin/escalation",
    tags=["admin"],
    dependencies=[Depends(require_admin_api_key)],
)


class SweepResponse(BaseModel):
    success: bool
    message: str
    result: dict[str, Any]


class SchedulerStatusResponse(BaseModel):
    scheduler_running: bool
    interval_seconds: float | None = None
    runs: int = 0
    last_run: str | None = None
    last_result: dict[str, Any] | None = None


@router.post("/sweep", response_model=SweepResponse)
async def run_sweep(request: Request) -> SweepResponse:
    """Time out expired requests and escalate them now."""
    scheduler = getattr(request.app.state, "scheduler", None)
    sweeper = getattr(request.app.state, "sweeper", None)
    if scheduler is None and sweeper is None:
        raise HTTPException(status_code=503, detail="Escalation sweeper not initialised.")

    logger.info("api.admin.escalation.sweep_triggered")
    result = await scheduler.run_once() if scheduler is not None else await sweeper.sweep()

    if result.lock_held_elsewhere:
        message = "Sweep skipped: another worker holds the sweep lock."
    else:
        message = (
            f"Sweep completed. {result.expired_found} expired, {len(result.escalated)} escalated, "
            f"{len(result.skipped)} skipped, {len(result.errors)} errors."
        )
    return SweepResponse(success=result.error is None, message=message, result=result.to_dict())


@router.get("/status", response_model=SchedulerStatusResponse)
async def get_status(request: Request) -> SchedulerStatusResponse:
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        return SchedulerStatusResponse(scheduler_running=False)

    last_result = scheduler.last_result
    return SchedulerStatusResponse(
        scheduler_running=scheduler.is_running,
        interval_seconds=scheduler.interval_seconds,
        runs=scheduler.runs,
        last_run=scheduler.last_run.isoformat() if scheduler.last_run else None,
        last_result=last_result.to_dict() if last_result is not None else None,
    )
