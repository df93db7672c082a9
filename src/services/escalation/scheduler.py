"""Recurring background task that drives the escalation sweep.

The scheduler runs one sweep immediately on start and then one every
``sweep_interval_seconds`` (60 s by default) on the application's event
loop.  The period is fixed and independent of how many requests are
pending.  ``run_once`` is the on-demand entry point used by the admin
API.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import TYPE_CHECKING

import structlog

from src.services.clock import Clock, utc_now

if TYPE_CHECKING:
    from src.services.escalation.sweeper import EscalationSweeper, SweepResult

logger = structlog.get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class EscalationScheduler:
    """Periodic runner for :class:`EscalationSweeper`.

    Parameters
    ----------
    sweeper:
        The sweeper to execute each tick.
    interval_seconds:
        Fixed delay between the end of one sweep and the start of the next.
    clock:
        Source of ``last_run`` timestamps.
    sleep:
        Awaitable sleep; tests pass a fake to drive ticks deterministically.
    """

    def __init__(
        self,
        sweeper: EscalationSweeper,
        *,
        interval_seconds: float = 60.0,
        clock: Clock = utc_now,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._sweeper = sweeper
        self._interval = interval_seconds
        self._clock = clock
        self._sleep = sleep
        self._task: asyncio.Task | None = None  # type: ignore[type-arg]
        self._running = False
        self._last_run: datetime | None = None
        self._last_result: SweepResult | None = None
        self._runs = 0

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        """Whether the background loop is currently active."""
        return self._running

    @property
    def last_run(self) -> datetime | None:
        return self._last_run

    @property
    def last_result(self) -> SweepResult | None:
        return self._last_result

    @property
    def runs(self) -> int:
        """Number of sweeps completed since start-up."""
        return self._runs

    @property
    def interval_seconds(self) -> float:
        return self._interval

    # ------------------------------------------------------------------
    # Background loop
    # ------------------------------------------------------------------

    def start(self) -> asyncio.Task:  # type: ignore[type-arg]
        """Schedule :meth:`run_forever` as a task on the running loop."""
        if self._task is not None and not self._task.done():
            return self._task
        self._running = True
        self._task = asyncio.create_task(self.run_forever(), name="escalation-scheduler")
        return self._task

    async def run_forever(self) -> None:
        """Sweep now, then every ``interval_seconds`` until stopped."""
        self._running = True
        logger.info("escalation.scheduler_started", interval_s=self._interval)

        try:
            while self._running:
                await self._safe_run()
                if not self._running:
                    break
                await self._sleep(self._interval)
        except asyncio.CancelledError:
            logger.info("escalation.scheduler_cancelled")
        finally:
            self._running = False
            logger.info("escalation.scheduler_stopped")

    async def _safe_run(self) -> None:
        """Run one tick; a failure is logged and the next tick still runs."""
        try:
            await self.run_once()
        except Exception:
            logger.error("escalation.scheduler_tick_failed", exc_info=True)

    async def run_once(self) -> SweepResult:
        """Run a single sweep and record it."""
        result = await self._sweeper.sweep()
        self._last_run = self._clock()
        self._last_result = result
        self._runs += 1
        return result

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """Stop the loop and wait (up to 10 s) for the task to finish."""
        logger.info("escalation.scheduler_stopping")
        self._running = False

        if self._task is not None:
            self._task.cancel()
            try:
                await asyncio.wait_for(self._task, timeout=10.0)
            except (asyncio.CancelledError, TimeoutError):
                pass
            self._task = None
