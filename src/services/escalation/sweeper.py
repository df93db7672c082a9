"""Timeout sweep: find expired PENDING requests and escalate them.

For each expired request, independently:

1. transition PENDING -> TIMEOUT (``responded_at = now``);
2. read the subject's *current* emergency contacts;
3. skip the broadcast if the subject is gone or has no contacts (the
   timeout still stands);
4. otherwise broadcast ``AUTO_SOS`` to every current contact.

A failure while processing one request is recorded and the sweep moves
on.  A failure of the sweep itself (e.g. the expiry query) is logged and
returned in the result; :meth:`EscalationSweeper.sweep` never raises.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import structlog

from src.models.enums import NotificationType
from src.models.location_request import LocationRequest
from src.services.clock import Clock, utc_now
from src.services.contacts import ContactRegistry
from src.services.dispatcher import AlertDispatcher
from src.services.errors import RequestAlreadyResolvedError
from src.services.location_requests import LocationRequestService
from src.services.sweep_lock import SweepLock

logger = structlog.get_logger(__name__)


@dataclass(slots=True)
class SweepResult:
    """Outcome of one sweep run."""

    started_at: datetime
    finished_at: datetime | None = None
    expired_found: int = 0
    timed_out: list[str] = field(default_factory=list)
    escalated: list[dict[str, Any]] = field(default_factory=list)
    skipped: list[dict[str, str]] = field(default_factory=list)
    already_resolved: list[str] = field(default_factory=list)
    errors: list[dict[str, str]] = field(default_factory=list)
    error: str | None = None
    lock_held_elsewhere: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "startedAt": self.started_at.isoformat(),
            "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
            "expiredFound": self.expired_found,
            "timedOut": self.timed_out,
            "escalated": self.escalated,
            "skipped": self.skipped,
            "alreadyResolved": self.already_resolved,
            "errors": self.errors,
            "error": self.error,
            "lockHeldElsewhere": self.lock_held_elsewhere,
        }


class EscalationSweeper:
    """Runs one timeout-and-escalate pass over expired requests."""

    def __init__(
        self,
        requests: LocationRequestService,
        registry: ContactRegistry,
        dispatcher: AlertDispatcher,
        *,
        lock: SweepLock | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._requests = requests
        self._registry = registry
        self._dispatcher = dispatcher
        self._lock = lock
        self._clock = clock

    async def sweep(self, now: datetime | None = None) -> SweepResult:
        now = now or self._clock()
        result = SweepResult(started_at=now)

        token: str | None = None
        if self._lock is not None:
            token = await self._lock.acquire()
            if token is None:
                logger.info("escalation.sweep_skipped_lock_held")
                result.lock_held_elsewhere = True
                result.finished_at = self._clock()
                return result

        try:
            expired = await self._requests.find_expired(now)
            result.expired_found = len(expired)
            if expired:
                logger.info("escalation.expired_found", count=len(expired))
            for request in expired:
                await self._process(request, now, result)
        except Exception as exc:
            logger.error("escalation.sweep_failed", exc_info=True)
            result.error = str(exc)
        finally:
            if token is not None and self._lock is not None:
                await self._lock.release(token)

        result.finished_at = self._clock()
        logger.info(
            "escalation.sweep_complete",
            expired=result.expired_found,
            timed_out=len(result.timed_out),
            escalated=len(result.escalated),
            skipped=len(result.skipped),
            errors=len(result.errors),
        )
        return result

    async def _process(self, request: LocationRequest, now: datetime, result: SweepResult) -> None:
        log = logger.bind(request_id=request.request_id, subject=request.user_email)
        try:
            try:
                timed_out = await self._requests.timeout_request(request.request_id, now)
            except RequestAlreadyResolvedError as exc:
                # Subject answered between the query and the write
                log.info("escalation.already_resolved", status=exc.status)
                result.already_resolved.append(request.request_id)
                return
            result.timed_out.append(timed_out.request_id)

            user = await self._registry.get_user(timed_out.user_email)
            if user is None or not user.emergency_contacts:
                reason = "user_not_found" if user is None else "no_contacts"
                log.warning("escalation.broadcast_skipped", reason=reason)
                result.skipped.append({"requestId": timed_out.request_id, "reason": reason})
                return

            broadcast = await self._dispatcher.broadcast(
                NotificationType.AUTO_SOS,
                user.emergency_contacts,
                {
                    "userEmail": timed_out.user_email,
                    "requestId": timed_out.request_id,
                    "requestedAt": timed_out.created_at,
                    "expiredAt": timed_out.expires_at,
                    "triggeredAt": now,
                    "originalRequester": timed_out.receiver_email,
                },
            )
            result.escalated.append(
                {
                    "requestId": timed_out.request_id,
                    "total": broadcast.total,
                    "successful": len(broadcast.successful),
                    "failed": len(broadcast.failed),
                    "outcome": broadcast.outcome.value,
                }
            )
            if broadcast.failed:
                log.warning("escalation.partial_delivery", failed=[f.email for f in broadcast.failed])
        except Exception as exc:
            log.error("escalation.request_failed", exc_info=True)
            result.errors.append({"requestId": request.request_id, "error": str(exc)})
