"""Multi-recipient alert fan-out.

For every recipient the dispatcher performs two independent effects:

1. persist a :class:`Notification` in the recipient's mailbox, and
2. send the alert email.

A failure in either effect is recorded against that recipient and never
stops the remaining recipients from being processed.  A recipient counts
as *successful* only when both effects succeeded.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

import structlog

from src.models.enums import BroadcastOutcome, DeliveryStage, NotificationType
from src.services.email_templates import render_alert
from src.services.mailer import EmailService
from src.services.notifications import NotificationStore

logger = structlog.get_logger(__name__)


@dataclass(slots=True)
class RecipientOutcome:
    email: str
    notification_id: str | None = None
    stage: DeliveryStage | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"email": self.email}
        if self.notification_id is not None:
            out["notificationId"] = self.notification_id
        if self.stage is not None:
            out["stage"] = self.stage.value
        if self.error is not None:
            out["error"] = self.error
        return out


@dataclass(slots=True)
class BroadcastResult:
    alert_type: NotificationType
    successful: list[RecipientOutcome] = field(default_factory=list)
    failed: list[RecipientOutcome] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.successful) + len(self.failed)

    @property
    def outcome(self) -> BroadcastOutcome:
        if not self.failed:
            return BroadcastOutcome.SUCCESS
        if not self.successful:
            return BroadcastOutcome.FAILED
        return BroadcastOutcome.PARTIAL

    def to_dict(self) -> dict[str, Any]:
        return {
            "successful": [r.to_dict() for r in self.successful],
            "failed": [r.to_dict() for r in self.failed],
        }


class AlertDispatcher:
    """Fans an alert out to a list of recipients with per-recipient isolation."""

    def __init__(self, notifications: NotificationStore, mailer: EmailService) -> None:
        self._notifications = notifications
        self._mailer = mailer

    async def broadcast(
        self,
        alert_type: NotificationType,
        recipients: Sequence[str],
        payload: dict[str, Any],
    ) -> BroadcastResult:
        """Deliver *alert_type* to every address in *recipients*.

        *payload* is stored as the notification ``data`` and feeds the
        message and email templates for the alert type.
        """
        result = BroadcastResult(alert_type=alert_type)
        for recipient in recipients:
            outcome = await self._deliver(alert_type, recipient, payload)
            (result.successful if outcome.ok else result.failed).append(outcome)

        logger.info(
            "dispatcher.broadcast_complete",
            alert_type=alert_type,
            total=result.total,
            successful=len(result.successful),
            failed=len(result.failed),
            outcome=result.outcome,
        )
        return result

    async def _deliver(
        self,
        alert_type: NotificationType,
        recipient: str,
        payload: dict[str, Any],
    ) -> RecipientOutcome:
        outcome = RecipientOutcome(email=recipient)
        try:
            message, email = render_alert(alert_type, recipient, payload)
        except Exception as exc:
            logger.error("dispatcher.render_failed", recipient=recipient, alert_type=alert_type, exc_info=True)
            outcome.stage = DeliveryStage.NOTIFICATION
            outcome.error = str(exc)
            return outcome

        # Both effects are attempted; the first failure is the one reported
        try:
            notification = await self._notifications.create(recipient, alert_type, message, payload)
            outcome.notification_id = notification.notification_id
        except Exception as exc:
            logger.error("dispatcher.recipient_failed", recipient=recipient, stage="notification", exc_info=True)
            outcome.stage = DeliveryStage.NOTIFICATION
            outcome.error = str(exc)

        try:
            await self._mailer.send_email(recipient, email.subject, email.html)
        except Exception as exc:
            logger.error("dispatcher.recipient_failed", recipient=recipient, stage="email", error=str(exc))
            if outcome.error is None:
                outcome.stage = DeliveryStage.EMAIL
                outcome.error = str(exc)

        return outcome
