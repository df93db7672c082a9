"""Tests for the alert dispatcher fan-out and per-recipient isolation."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from src.models.enums import BroadcastOutcome, DeliveryStage, NotificationType
from src.services.dispatcher import AlertDispatcher, BroadcastResult, RecipientOutcome
from src.services.notifications import NotificationStore

RECIPIENTS = ["bob@example.com", "carol@example.com", "dave@example.com"]


@pytest.fixture
def sos_payload(clock) -> dict:
    return {"latitude": 28.61, "longitude": 77.21, "userEmail": "alice@example.com", "timestamp": clock()}


class TestBroadcast:
    async def test_all_recipients_succeed(
        self, dispatcher: AlertDispatcher, notifications: NotificationStore, mailer, sos_payload
    ) -> None:
        result = await dispatcher.broadcast(NotificationType.SOS, RECIPIENTS, sos_payload)

        assert result.total == 3
        assert result.outcome == BroadcastOutcome.SUCCESS
        assert [r.email for r in result.successful] == RECIPIENTS
        assert all(r.notification_id for r in result.successful)
        assert sorted(m.to for m in mailer.outbox) == sorted(RECIPIENTS)
        assert mailer.outbox[0].subject == "EMERGENCY SOS ALERT"

        for recipient in RECIPIENTS:
            unread = await notifications.list_unread(recipient)
            assert len(unread) == 1
            assert unread[0].message == "EMERGENCY SOS from alice@example.com"

    async def test_one_email_failure_is_isolated(
        self, dispatcher: AlertDispatcher, notifications: NotificationStore, transport, sos_payload
    ) -> None:
        transport.failing.add("carol@example.com")

        result = await dispatcher.broadcast(NotificationType.SOS, RECIPIENTS, sos_payload)

        assert result.outcome == BroadcastOutcome.PARTIAL
        assert [r.email for r in result.successful] == ["bob@example.com", "dave@example.com"]
        assert len(result.failed) == 1
        failure = result.failed[0]
        assert failure.email == "carol@example.com"
        assert failure.stage == DeliveryStage.EMAIL
        assert "carol@example.com" in failure.error
        # The mailbox entry was still written for the failed recipient
        assert failure.notification_id is not None
        assert len(await notifications.list_unread("carol@example.com")) == 1

    async def test_email_retried_before_failing(
        self, dispatcher: AlertDispatcher, transport, sos_payload
    ) -> None:
        transport.failing.add("bob@example.com")

        await dispatcher.broadcast(NotificationType.SOS, ["bob@example.com"], sos_payload)

        assert transport.attempts.count("bob@example.com") == 2

    async def test_notification_failure_still_sends_email(self, mailer, sos_payload) -> None:
        notifications = AsyncMock(spec=NotificationStore)
        notifications.create.side_effect = RuntimeError("store down")
        dispatcher = AlertDispatcher(notifications, mailer)

        result = await dispatcher.broadcast(NotificationType.SOS, ["bob@example.com"], sos_payload)

        assert result.outcome == BroadcastOutcome.FAILED
        assert result.failed[0].stage == DeliveryStage.NOTIFICATION
        assert result.failed[0].error == "store down"
        assert [m.to for m in mailer.outbox] == ["bob@example.com"]

    async def test_all_fail(self, dispatcher: AlertDispatcher, transport, sos_payload) -> None:
        transport.failing.update(RECIPIENTS)

        result = await dispatcher.broadcast(NotificationType.SOS, RECIPIENTS, sos_payload)

        assert result.outcome == BroadcastOutcome.FAILED
        assert result.successful == []
        assert len(result.failed) == 3

    async def test_empty_recipient_list(self, dispatcher: AlertDispatcher, sos_payload) -> None:
        result = await dispatcher.broadcast(NotificationType.SOS, [], sos_payload)
        assert result.total == 0
        assert result.outcome == BroadcastOutcome.SUCCESS

    async def test_auto_sos_notes_original_requester(self, dispatcher: AlertDispatcher, mailer, clock) -> None:
        payload = {
            "userEmail": "alice@example.com",
            "requestId": "r1",
            "requestedAt": clock(),
            "expiredAt": clock(),
            "triggeredAt": clock(),
            "originalRequester": "bob@example.com",
        }

        await dispatcher.broadcast(NotificationType.AUTO_SOS, ["bob@example.com", "carol@example.com"], payload)

        by_recipient = {m.to: m for m in mailer.outbox}
        assert by_recipient["bob@example.com"].subject == "AUTOMATIC SOS ALERT - No Response"
        assert "original location request was made by" not in by_recipient["bob@example.com"].html
        assert "original location request was made by bob@example.com" in by_recipient["carol@example.com"].html

    async def test_non_broadcast_type_fails_per_recipient(
        self, dispatcher: AlertDispatcher, sos_payload
    ) -> None:
        result = await dispatcher.broadcast(NotificationType.LOCATION_DENIED, ["bob@example.com"], sos_payload)
        assert result.failed[0].stage == DeliveryStage.NOTIFICATION


class TestBroadcastResult:
    def test_to_dict(self) -> None:
        result = BroadcastResult(
            alert_type=NotificationType.SOS,
            successful=[RecipientOutcome(email="a@x.io", notification_id="n1")],
            failed=[
                RecipientOutcome(
                    email="b@x.io",
                    notification_id="n2",
                    stage=DeliveryStage.EMAIL,
                    error="boom",
                )
            ],
        )
        assert result.to_dict() == {
            "successful": [{"email": "a@x.io", "notificationId": "n1"}],
            "failed": [{"email": "b@x.io", "notificationId": "n2", "stage": "email", "error": "boom"}],
        }
        assert result.outcome == BroadcastOutcome.PARTIAL
