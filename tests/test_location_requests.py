"""Tests for the location request state machine.

Covers creation checks, accept/deny/timeout transitions, terminal-state
immutability, the live re-authorization on accept, and the one-PENDING-
per-subject rule under concurrent creates.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from src.models.enums import NotificationType, RequestStatus
from src.models.location_request import REQUEST_TIMEOUT
from src.services.contacts import ContactRegistry
from src.services.errors import (
    NoContactsConfiguredError,
    RequestAlreadyPendingError,
    RequestAlreadyResolvedError,
    RequesterNoLongerAuthorizedError,
    RequestNotFoundError,
    UnauthorizedRequesterError,
    UserNotFoundError,
)
from src.services.location_requests import LocationRequestService
from src.services.notifications import NotificationStore
from src.services.storage import LOCATION_REQUESTS, InMemoryDocumentStore


# -----------------------------------------------------------------------
# create_request
# -----------------------------------------------------------------------


class TestCreateRequest:
    async def test_creates_pending_with_thirty_minute_window(
        self, requests_service: LocationRequestService, alice, clock
    ) -> None:
        event = await requests_service.create_request("alice@example.com", "bob@example.com")
        request = event.request

        assert request.status == RequestStatus.PENDING
        assert request.created_at == clock()
        assert request.expires_at - request.created_at == REQUEST_TIMEOUT == timedelta(minutes=30)
        assert request.receiver_email == "bob@example.com"

    async def test_notifies_and_emails_subject(
        self,
        requests_service: LocationRequestService,
        notifications: NotificationStore,
        mailer,
        alice,
    ) -> None:
        event = await requests_service.create_request("alice@example.com", "Bob@Example.com")

        assert event.email_sent is True
        unread = await notifications.list_unread("alice@example.com")
        assert len(unread) == 1
        assert unread[0].type == NotificationType.LOCATION_REQUEST
        assert unread[0].notification_id == event.notification_id
        assert unread[0].data["requestId"] == event.request.request_id

        assert [m.to for m in mailer.outbox] == ["alice@example.com"]
        assert mailer.outbox[0].subject == "Location Request from Emergency Contact"

    async def test_email_failure_keeps_request(
        self,
        requests_service: LocationRequestService,
        transport,
        store: InMemoryDocumentStore,
        alice,
    ) -> None:
        transport.failing.add("alice@example.com")

        event = await requests_service.create_request("alice@example.com", "bob@example.com")

        assert event.email_sent is False
        assert store.count(LOCATION_REQUESTS) == 1

    async def test_unexpected_send_error_keeps_request(
        self,
        requests_service: LocationRequestService,
        notifications: NotificationStore,
        transport,
        alice,
    ) -> None:
        transport.broken.add("alice@example.com")

        event = await requests_service.create_request("alice@example.com", "bob@example.com")

        assert event.email_sent is False
        assert transport.attempts == ["alice@example.com"]
        assert len(await notifications.list_unread("alice@example.com")) == 1
        with pytest.raises(RequestAlreadyPendingError) as exc_info:
            await requests_service.create_request("alice@example.com", "bob@example.com")
        assert exc_info.value.data["requestId"] == event.request.request_id

    async def test_unknown_subject(self, requests_service: LocationRequestService) -> None:
        with pytest.raises(UserNotFoundError):
            await requests_service.create_request("ghost@example.com", "bob@example.com")

    async def test_subject_without_contacts(
        self, requests_service: LocationRequestService, registry: ContactRegistry
    ) -> None:
        await registry.create_user("lonely@example.com")
        with pytest.raises(NoContactsConfiguredError):
            await requests_service.create_request("lonely@example.com", "bob@example.com")

    async def test_requester_must_be_contact(
        self, requests_service: LocationRequestService, store: InMemoryDocumentStore, alice
    ) -> None:
        with pytest.raises(UnauthorizedRequesterError):
            await requests_service.create_request("alice@example.com", "mallory@example.com")
        assert store.count(LOCATION_REQUESTS) == 0

    async def test_second_pending_rejected(self, requests_service: LocationRequestService, alice) -> None:
        first = await requests_service.create_request("alice@example.com", "bob@example.com")

        with pytest.raises(RequestAlreadyPendingError) as exc_info:
            await requests_service.create_request("alice@example.com", "carol@example.com")

        assert exc_info.value.data["requestId"] == first.request.request_id
        assert exc_info.value.data["expiresAt"] == first.request.expires_at.isoformat()

    async def test_concurrent_creates_leave_one_pending(
        self, requests_service: LocationRequestService, store: InMemoryDocumentStore, alice
    ) -> None:
        results = await asyncio.gather(
            requests_service.create_request("alice@example.com", "bob@example.com"),
            requests_service.create_request("alice@example.com", "carol@example.com"),
            requests_service.create_request("alice@example.com", "dave@example.com"),
            return_exceptions=True,
        )

        created = [r for r in results if not isinstance(r, Exception)]
        rejected = [r for r in results if isinstance(r, RequestAlreadyPendingError)]
        assert len(created) == 1
        assert len(rejected) == 2
        pending = await store.find_many(LOCATION_REQUESTS, {"status": "PENDING"})
        assert len(pending) == 1

    async def test_new_request_allowed_after_resolution(
        self, requests_service: LocationRequestService, alice
    ) -> None:
        first = await requests_service.create_request("alice@example.com", "bob@example.com")
        await requests_service.deny_request(first.request.request_id)

        second = await requests_service.create_request("alice@example.com", "bob@example.com")
        assert second.request.request_id != first.request.request_id


# -----------------------------------------------------------------------
# accept / deny
# -----------------------------------------------------------------------


class TestAcceptDeny:
    async def test_accept_shares_location_with_requester(
        self,
        requests_service: LocationRequestService,
        notifications: NotificationStore,
        mailer,
        alice,
        clock,
    ) -> None:
        created = await requests_service.create_request("alice@example.com", "bob@example.com")
        clock.advance(timedelta(minutes=5))

        event = await requests_service.accept_request(created.request.request_id, 12.97, 77.59, 15.0)

        assert event.request.status == RequestStatus.ACCEPTED
        assert event.request.responded_at == clock()
        assert event.request.location is not None
        assert event.request.location.latitude == 12.97
        assert event.request.location.accuracy == 15.0

        shared = await notifications.list_unread("bob@example.com")
        assert [n.type for n in shared] == [NotificationType.LOCATION_SHARED]
        assert mailer.outbox[-1].to == "bob@example.com"
        assert "https://www.google.com/maps?q=12.97,77.59" in mailer.outbox[-1].html

    async def test_accept_survives_unexpected_send_error(
        self,
        requests_service: LocationRequestService,
        notifications: NotificationStore,
        transport,
        alice,
    ) -> None:
        created = await requests_service.create_request("alice@example.com", "bob@example.com")
        transport.broken.add("bob@example.com")

        event = await requests_service.accept_request(created.request.request_id, 12.97, 77.59)

        assert event.request.status == RequestStatus.ACCEPTED
        assert event.email_sent is False
        stored = await requests_service.get_request(created.request.request_id)
        assert stored.status == RequestStatus.ACCEPTED
        shared = await notifications.list_unread("bob@example.com")
        assert [n.type for n in shared] == [NotificationType.LOCATION_SHARED]

    async def test_accept_by_removed_contact_denies(
        self,
        requests_service: LocationRequestService,
        registry: ContactRegistry,
        alice,
    ) -> None:
        created = await requests_service.create_request("alice@example.com", "bob@example.com")
        await registry.remove_contact("alice@example.com", "bob@example.com")

        with pytest.raises(RequesterNoLongerAuthorizedError) as exc_info:
            await requests_service.accept_request(created.request.request_id, 1.0, 2.0)

        assert exc_info.value.status_code == 403
        stored = await requests_service.get_request(created.request.request_id)
        assert stored.status == RequestStatus.DENIED
        assert stored.location is None

    async def test_deny(
        self,
        requests_service: LocationRequestService,
        notifications: NotificationStore,
        alice,
    ) -> None:
        created = await requests_service.create_request("alice@example.com", "bob@example.com")

        event = await requests_service.deny_request(created.request.request_id)

        assert event.request.status == RequestStatus.DENIED
        assert event.email_sent is True
        denied = await notifications.list_unread("bob@example.com")
        assert [n.type for n in denied] == [NotificationType.LOCATION_DENIED]

    async def test_unknown_request(self, requests_service: LocationRequestService) -> None:
        with pytest.raises(RequestNotFoundError):
            await requests_service.accept_request("missing", 0.0, 0.0)
        with pytest.raises(RequestNotFoundError):
            await requests_service.deny_request("missing")


# -----------------------------------------------------------------------
# Terminal states
# -----------------------------------------------------------------------


class TestTerminalStates:
    async def test_accept_after_deny(self, requests_service: LocationRequestService, alice, clock) -> None:
        created = await requests_service.create_request("alice@example.com", "bob@example.com")
        await requests_service.deny_request(created.request.request_id)
        before = await requests_service.get_request(created.request.request_id)
        clock.advance(timedelta(minutes=1))

        with pytest.raises(RequestAlreadyResolvedError) as exc_info:
            await requests_service.accept_request(created.request.request_id, 1.0, 1.0)
        assert exc_info.value.status == "DENIED"

        after = await requests_service.get_request(created.request.request_id)
        assert after.responded_at == before.responded_at
        assert after.location is None
        assert after == before

    async def test_deny_after_accept(self, requests_service: LocationRequestService, alice, clock) -> None:
        created = await requests_service.create_request("alice@example.com", "bob@example.com")
        await requests_service.accept_request(created.request.request_id, 1.0, 1.0)
        before = await requests_service.get_request(created.request.request_id)
        clock.advance(timedelta(minutes=1))

        with pytest.raises(RequestAlreadyResolvedError) as exc_info:
            await requests_service.deny_request(created.request.request_id)
        assert exc_info.value.status == "ACCEPTED"

        after = await requests_service.get_request(created.request.request_id)
        assert after.responded_at == before.responded_at
        assert after.location == before.location
        assert after == before

    async def test_timeout_after_accept(self, requests_service: LocationRequestService, alice, clock) -> None:
        created = await requests_service.create_request("alice@example.com", "bob@example.com")
        await requests_service.accept_request(created.request.request_id, 1.0, 1.0)
        before = await requests_service.get_request(created.request.request_id)
        clock.advance(timedelta(minutes=31))

        with pytest.raises(RequestAlreadyResolvedError):
            await requests_service.timeout_request(created.request.request_id)

        stored = await requests_service.get_request(created.request.request_id)
        assert stored.status == RequestStatus.ACCEPTED
        assert stored.responded_at == before.responded_at
        assert stored.location == before.location
        assert stored == before

    async def test_accept_after_timeout(self, requests_service: LocationRequestService, alice, clock) -> None:
        created = await requests_service.create_request("alice@example.com", "bob@example.com")
        await requests_service.timeout_request(created.request.request_id)
        before = await requests_service.get_request(created.request.request_id)
        clock.advance(timedelta(minutes=1))

        with pytest.raises(RequestAlreadyResolvedError) as exc_info:
            await requests_service.accept_request(created.request.request_id, 1.0, 1.0)
        assert exc_info.value.status == "TIMEOUT"

        after = await requests_service.get_request(created.request.request_id)
        assert after.responded_at == before.responded_at
        assert after.location is None
        assert after == before

    async def test_racing_accept_and_deny_commit_once(
        self, requests_service: LocationRequestService, alice
    ) -> None:
        created = await requests_service.create_request("alice@example.com", "bob@example.com")
        request_id = created.request.request_id

        results = await asyncio.gather(
            requests_service.accept_request(request_id, 1.0, 1.0),
            requests_service.deny_request(request_id),
            return_exceptions=True,
        )

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, RequestAlreadyResolvedError)]
        assert len(winners) == 1
        assert len(losers) == 1
        stored = await requests_service.get_request(request_id)
        assert stored.status == winners[0].request.status


# -----------------------------------------------------------------------
# Expiry query
# -----------------------------------------------------------------------


class TestFindExpired:
    async def test_not_expired_at_exact_deadline(
        self, requests_service: LocationRequestService, alice, clock
    ) -> None:
        created = await requests_service.create_request("alice@example.com", "bob@example.com")
        assert await requests_service.find_expired(created.request.expires_at) == []

    async def test_expired_just_after_deadline(
        self, requests_service: LocationRequestService, alice, clock
    ) -> None:
        created = await requests_service.create_request("alice@example.com", "bob@example.com")
        expired = await requests_service.find_expired(created.request.expires_at + timedelta(seconds=1))
        assert [r.request_id for r in expired] == [created.request.request_id]
        assert created.request.is_expired(created.request.expires_at + timedelta(seconds=1))
        assert not created.request.is_expired(created.request.expires_at)

    async def test_resolved_requests_not_returned(
        self, requests_service: LocationRequestService, alice, clock
    ) -> None:
        created = await requests_service.create_request("alice@example.com", "bob@example.com")
        await requests_service.deny_request(created.request.request_id)
        assert await requests_service.find_expired(clock() + timedelta(hours=1)) == []
