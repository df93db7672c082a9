"""Shared fixtures: in-memory store, frozen clock, mock mailer.

All tests run WITHOUT network access.
"""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from tenacity import wait_none

from src.services.clock import FrozenClock
from src.services.contacts import ContactRegistry
from src.services.dispatcher import AlertDispatcher
from src.services.location_requests import LocationRequestService
from src.services.mailer import EmailService, _MockTransport
from src.services.notifications import NotificationStore
from src.services.storage import InMemoryDocumentStore

T0 = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)


class FlakyTransport(_MockTransport):
    """Mock transport that refuses selected recipients.

    Addresses in ``failing`` raise a retryable connection error; addresses
    in ``broken`` raise a non-retryable error after the message is handed off.
    """

    def __init__(self, failing: set[str] | None = None) -> None:
        super().__init__()
        self.failing = failing or set()
        self.broken: set[str] = set()
        self.attempts: list[str] = []

    async def send(self, to: str, subject: str, html: str) -> str:
        self.attempts.append(to)
        if to in self.failing:
            raise ConnectionRefusedError(f"{to}: mailbox unavailable")
        if to in self.broken:
            raise ValueError(f"{to}: unreadable provider response")
        return await super().send(to, subject, html)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(T0)


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def transport() -> FlakyTransport:
    return FlakyTransport()


@pytest.fixture
def mailer(transport: FlakyTransport) -> EmailService:
    return EmailService(transport=transport, max_attempts=2, wait=wait_none())


@pytest.fixture
def registry(store: InMemoryDocumentStore, clock: FrozenClock) -> ContactRegistry:
    return ContactRegistry(store, clock=clock)


@pytest.fixture
def notifications(store: InMemoryDocumentStore, clock: FrozenClock) -> NotificationStore:
    return NotificationStore(store, clock=clock)


@pytest.fixture
def dispatcher(notifications: NotificationStore, mailer: EmailService) -> AlertDispatcher:
    return AlertDispatcher(notifications, mailer)


@pytest.fixture
def requests_service(
    store: InMemoryDocumentStore,
    registry: ContactRegistry,
    notifications: NotificationStore,
    mailer: EmailService,
    clock: FrozenClock,
) -> LocationRequestService:
    return LocationRequestService(store, registry, notifications, mailer, clock=clock)


@pytest.fixture
async def alice(registry: ContactRegistry):
    """Subject with three emergency contacts."""
    return await registry.create_user(
        "alice@example.com",
        ["bob@example.com", "carol@example.com", "dave@example.com"],
    )
