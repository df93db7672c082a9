"""Location request state machine.

::

    PENDING --accept--> ACCEPTED
    PENDING --deny----> DENIED
    PENDING --accept by a removed contact--> DENIED
    PENDING --sweep after expires_at--> TIMEOUT

Every transition is a conditional write filtered on ``status == PENDING``
so exactly one of accept/deny/timeout can commit for a request; the
others observe the winner's status and fail with
:class:`RequestAlreadyResolvedError`.

The requester's membership in the subject's emergency-contact list is
re-read from the registry on create and again on accept, never cached
on the request.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

import structlog

from src.models.enums import NotificationType, RequestStatus
from src.models.location_request import LocationRequest, SharedLocation
from src.services.clock import Clock, utc_now
from src.services.contacts import ContactRegistry, normalize_email
from src.services.email_templates import (
    RenderedEmail,
    location_denied_email,
    location_request_email,
    location_shared_email,
)
from src.services.errors import (
    DuplicateKeyError,
    EmailDeliveryError,
    NoContactsConfiguredError,
    RequestAlreadyPendingError,
    RequestAlreadyResolvedError,
    RequesterNoLongerAuthorizedError,
    RequestNotFoundError,
    UnauthorizedRequesterError,
    UserNotFoundError,
)
from src.services.mailer import EmailService
from src.services.notifications import NotificationStore
from src.services.storage import ASCENDING, LOCATION_REQUESTS, DocumentStore

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class RequestEvent:
    """A committed request state plus the side effects it produced."""

    request: LocationRequest
    notification_id: str
    email_sent: bool


class LocationRequestService:
    """Creates location requests and drives them to a terminal state."""

    def __init__(
        self,
        store: DocumentStore,
        registry: ContactRegistry,
        notifications: NotificationStore,
        mailer: EmailService,
        *,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._registry = registry
        self._notifications = notifications
        self._mailer = mailer
        self._clock = clock

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_request(self, request_id: str) -> LocationRequest:
        doc = await self._store.find_one(LOCATION_REQUESTS, {"request_id": request_id})
        if doc is None:
            raise RequestNotFoundError(request_id)
        return LocationRequest.from_document(doc)

    async def find_pending(self, subject_email: str) -> LocationRequest | None:
        doc = await self._store.find_one(
            LOCATION_REQUESTS,
            {"user_email": normalize_email(subject_email), "status": RequestStatus.PENDING.value},
        )
        return LocationRequest.from_document(doc) if doc else None

    async def find_expired(self, now: datetime) -> list[LocationRequest]:
        """PENDING requests whose deadline has passed, oldest first."""
        docs = await self._store.find_many(
            LOCATION_REQUESTS,
            {"status": RequestStatus.PENDING.value, "expires_at": {"$lt": now}},
            sort=[("expires_at", ASCENDING)],
        )
        return [LocationRequest.from_document(d) for d in docs]

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    async def _authorize_requester(self, subject_email: str, requester_email: str) -> bool:
        """Live check that *requester_email* is a contact of *subject_email*."""
        return await self._registry.is_contact(subject_email, requester_email)

    async def _transition(
        self,
        request_id: str,
        status: RequestStatus,
        **changes: Any,
    ) -> LocationRequest:
        """Move a PENDING request to *status*; first committer wins."""
        doc = await self._store.update_one(
            LOCATION_REQUESTS,
            {"request_id": request_id, "status": RequestStatus.PENDING.value},
            {"status": status.value, **changes},
        )
        if doc is None:
            current = await self.get_request(request_id)
            logger.info(
                "location_request.transition_rejected",
                request_id=request_id,
                target=status,
                current=current.status,
            )
            raise RequestAlreadyResolvedError(request_id, current.status.value)

        updated = LocationRequest.from_document(doc)
        logger.info("location_request.transitioned", request_id=request_id, status=status)
        return updated

    async def _require_pending(self, request_id: str) -> LocationRequest:
        request = await self.get_request(request_id)
        if request.is_terminal:
            raise RequestAlreadyResolvedError(request_id, request.status.value)
        return request

    async def _notify(
        self,
        to: str,
        type: NotificationType,
        message: str,
        data: dict[str, Any],
        email: RenderedEmail,
    ) -> tuple[str, bool]:
        """Write the notification, then try the email; email failure is logged only."""
        notification = await self._notifications.create(to, type, message, data)
        try:
            await self._mailer.send_email(to, email.subject, email.html)
        except EmailDeliveryError:
            logger.warning("location_request.email_failed", to=to, type=type, exc_info=True)
            return notification.notification_id, False
        return notification.notification_id, True

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def create_request(self, subject_email: str, requester_email: str) -> RequestEvent:
        """Open a 30-minute location request from a contact to the subject."""
        subject = await self._registry.get_user(subject_email)
        if subject is None:
            raise UserNotFoundError(subject_email)
        if not subject.emergency_contacts:
            raise NoContactsConfiguredError("User has no emergency contacts configured")
        if not await self._authorize_requester(subject.email, requester_email):
            logger.warning(
                "location_request.unauthorized",
                subject=subject.email,
                requester=requester_email,
            )
            raise UnauthorizedRequesterError()

        existing = await self.find_pending(subject.email)
        if existing is not None:
            raise RequestAlreadyPendingError(existing.request_id, existing.expires_at.isoformat())

        request = LocationRequest.open(subject.email, normalize_email(requester_email), self._clock())
        try:
            await self._store.insert(LOCATION_REQUESTS, request.to_document())
        except DuplicateKeyError:
            # Lost a concurrent create for the same subject
            winner = await self.find_pending(subject.email)
            if winner is None:
                raise
            raise RequestAlreadyPendingError(winner.request_id, winner.expires_at.isoformat()) from None

        logger.info(
            "location_request.created",
            request_id=request.request_id,
            subject=request.user_email,
            requester=request.receiver_email,
            expires_at=request.expires_at.isoformat(),
        )

        notification_id, email_sent = await self._notify(
            request.user_email,
            NotificationType.LOCATION_REQUEST,
            f"{request.receiver_email} is requesting your current location",
            {
                "requestId": request.request_id,
                "receiverEmail": request.receiver_email,
                "expiresAt": request.expires_at,
            },
            location_request_email(request.receiver_email, request.expires_at),
        )
        return RequestEvent(request=request, notification_id=notification_id, email_sent=email_sent)

    async def accept_request(
        self,
        request_id: str,
        latitude: float,
        longitude: float,
        accuracy: float | None = None,
    ) -> RequestEvent:
        """Share the subject's location with the requester."""
        request = await self._require_pending(request_id)

        if not await self._authorize_requester(request.user_email, request.receiver_email):
            logger.warning(
                "location_request.requester_no_longer_authorized",
                request_id=request_id,
                subject=request.user_email,
                requester=request.receiver_email,
            )
            await self._transition(request_id, RequestStatus.DENIED, responded_at=self._clock())
            raise RequesterNoLongerAuthorizedError(request_id)

        now = self._clock()
        location = SharedLocation(latitude=latitude, longitude=longitude, accuracy=accuracy, timestamp=now)
        accepted = await self._transition(
            request_id,
            RequestStatus.ACCEPTED,
            responded_at=now,
            location=location.model_dump(),
        )

        notification_id, email_sent = await self._notify(
            accepted.receiver_email,
            NotificationType.LOCATION_SHARED,
            f"{accepted.user_email} has shared their location",
            {
                "latitude": latitude,
                "longitude": longitude,
                "accuracy": accuracy,
                "userEmail": accepted.user_email,
            },
            location_shared_email(accepted.user_email, latitude, longitude, accuracy, now),
        )
        return RequestEvent(request=accepted, notification_id=notification_id, email_sent=email_sent)

    async def deny_request(self, request_id: str) -> RequestEvent:
        """Explicit refusal by the subject.  No SOS follows a deny."""
        request = await self._require_pending(request_id)

        still_contact = await self._authorize_requester(request.user_email, request.receiver_email)
        logger.debug("location_request.deny_requester_check", request_id=request_id, still_contact=still_contact)

        now = self._clock()
        denied = await self._transition(request_id, RequestStatus.DENIED, responded_at=now)

        notification_id, email_sent = await self._notify(
            denied.receiver_email,
            NotificationType.LOCATION_DENIED,
            f"{denied.user_email} has denied the location request",
            {"userEmail": denied.user_email, "deniedAt": now},
            location_denied_email(denied.user_email, now),
        )
        return RequestEvent(request=denied, notification_id=notification_id, email_sent=email_sent)

    async def timeout_request(self, request_id: str, now: datetime | None = None) -> LocationRequest:
        """PENDING -> TIMEOUT.  Called by the escalation sweep."""
        return await self._transition(
            request_id,
            RequestStatus.TIMEOUT,
            responded_at=now or self._clock(),
        )
