"""Manual SOS: the user presses the panic button."""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from src.models.enums import NotificationType
from src.services.clock import Clock, utc_now
from src.services.contacts import ContactRegistry
from src.services.dispatcher import AlertDispatcher, BroadcastResult
from src.services.errors import NoContactsConfiguredError, UserNotFoundError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ManualSOSResult:
    user_email: str
    latitude: float
    longitude: float
    broadcast: BroadcastResult


class SOSService:
    """Broadcasts an immediate SOS to every emergency contact of a user."""

    def __init__(self, registry: ContactRegistry, dispatcher: AlertDispatcher, *, clock: Clock = utc_now) -> None:
        self._registry = registry
        self._dispatcher = dispatcher
        self._clock = clock

    async def trigger_manual_sos(self, user_email: str, latitude: float, longitude: float) -> ManualSOSResult:
        user = await self._registry.get_user(user_email)
        if user is None:
            raise UserNotFoundError(user_email)
        if not user.emergency_contacts:
            raise NoContactsConfiguredError(
                "No emergency contacts configured for this user. "
                "Please add at least one emergency contact."
            )

        logger.info("sos.manual_triggered", user=user.email, contacts=len(user.emergency_contacts))
        broadcast = await self._dispatcher.broadcast(
            NotificationType.SOS,
            user.emergency_contacts,
            {
                "latitude": latitude,
                "longitude": longitude,
                "userEmail": user.email,
                "timestamp": self._clock(),
            },
        )
        if broadcast.failed:
            logger.warning(
                "sos.manual_partial_failure",
                user=user.email,
                failed=[f.email for f in broadcast.failed],
            )
        return ManualSOSResult(user_email=user.email, latitude=latitude, longitude=longitude, broadcast=broadcast)
