from __future__ import annotations

from enum import StrEnum


class RequestStatus(StrEnum):
    """Lifecycle states of a location request. Only PENDING is non-terminal."""

    __slots__ = ()

    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    DENIED = "DENIED"
    TIMEOUT = "TIMEOUT"


class NotificationType(StrEnum):
    __slots__ = ()

    SOS = "SOS"
    AUTO_SOS = "AUTO_SOS"
    LOCATION_REQUEST = "LOCATION_REQUEST"
    LOCATION_SHARED = "LOCATION_SHARED"
    LOCATION_DENIED = "LOCATION_DENIED"


class BroadcastOutcome(StrEnum):
    __slots__ = ()

    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class DeliveryStage(StrEnum):
    """Which per-recipient effect failed during a fan-out."""

    __slots__ = ()

    NOTIFICATION = "notification"
    EMAIL = "email"


class EmailProvider(StrEnum):
    __slots__ = ()

    SMTP = "smtp"
    HTTP = "http"
    MOCK = "mock"
