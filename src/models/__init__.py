from src.models.enums import (
    BroadcastOutcome,
    DeliveryStage,
    EmailProvider,
    NotificationType,
    RequestStatus,
)
from src.models.location_request import REQUEST_TIMEOUT, LocationRequest, SharedLocation
from src.models.notification import Notification
from src.models.user import UserRecord

__all__ = [
    "REQUEST_TIMEOUT",
    "BroadcastOutcome",
    "DeliveryStage",
    "EmailProvider",
    "LocationRequest",
    "Notification",
    "NotificationType",
    "RequestStatus",
    "SharedLocation",
    "UserRecord",
]
