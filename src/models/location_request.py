"""Location request model.

A trusted contact asks a user (the *subject*) for their current location.
The request stays ``PENDING`` for a fixed 30-minute window; the subject
either accepts (sharing coordinates), denies, or stays silent, in which
case the escalation sweep moves it to ``TIMEOUT`` and broadcasts an
automatic SOS to every current emergency contact.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any, Final
from uuid import uuid4

from pydantic import BaseModel, Field

from src.models.enums import RequestStatus

# Fixed response window.  Not configurable: the subject is told "30 minutes"
# in the request email.
REQUEST_TIMEOUT: Final[timedelta] = timedelta(minutes=30)


class SharedLocation(BaseModel):
    """Coordinates the subject shared when accepting a request."""

    latitude: float
    longitude: float
    accuracy: float | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def map_url(self) -> str:
        return f"https://www.google.com/maps?q={self.latitude},{self.longitude}"


class LocationRequest(BaseModel):
    """A single location request and its lifecycle state."""

    request_id: str = Field(default_factory=lambda: uuid4().hex)
    user_email: str  # subject
    receiver_email: str  # requester
    status: RequestStatus = RequestStatus.PENDING
    created_at: datetime
    expires_at: datetime
    responded_at: datetime | None = None
    location: SharedLocation | None = None

    @classmethod
    def open(cls, user_email: str, receiver_email: str, now: datetime) -> LocationRequest:
        """Build a new PENDING request expiring exactly 30 minutes after *now*."""
        return cls(
            user_email=user_email,
            receiver_email=receiver_email,
            status=RequestStatus.PENDING,
            created_at=now,
            expires_at=now + REQUEST_TIMEOUT,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status != RequestStatus.PENDING

    def is_expired(self, now: datetime) -> bool:
        """Eligible for timeout strictly after ``expires_at``."""
        return now > self.expires_at

    # -- Persistence -----------------------------------------------------

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> LocationRequest:
        data = {k: v for k, v in doc.items() if k != "_id"}
        return cls.model_validate(data)

    def to_document(self) -> dict[str, Any]:
        doc = self.model_dump()
        doc["status"] = self.status.value
        return doc

    def to_public_dict(self) -> dict[str, Any]:
        return {
            "requestId": self.request_id,
            "userEmail": self.user_email,
            "receiverEmail": self.receiver_email,
            "status": self.status.value,
            "createdAt": self.created_at.isoformat(),
            "expiresAt": self.expires_at.isoformat(),
            "respondedAt": self.responded_at.isoformat() if self.responded_at else None,
            "location": (
                {
                    "latitude": self.location.latitude,
                    "longitude": self.location.longitude,
                    "accuracy": self.location.accuracy,
                    "timestamp": self.location.timestamp.isoformat(),
                }
                if self.location
                else None
            ),
        }
