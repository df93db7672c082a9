"""Location request endpoints.

A contact opens a request, the subject accepts (sharing coordinates) or
denies it, and either side can poll its status.  Unanswered requests are
escalated by the background sweep, not by these handlers.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field

from src.services.location_requests import LocationRequestService

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/location", tags=["location"])


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class LocationRequestCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_email: str = Field(..., alias="userEmail", min_length=1)
    receiver_email: str = Field(..., alias="receiverEmail", min_length=1)


class LocationAccept(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    request_id: str = Field(..., alias="requestId", min_length=1)
    latitude: float
    longitude: float
    accuracy: float | None = None


class LocationDeny(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    request_id: str = Field(..., alias="requestId", min_length=1)


# ---------------------------------------------------------------------------
# Helper
# ---------------------------------------------------------------------------


def _get_requests(request: Request) -> LocationRequestService:
    service = getattr(request.app.state, "location_requests", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Location request service not initialised.")
    return service


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("/request")
async def request_location(body: LocationRequestCreate, request: Request) -> dict:
    """Ask a user for their location.  Only their emergency contacts may ask."""
    service = _get_requests(request)
    event = await service.create_request(body.user_email, body.receiver_email)
    return {
        "success": True,
        "message": "Location request sent to user",
        "data": {
            "requestId": event.request.request_id,
            "userEmail": event.request.user_email,
            "expiresAt": event.request.expires_at.isoformat(),
            "notificationId": event.notification_id,
            "emailSent": event.email_sent,
        },
    }


@router.post("/accept")
async def accept_location_request(body: LocationAccept, request: Request) -> dict:
    """Share the current location with the requester."""
    service = _get_requests(request)
    event = await service.accept_request(body.request_id, body.latitude, body.longitude, body.accuracy)
    return {
        "success": True,
        "message": "Location shared with trusted contact",
        "data": {
            "requestId": event.request.request_id,
            "sentTo": event.request.receiver_email,
            "location": {
                "latitude": body.latitude,
                "longitude": body.longitude,
                "accuracy": body.accuracy,
            },
            "emailSent": event.email_sent,
        },
    }


@router.post("/deny")
async def deny_location_request(body: LocationDeny, request: Request) -> dict:
    """Decline the request.  No automatic SOS follows."""
    service = _get_requests(request)
    event = await service.deny_request(body.request_id)
    return {
        "success": True,
        "message": "Location request denied",
        "data": {
            "requestId": event.request.request_id,
            "notifiedTo": event.request.receiver_email,
            "emailSent": event.email_sent,
        },
    }


@router.get("/{request_id}")
async def get_location_request(request_id: str, request: Request) -> dict:
    """Current state of a location request."""
    service = _get_requests(request)
    location_request = await service.get_request(request_id)
    return {"success": True, "data": location_request.to_public_dict()}
