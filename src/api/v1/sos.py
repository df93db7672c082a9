"""Manual SOS endpoint.

``POST /api/sos/manual`` broadcasts an SOS to every emergency contact of
the user.  The status code reflects the fan-out outcome: 200 when every
contact was reached, 207 when some were, 500 when none were.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import ORJSONResponse
from pydantic import BaseModel, ConfigDict, Field

from src.models.enums import BroadcastOutcome
from src.services.sos import SOSService

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/sos", tags=["sos"])


class ManualSOSRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_email: str = Field(..., alias="userEmail", min_length=1)
    latitude: float
    longitude: float


_STATUS_BY_OUTCOME = {
    BroadcastOutcome.SUCCESS: (200, "SOS alert sent to all emergency contacts"),
    BroadcastOutcome.PARTIAL: (207, "SOS sent to some emergency contacts, but some failed"),
    BroadcastOutcome.FAILED: (500, "Failed to send SOS to any emergency contacts"),
}


def _get_sos(request: Request) -> SOSService:
    service = getattr(request.app.state, "sos", None)
    if service is None:
        raise HTTPException(status_code=503, detail="SOS service not initialised.")
    return service


@router.post("/manual")
async def trigger_manual_sos(body: ManualSOSRequest, request: Request) -> ORJSONResponse:
    """Send an immediate SOS to all of the user's emergency contacts."""
    service = _get_sos(request)
    result = await service.trigger_manual_sos(body.user_email, body.latitude, body.longitude)
    broadcast = result.broadcast

    status_code, message = _STATUS_BY_OUTCOME[broadcast.outcome]
    logger.info(
        "api.sos.manual_complete",
        user=result.user_email,
        outcome=broadcast.outcome,
        status_code=status_code,
    )
    return ORJSONResponse(
        status_code=status_code,
        content={
            "success": broadcast.outcome != BroadcastOutcome.FAILED,
            "message": message,
            "data": {
                "totalContacts": broadcast.total,
                "successful": len(broadcast.successful),
                "failed": len(broadcast.failed),
                "location": {"latitude": result.latitude, "longitude": result.longitude},
                "details": broadcast.to_dict(),
            },
        },
    )
