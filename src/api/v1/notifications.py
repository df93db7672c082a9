"""Notification polling endpoints.

The web client polls ``GET /api/notifications/{email}`` every few
seconds; there is no push channel.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field

from src.services.notifications import NotificationStore

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/notifications", tags=["notifications"])


class MarkReadRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    notification_id: str = Field(..., alias="notificationId", min_length=1)


class MarkAllReadRequest(BaseModel):
    email: str = Field(..., min_length=1)


def _get_notifications(request: Request) -> NotificationStore:
    store = getattr(request.app.state, "notifications", None)
    if store is None:
        raise HTTPException(status_code=503, detail="Notification store not initialised.")
    return store


@router.post("/read")
async def mark_as_read(body: MarkReadRequest, request: Request) -> dict:
    store = _get_notifications(request)
    notification = await store.mark_read(body.notification_id)
    return {
        "success": True,
        "message": "Notification marked as read",
        "data": notification.to_public_dict(),
    }


@router.post("/read-all")
async def mark_all_as_read(body: MarkAllReadRequest, request: Request) -> dict:
    store = _get_notifications(request)
    modified = await store.mark_all_read(body.email)
    return {"success": True, "message": "All notifications marked as read", "count": modified}


@router.get("/{email}")
async def get_unread_notifications(email: str, request: Request) -> dict:
    """Unread notifications for *email*, newest first, at most 50."""
    store = _get_notifications(request)
    notifications = await store.list_unread(email)
    return {
        "success": True,
        "count": len(notifications),
        "data": [n.to_public_dict() for n in notifications],
    }
