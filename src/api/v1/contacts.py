"""Emergency-contact management endpoints.

Mutations answer 400 for every rejection (unknown user included); only
the read endpoint answers 404 for an unknown user.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import ORJSONResponse
from pydantic import BaseModel, ConfigDict, Field

from src.api.errors import error_response
from src.services.contacts import ContactRegistry
from src.services.errors import SafelineError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/emergency-contacts", tags=["emergency-contacts"])


class ContactChange(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_email: str = Field(..., alias="userEmail", min_length=1)
    contact_email: str = Field(..., alias="contactEmail", min_length=1)


class ContactSet(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_email: str = Field(..., alias="userEmail", min_length=1)
    contacts: list[str]


def _get_registry(request: Request) -> ContactRegistry:
    registry = getattr(request.app.state, "contacts", None)
    if registry is None:
        raise HTTPException(status_code=503, detail="Contact registry not initialised.")
    return registry


def _ok(message: str, contacts: list[str]) -> dict:
    return {"success": True, "message": message, "contacts": contacts}


@router.get("/{user_email}")
async def get_contacts(user_email: str, request: Request) -> dict:
    registry = _get_registry(request)
    contacts = await registry.list_contacts(user_email)
    return _ok("Emergency contacts retrieved successfully", contacts)


@router.post("/add", response_model=None)
async def add_contact(body: ContactChange, request: Request) -> dict | ORJSONResponse:
    registry = _get_registry(request)
    try:
        contacts = await registry.add_contact(body.user_email, body.contact_email)
    except SafelineError as exc:
        return error_response(exc, status_code=400)
    return _ok("Emergency contact added successfully", contacts)


@router.post("/remove", response_model=None)
async def remove_contact(body: ContactChange, request: Request) -> dict | ORJSONResponse:
    registry = _get_registry(request)
    try:
        contacts = await registry.remove_contact(body.user_email, body.contact_email)
    except SafelineError as exc:
        return error_response(exc, status_code=400)
    return _ok("Emergency contact removed successfully", contacts)


@router.post("/set", response_model=None)
async def set_contacts(body: ContactSet, request: Request) -> dict | ORJSONResponse:
    registry = _get_registry(request)
    try:
        contacts = await registry.set_contacts(body.user_email, body.contacts)
    except SafelineError as exc:
        return error_response(exc, status_code=400)
    return _ok("Emergency contacts updated successfully", contacts)
