"""Main API router combining the route modules under ``/api``.

Includes:
    * SOS: manual panic button
    * Location: request / accept / deny / status
    * Emergency contacts: list / add / remove / set
    * Notifications: poll and read-marking
    * Health: liveness and readiness
    * Admin: escalation sweep trigger and status
"""

from __future__ import annotations

from fastapi import APIRouter

from src.api.v1 import contacts, escalation, health, location, notifications, sos

api_router = APIRouter(prefix="/api")

# -- SOS workflow ------------------------------------------------------------
api_router.include_router(sos.router)
api_router.include_router(location.router)
api_router.include_router(contacts.router)
api_router.include_router(notifications.router)

# -- Operations ----------------------------------------------------------------
api_router.include_router(health.router)
api_router.include_router(escalation.router)
