"""Safeline service layer: contacts, location requests, escalation and delivery."""

from __future__ import annotations

from src.services.contacts import ContactRegistry, normalize_contacts
from src.services.dispatcher import AlertDispatcher, BroadcastResult, RecipientOutcome
from src.services.escalation import EscalationScheduler, EscalationSweeper, SweepResult
from src.services.location_requests import LocationRequestService, RequestEvent
from src.services.mailer import EmailResult, EmailService
from src.services.notifications import NotificationStore
from src.services.sos import ManualSOSResult, SOSService
from src.services.storage import (
    DocumentStore,
    InMemoryDocumentStore,
    MongoDocumentStore,
    build_document_store,
)
from src.services.sweep_lock import SweepLock

__all__ = [
    "AlertDispatcher",
    "BroadcastResult",
    "ContactRegistry",
    "DocumentStore",
    "EmailResult",
    "EmailService",
    "EscalationScheduler",
    "EscalationSweeper",
    "InMemoryDocumentStore",
    "LocationRequestService",
    "ManualSOSResult",
    "MongoDocumentStore",
    "NotificationStore",
    "RecipientOutcome",
    "RequestEvent",
    "SOSService",
    "SweepLock",
    "SweepResult",
    "build_document_store",
    "normalize_contacts",
]
