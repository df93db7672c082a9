"""User record subset owned by the contact registry.

Only the fields the SOS workflow needs are modelled here: the identity
email and the emergency-contact list.  Profile, goals, journal and
subscription data live elsewhere and are never touched by this service.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field


class UserRecord(BaseModel):
    """A user as seen by the contact registry.

    ``emergency_contacts`` is always persisted lower-cased and
    deduplicated; see :func:`src.services.contacts.normalize_contacts`.
    ``trusted_contact_email`` is the legacy single-contact field kept only
    so the migration script can read old documents.
    """

    email: str
    emergency_contacts: list[str] = Field(default_factory=list)
    trusted_contact_email: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> UserRecord:
        return cls(
            email=doc["email"],
            emergency_contacts=list(doc.get("emergency_contacts") or []),
            trusted_contact_email=doc.get("trusted_contact_email"),
            created_at=doc.get("created_at") or datetime.now(UTC),
            updated_at=doc.get("updated_at") or datetime.now(UTC),
        )

    def to_document(self) -> dict[str, Any]:
        return self.model_dump()
