"""Notification mailbox entry.

Notifications are created by the alert dispatcher and the location
request workflow, consumed by the web client through polling, and only
ever mutated by read-marking.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field

from src.models.enums import NotificationType


class Notification(BaseModel):
    """A single system-generated alert addressed to one recipient."""

    notification_id: str = Field(default_factory=lambda: uuid4().hex)
    to_email: str
    type: NotificationType
    message: str
    data: dict[str, Any] = Field(default_factory=dict)
    read: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> Notification:
        data = {k: v for k, v in doc.items() if k != "_id"}
        return cls.model_validate(data)

    def to_document(self) -> dict[str, Any]:
        doc = self.model_dump()
        doc["type"] = self.type.value
        return doc

    def to_public_dict(self) -> dict[str, Any]:
        return {
            "id": self.notification_id,
            "toEmail": self.to_email,
            "type": self.type.value,
            "message": self.message,
            "data": self.data,
            "read": self.read,
            "createdAt": self.created_at.isoformat(),
        }
