"""Per-recipient notification mailbox.

Notifications are appended by the alert dispatcher and the location
request workflow and read by the web client through polling.  The only
mutation after creation is read-marking; nothing is ever deleted.
"""

from __future__ import annotations

from typing import Any, Final

import structlog

from src.models.enums import NotificationType
from src.models.notification import Notification
from src.services.clock import Clock, utc_now
from src.services.contacts import normalize_email
from src.services.errors import NotificationNotFoundError
from src.services.storage import DESCENDING, NOTIFICATIONS, DocumentStore

logger = structlog.get_logger(__name__)

DEFAULT_POLL_LIMIT: Final[int] = 50


class NotificationStore:
    """Creates, lists and read-marks notifications."""

    def __init__(
        self,
        store: DocumentStore,
        *,
        clock: Clock = utc_now,
        poll_limit: int = DEFAULT_POLL_LIMIT,
    ) -> None:
        self._store = store
        self._clock = clock
        self._poll_limit = poll_limit

    async def create(
        self,
        to_email: str,
        type: NotificationType,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> Notification:
        notification = Notification(
            to_email=normalize_email(to_email),
            type=type,
            message=message,
            data=data or {},
            created_at=self._clock(),
        )
        await self._store.insert(NOTIFICATIONS, notification.to_document())
        logger.debug(
            "notifications.created",
            notification_id=notification.notification_id,
            to=notification.to_email,
            type=notification.type,
        )
        return notification

    async def list_unread(self, email: str, limit: int | None = None) -> list[Notification]:
        """Unread notifications for *email*, newest first.

        Equal ``created_at`` values fall back to insertion order via ``_id``.
        """
        docs = await self._store.find_many(
            NOTIFICATIONS,
            {"to_email": normalize_email(email), "read": False},
            sort=[("created_at", DESCENDING), ("_id", DESCENDING)],
            limit=limit or self._poll_limit,
        )
        return [Notification.from_document(d) for d in docs]

    async def mark_read(self, notification_id: str) -> Notification:
        doc = await self._store.update_one(
            NOTIFICATIONS,
            {"notification_id": notification_id},
            {"read": True},
        )
        if doc is None:
            raise NotificationNotFoundError(notification_id)
        return Notification.from_document(doc)

    async def mark_all_read(self, email: str) -> int:
        """Mark every unread notification of *email* as read; return the count."""
        modified = await self._store.update_many(
            NOTIFICATIONS,
            {"to_email": normalize_email(email), "read": False},
            {"read": True},
        )
        logger.info("notifications.marked_all_read", email=email, modified=modified)
        return modified
