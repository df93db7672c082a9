"""Emergency-contact registry.

Each user owns an ordered set of emergency-contact emails.  The set is
stored lower-cased and deduplicated, and every mutator runs it through
:func:`normalize_contacts` before saving, so the invariant holds no
matter which path wrote the list (API, seeding, or migration).

Contact membership is the only authorization input for location
requests; :meth:`ContactRegistry.is_contact` is therefore always read
live from the store and never cached.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import Final

import structlog

from src.models.user import UserRecord
from src.services.clock import Clock, utc_now
from src.services.errors import (
    ContactNotFoundError,
    DuplicateContactError,
    InvalidEmailFormatError,
    UserNotFoundError,
)
from src.services.storage import USERS, DocumentStore

logger = structlog.get_logger(__name__)

EMAIL_RE: Final[re.Pattern[str]] = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def normalize_email(email: str) -> str:
    return email.strip().lower()


def is_valid_email(email: str) -> bool:
    return bool(EMAIL_RE.match(email))


def normalize_contacts(contacts: Iterable[str]) -> list[str]:
    """Lower-case, trim and dedupe *contacts*, keeping first-seen order.

    Raises :class:`InvalidEmailFormatError` listing every malformed entry;
    nothing is returned unless the whole input is valid.
    """
    cleaned = [normalize_email(c) for c in contacts]
    invalid = [c for c in cleaned if not is_valid_email(c)]
    if invalid:
        raise InvalidEmailFormatError(f"Invalid email format: {', '.join(invalid)}")
    return list(dict.fromkeys(cleaned))


class ContactRegistry:
    """Reads and mutates the emergency-contact list of each user."""

    def __init__(self, store: DocumentStore, *, clock: Clock = utc_now) -> None:
        self._store = store
        self._clock = clock

    async def get_user(self, user_email: str) -> UserRecord | None:
        doc = await self._store.find_one(USERS, {"email": normalize_email(user_email)})
        if doc is None:
            return None
        return UserRecord.from_document(doc)

    async def _require_user(self, user_email: str) -> UserRecord:
        user = await self.get_user(user_email)
        if user is None:
            raise UserNotFoundError(user_email)
        return user

    async def _save(self, user: UserRecord, contacts: list[str]) -> list[str]:
        normalized = normalize_contacts(contacts)
        await self._store.update_one(
            USERS,
            {"email": user.email},
            {"emergency_contacts": normalized, "updated_at": self._clock()},
        )
        return normalized

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def list_contacts(self, user_email: str) -> list[str]:
        user = await self._require_user(user_email)
        return list(user.emergency_contacts)

    async def is_contact(self, user_email: str, candidate: str) -> bool:
        """Case-insensitive membership test; *False* if the user is unknown."""
        user = await self.get_user(user_email)
        if user is None:
            return False
        return normalize_email(candidate) in {normalize_email(c) for c in user.emergency_contacts}

    async def add_contact(self, user_email: str, contact_email: str) -> list[str]:
        user = await self._require_user(user_email)
        contact = normalize_email(contact_email)
        if not is_valid_email(contact):
            raise InvalidEmailFormatError("Invalid email format")
        if contact in {normalize_email(c) for c in user.emergency_contacts}:
            raise DuplicateContactError("Contact already exists")

        contacts = await self._save(user, [*user.emergency_contacts, contact])
        logger.info("contacts.added", user=user.email, contact=contact, total=len(contacts))
        return contacts

    async def remove_contact(self, user_email: str, contact_email: str) -> list[str]:
        user = await self._require_user(user_email)
        contact = normalize_email(contact_email)
        if contact not in user.emergency_contacts:
            raise ContactNotFoundError("Contact not found in emergency contacts list")

        contacts = await self._save(user, [c for c in user.emergency_contacts if c != contact])
        logger.info("contacts.removed", user=user.email, contact=contact, total=len(contacts))
        return contacts

    async def set_contacts(self, user_email: str, contacts: Iterable[str]) -> list[str]:
        """Replace the whole list; validation is all-or-nothing."""
        user = await self._require_user(user_email)
        normalized = normalize_contacts(contacts)
        saved = await self._save(user, normalized)
        logger.info("contacts.replaced", user=user.email, total=len(saved))
        return saved

    async def create_user(self, user_email: str, contacts: Iterable[str] = ()) -> UserRecord:
        """Insert a new user record.  Used by seeding and tests."""
        now = self._clock()
        user = UserRecord(
            email=normalize_email(user_email),
            emergency_contacts=normalize_contacts(contacts),
            created_at=now,
            updated_at=now,
        )
        await self._store.insert(USERS, user.to_document())
        logger.info("contacts.user_created", user=user.email, contacts=len(user.emergency_contacts))
        return user
