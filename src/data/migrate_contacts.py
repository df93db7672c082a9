"""One-off migration from the single ``trusted_contact_email`` field to the
``emergency_contacts`` list.

Users that already have emergency contacts are left alone.  The legacy
value goes through :func:`normalize_contacts`, so a malformed legacy
address is counted as an error instead of being written.

Usage::

    python -m src.data.migrate_contacts
"""

from __future__ import annotations

import argparse
import asyncio
from dataclasses import dataclass, field
from typing import Any

import structlog

from src.services.clock import Clock, utc_now
from src.services.contacts import normalize_contacts
from src.services.errors import SafelineError
from src.services.storage import USERS, DocumentStore

logger = structlog.get_logger(__name__)

_LEGACY_FILTER: dict[str, Any] = {"trusted_contact_email": {"$ne": None}}


@dataclass(slots=True)
class MigrationReport:
    found: int = 0
    migrated: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    errors: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "found": self.found,
            "migrated": len(self.migrated),
            "skipped": len(self.skipped),
            "errors": len(self.errors),
        }


async def migrate_legacy_contacts(store: DocumentStore, *, clock: Clock = utc_now) -> MigrationReport:
    """Move every legacy single contact into the contact list."""
    report = MigrationReport()
    users = await store.find_many(USERS, _LEGACY_FILTER)
    report.found = len(users)
    logger.info("migration.started", users_found=report.found)

    for doc in users:
        email = doc["email"]
        if doc.get("emergency_contacts"):
            logger.info("migration.user_skipped", email=email, reason="already_has_contacts")
            report.skipped.append(email)
            continue
        try:
            contacts = normalize_contacts([doc["trusted_contact_email"]])
            await store.update_one(
                USERS,
                {"email": email},
                {
                    "emergency_contacts": contacts,
                    "trusted_contact_email": None,
                    "updated_at": clock(),
                },
            )
        except SafelineError as exc:
            logger.warning("migration.user_failed", email=email, error=exc.message)
            report.errors.append({"email": email, "error": exc.message})
            continue
        logger.info("migration.user_migrated", email=email, contacts=contacts)
        report.migrated.append(email)

    logger.info("migration.complete", **report.to_dict())
    return report


async def count_remaining_legacy(store: DocumentStore) -> int:
    """Users still carrying a legacy contact (after skips and errors)."""
    return len(await store.find_many(USERS, _LEGACY_FILTER))


async def _main() -> int:
    from config.settings import settings
    from src.services.storage import build_document_store

    store = build_document_store(settings)
    try:
        report = await migrate_legacy_contacts(store)
        remaining = await count_remaining_legacy(store)
    finally:
        await store.close()

    if remaining:
        logger.warning("migration.legacy_users_remaining", remaining=remaining)
    return 1 if report.errors else 0


def main() -> None:
    argparse.ArgumentParser(description=__doc__.splitlines()[0]).parse_args()
    raise SystemExit(asyncio.run(_main()))


if __name__ == "__main__":
    main()
