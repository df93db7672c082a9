"""Development seeding of users and their emergency contacts.

Reads a JSON list of ``{"email": ..., "emergencyContacts": [...]}``
objects.  Unknown users are created; existing users have their contact
list replaced.  Contacts go through the same validation as the API.

Usage::

    python -m src.data.seed path/to/users.json
"""

from __future__ import annotations

import argparse
import asyncio
import json
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import structlog

from src.services.contacts import ContactRegistry
from src.services.errors import SafelineError

logger = structlog.get_logger(__name__)


def load_users(path: Path) -> list[dict[str, Any]]:
    """Load seed entries from a JSON file."""
    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, list):
        raise ValueError(f"{path}: expected a JSON list of users")
    logger.info("seed.loaded", path=str(path), users=len(raw))
    return raw


async def seed_users(registry: ContactRegistry, entries: Iterable[dict[str, Any]]) -> dict[str, int]:
    """Create or update each user; return created/updated/failed counts."""
    counts = {"created": 0, "updated": 0, "failed": 0}
    for entry in entries:
        email = entry.get("email", "")
        contacts = entry.get("emergencyContacts") or []
        try:
            if await registry.get_user(email) is None:
                await registry.create_user(email, contacts)
                counts["created"] += 1
            else:
                await registry.set_contacts(email, contacts)
                counts["updated"] += 1
        except SafelineError as exc:
            logger.warning("seed.user_failed", email=email, error=exc.message)
            counts["failed"] += 1

    logger.info("seed.complete", **counts)
    return counts


async def _main(path: Path) -> int:
    from config.settings import settings
    from src.services.storage import build_document_store

    store = build_document_store(settings)
    try:
        await store.ensure_indexes()
        counts = await seed_users(ContactRegistry(store), load_users(path))
    finally:
        await store.close()
    return 1 if counts["failed"] else 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed users and emergency contacts.")
    parser.add_argument("path", type=Path, help="JSON file with user entries")
    args = parser.parse_args()
    raise SystemExit(asyncio.run(_main(args.path)))


if __name__ == "__main__":
    main()
