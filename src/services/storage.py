"""Document persistence with a MongoDB backend and an in-memory fallback.

Services talk to a :class:`DocumentStore` and never to a driver directly.
Filters use the Mongo query subset the workflow needs (equality plus
``$lt``/``$lte``/``$gt``/``$gte``/``$ne``/``$in``), so the same filter
dict runs unchanged against either backend.

Uniqueness rules:

- ``users.email`` is unique.
- At most one ``PENDING`` location request per subject.  Mongo enforces
  this with a partial unique index; the in-memory backend checks the same
  rule under its lock.  A losing write raises :class:`DuplicateKeyError`.
"""

from __future__ import annotations

import asyncio
import copy
import itertools
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import structlog

from src.services.errors import DuplicateKeyError

logger = structlog.get_logger(__name__)

USERS = "users"
LOCATION_REQUESTS = "location_requests"
NOTIFICATIONS = "notifications"

SortSpec = list[tuple[str, int]]

ASCENDING = 1
DESCENDING = -1


# ---------------------------------------------------------------------------
# Store protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class DocumentStore(Protocol):
    """Async document store interface."""

    async def find_one(self, collection: str, filter: dict[str, Any]) -> dict[str, Any] | None: ...

    async def find_many(
        self,
        collection: str,
        filter: dict[str, Any],
        *,
        sort: SortSpec | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]: ...

    async def insert(self, collection: str, document: dict[str, Any]) -> None: ...

    async def update_one(
        self, collection: str, filter: dict[str, Any], changes: dict[str, Any]
    ) -> dict[str, Any] | None: ...

    async def update_many(self, collection: str, filter: dict[str, Any], changes: dict[str, Any]) -> int: ...

    async def ensure_indexes(self) -> None: ...

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------


def _compare(op: str, actual: Any, expected: Any) -> bool:
    if op == "$ne":
        return actual != expected
    if op == "$in":
        return actual in expected
    if actual is None:
        return False
    if op == "$lt":
        return actual < expected
    if op == "$lte":
        return actual <= expected
    if op == "$gt":
        return actual > expected
    if op == "$gte":
        return actual >= expected
    raise ValueError(f"Unsupported query operator: {op}")


def matches(document: dict[str, Any], filter: dict[str, Any]) -> bool:
    """Return *True* if *document* satisfies the Mongo-style *filter*."""
    for key, condition in filter.items():
        actual = document.get(key)
        if isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition):
            if not all(_compare(op, actual, value) for op, value in condition.items()):
                return False
        elif actual != condition:
            return False
    return True


@dataclass(frozen=True, slots=True)
class _UniqueRule:
    fields: tuple[str, ...]
    partial: dict[str, Any] = field(default_factory=dict)

    def key(self, document: dict[str, Any]) -> tuple[Any, ...] | None:
        if self.partial and not matches(document, self.partial):
            return None
        return tuple(document.get(f) for f in self.fields)


_UNIQUE_RULES: dict[str, tuple[_UniqueRule, ...]] = {
    USERS: (_UniqueRule(("email",)),),
    LOCATION_REQUESTS: (
        _UniqueRule(("request_id",)),
        _UniqueRule(("user_email",), partial={"status": "PENDING"}),
    ),
    NOTIFICATIONS: (_UniqueRule(("notification_id",)),),
}


class InMemoryDocumentStore:
    """Process-local store for development and tests.

    Every operation runs under one :class:`asyncio.Lock`, which makes each
    call atomic with respect to other coroutines on the same loop.
    Documents are deep-copied in and out so callers never share state
    with the store.  Inserts get an increasing integer ``_id`` when they
    carry none, so ``_id`` orders documents by insertion as ObjectIds do.
    """

    __slots__ = ("_collections", "_ids", "_lock")

    def __init__(self) -> None:
        self._collections: dict[str, list[dict[str, Any]]] = {}
        self._ids = itertools.count(1)
        self._lock = asyncio.Lock()

    def _docs(self, collection: str) -> list[dict[str, Any]]:
        return self._collections.setdefault(collection, [])

    def _check_unique(
        self,
        collection: str,
        candidate: dict[str, Any],
        ignore: dict[str, Any] | None = None,
    ) -> None:
        for rule in _UNIQUE_RULES.get(collection, ()):
            key = rule.key(candidate)
            if key is None:
                continue
            for existing in self._docs(collection):
                if existing is ignore:
                    continue
                if rule.key(existing) == key:
                    raise DuplicateKeyError(f"{collection}: duplicate key for {rule.fields}={key}")

    # -- DocumentStore interface -----------------------------------------------

    async def find_one(self, collection: str, filter: dict[str, Any]) -> dict[str, Any] | None:
        async with self._lock:
            for doc in self._docs(collection):
                if matches(doc, filter):
                    return copy.deepcopy(doc)
            return None

    async def find_many(
        self,
        collection: str,
        filter: dict[str, Any],
        *,
        sort: SortSpec | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        async with self._lock:
            found = [copy.deepcopy(d) for d in self._docs(collection) if matches(d, filter)]
        # Stable sort applied from the least significant key outwards
        for key, direction in reversed(sort or []):
            found.sort(key=lambda d, k=key: d.get(k), reverse=direction == DESCENDING)
        if limit is not None:
            found = found[:limit]
        return found

    async def insert(self, collection: str, document: dict[str, Any]) -> None:
        async with self._lock:
            doc = copy.deepcopy(document)
            doc.setdefault("_id", next(self._ids))
            self._check_unique(collection, doc)
            self._docs(collection).append(doc)

    async def update_one(
        self, collection: str, filter: dict[str, Any], changes: dict[str, Any]
    ) -> dict[str, Any] | None:
        async with self._lock:
            for doc in self._docs(collection):
                if matches(doc, filter):
                    updated = {**doc, **copy.deepcopy(changes)}
                    self._check_unique(collection, updated, ignore=doc)
                    doc.update(updated)
                    return copy.deepcopy(doc)
            return None

    async def update_many(self, collection: str, filter: dict[str, Any], changes: dict[str, Any]) -> int:
        async with self._lock:
            modified = 0
            for doc in self._docs(collection):
                if matches(doc, filter):
                    before = dict(doc)
                    doc.update(copy.deepcopy(changes))
                    if doc != before:
                        modified += 1
            return modified

    async def ensure_indexes(self) -> None:
        return None

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None

    def count(self, collection: str) -> int:
        """Number of stored documents in *collection* (test helper)."""
        return len(self._collections.get(collection, []))


# ---------------------------------------------------------------------------
# MongoDB backend
# ---------------------------------------------------------------------------


class MongoDocumentStore:
    """MongoDB store on ``motor``.

    The client is created with ``tz_aware=True`` so datetimes come back
    as aware UTC values, matching what the models write.
    """

    __slots__ = ("_client", "_db")

    def __init__(self, uri: str, database: str, *, server_selection_timeout_ms: int = 5000) -> None:
        from motor.motor_asyncio import AsyncIOMotorClient

        self._client = AsyncIOMotorClient(
            uri,
            tz_aware=True,
            serverSelectionTimeoutMS=server_selection_timeout_ms,
        )
        self._db = self._client[database]

    # -- DocumentStore interface -----------------------------------------------

    async def find_one(self, collection: str, filter: dict[str, Any]) -> dict[str, Any] | None:
        return await self._db[collection].find_one(filter)

    async def find_many(
        self,
        collection: str,
        filter: dict[str, Any],
        *,
        sort: SortSpec | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        cursor = self._db[collection].find(filter)
        if sort:
            cursor = cursor.sort(sort)
        if limit is not None:
            cursor = cursor.limit(limit)
        return await cursor.to_list(length=limit)

    async def insert(self, collection: str, document: dict[str, Any]) -> None:
        from pymongo.errors import DuplicateKeyError as MongoDuplicateKeyError

        try:
            # insert_one adds ``_id`` to the dict it is given
            await self._db[collection].insert_one(dict(document))
        except MongoDuplicateKeyError as exc:
            raise DuplicateKeyError(str(exc)) from exc

    async def update_one(
        self, collection: str, filter: dict[str, Any], changes: dict[str, Any]
    ) -> dict[str, Any] | None:
        from pymongo import ReturnDocument
        from pymongo.errors import DuplicateKeyError as MongoDuplicateKeyError

        try:
            return await self._db[collection].find_one_and_update(
                filter,
                {"$set": changes},
                return_document=ReturnDocument.AFTER,
            )
        except MongoDuplicateKeyError as exc:
            raise DuplicateKeyError(str(exc)) from exc

    async def update_many(self, collection: str, filter: dict[str, Any], changes: dict[str, Any]) -> int:
        result = await self._db[collection].update_many(filter, {"$set": changes})
        return result.modified_count

    async def ensure_indexes(self) -> None:
        users = self._db[USERS]
        await users.create_index("email", unique=True)

        requests = self._db[LOCATION_REQUESTS]
        await requests.create_index("request_id", unique=True)
        await requests.create_index([("user_email", ASCENDING), ("status", ASCENDING)])
        await requests.create_index([("status", ASCENDING), ("expires_at", ASCENDING)])
        await requests.create_index(
            "user_email",
            name="one_pending_per_subject",
            unique=True,
            partialFilterExpression={"status": "PENDING"},
        )

        notifications = self._db[NOTIFICATIONS]
        await notifications.create_index("notification_id", unique=True)
        await notifications.create_index(
            [("to_email", ASCENDING), ("read", ASCENDING), ("created_at", DESCENDING), ("_id", DESCENDING)]
        )
        logger.info("storage.indexes_ensured", database=self._db.name)

    async def ping(self) -> bool:
        try:
            await self._client.admin.command("ping")
            return True
        except Exception:
            return False

    async def close(self) -> None:
        self._client.close()


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def build_document_store(settings: Any) -> DocumentStore:
    """Create the store selected by ``settings.storage_backend``."""
    if settings.storage_backend == "mongo":
        logger.info("storage.backend_selected", backend="mongo", database=settings.mongodb_database)
        return MongoDocumentStore(settings.mongodb_uri, settings.mongodb_database)
    logger.info("storage.backend_selected", backend="memory")
    return InMemoryDocumentStore()
