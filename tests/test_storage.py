"""Tests for the in-memory document store and the Mongo-style filter matcher."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from types import SimpleNamespace

import pytest

from src.services.errors import DuplicateKeyError
from src.services.storage import (
    DESCENDING,
    LOCATION_REQUESTS,
    NOTIFICATIONS,
    USERS,
    DocumentStore,
    InMemoryDocumentStore,
    build_document_store,
    matches,
)


class TestMatches:
    def test_equality(self) -> None:
        assert matches({"a": 1, "b": "x"}, {"a": 1})
        assert not matches({"a": 1}, {"a": 2})

    def test_missing_field_is_none(self) -> None:
        assert matches({}, {"a": None})
        assert not matches({}, {"a": {"$ne": None}})

    def test_comparison_operators(self) -> None:
        now = datetime(2025, 1, 1, tzinfo=UTC)
        doc = {"t": now}
        assert matches(doc, {"t": {"$lt": now + timedelta(seconds=1)}})
        assert not matches(doc, {"t": {"$lt": now}})
        assert matches(doc, {"t": {"$lte": now, "$gte": now}})
        assert matches(doc, {"t": {"$gt": now - timedelta(days=1)}})

    def test_comparison_against_missing_field(self) -> None:
        assert not matches({}, {"t": {"$lt": 5}})

    def test_in(self) -> None:
        assert matches({"s": "PENDING"}, {"s": {"$in": ["PENDING", "DENIED"]}})
        assert not matches({"s": "ACCEPTED"}, {"s": {"$in": ["PENDING"]}})

    def test_unsupported_operator(self) -> None:
        with pytest.raises(ValueError, match="Unsupported"):
            matches({"a": 1}, {"a": {"$regex": "x"}})


class TestInMemoryDocumentStore:
    async def test_satisfies_protocol(self) -> None:
        assert isinstance(InMemoryDocumentStore(), DocumentStore)

    async def test_insert_assigns_increasing_id(self, store: InMemoryDocumentStore) -> None:
        await store.insert(NOTIFICATIONS, {"notification_id": "n1"})
        await store.insert(NOTIFICATIONS, {"notification_id": "n2"})
        await store.insert(NOTIFICATIONS, {"notification_id": "n3", "_id": 99})

        docs = await store.find_many(NOTIFICATIONS, {}, sort=[("_id", DESCENDING)])
        assert [d["notification_id"] for d in docs] == ["n3", "n2", "n1"]

    async def test_documents_are_copied(self, store: InMemoryDocumentStore) -> None:
        doc = {"email": "a@x.io", "emergency_contacts": ["b@x.io"]}
        await store.insert(USERS, doc)
        doc["emergency_contacts"].append("mutated@x.io")

        found = await store.find_one(USERS, {"email": "a@x.io"})
        assert found["emergency_contacts"] == ["b@x.io"]
        found["emergency_contacts"].clear()
        assert (await store.find_one(USERS, {"email": "a@x.io"}))["emergency_contacts"] == ["b@x.io"]

    async def test_unique_user_email(self, store: InMemoryDocumentStore) -> None:
        await store.insert(USERS, {"email": "a@x.io"})
        with pytest.raises(DuplicateKeyError):
            await store.insert(USERS, {"email": "a@x.io"})

    async def test_one_pending_per_subject(self, store: InMemoryDocumentStore) -> None:
        await store.insert(LOCATION_REQUESTS, {"request_id": "r1", "user_email": "a@x.io", "status": "PENDING"})
        with pytest.raises(DuplicateKeyError):
            await store.insert(
                LOCATION_REQUESTS, {"request_id": "r2", "user_email": "a@x.io", "status": "PENDING"}
            )

    async def test_terminal_requests_do_not_block_new_pending(self, store: InMemoryDocumentStore) -> None:
        await store.insert(LOCATION_REQUESTS, {"request_id": "r1", "user_email": "a@x.io", "status": "DENIED"})
        await store.insert(LOCATION_REQUESTS, {"request_id": "r2", "user_email": "a@x.io", "status": "TIMEOUT"})
        await store.insert(LOCATION_REQUESTS, {"request_id": "r3", "user_email": "a@x.io", "status": "PENDING"})
        assert store.count(LOCATION_REQUESTS) == 3

    async def test_conditional_update(self, store: InMemoryDocumentStore) -> None:
        await store.insert(LOCATION_REQUESTS, {"request_id": "r1", "user_email": "a@x.io", "status": "PENDING"})

        first = await store.update_one(
            LOCATION_REQUESTS, {"request_id": "r1", "status": "PENDING"}, {"status": "ACCEPTED"}
        )
        second = await store.update_one(
            LOCATION_REQUESTS, {"request_id": "r1", "status": "PENDING"}, {"status": "DENIED"}
        )

        assert first is not None and first["status"] == "ACCEPTED"
        assert second is None
        assert (await store.find_one(LOCATION_REQUESTS, {"request_id": "r1"}))["status"] == "ACCEPTED"

    async def test_update_that_breaks_uniqueness_is_rejected(self, store: InMemoryDocumentStore) -> None:
        await store.insert(LOCATION_REQUESTS, {"request_id": "r1", "user_email": "a@x.io", "status": "PENDING"})
        await store.insert(LOCATION_REQUESTS, {"request_id": "r2", "user_email": "a@x.io", "status": "DENIED"})

        with pytest.raises(DuplicateKeyError):
            await store.update_one(LOCATION_REQUESTS, {"request_id": "r2"}, {"status": "PENDING"})

    async def test_find_many_sort_and_limit(self, store: InMemoryDocumentStore) -> None:
        for i in (3, 1, 2):
            await store.insert(NOTIFICATIONS, {"notification_id": f"n{i}", "to_email": "b@x.io", "n": i})

        docs = await store.find_many(NOTIFICATIONS, {"to_email": "b@x.io"}, sort=[("n", DESCENDING)], limit=2)
        assert [d["n"] for d in docs] == [3, 2]

    async def test_update_many_counts_modified(self, store: InMemoryDocumentStore) -> None:
        await store.insert(NOTIFICATIONS, {"notification_id": "n1", "to_email": "b@x.io", "read": False})
        await store.insert(NOTIFICATIONS, {"notification_id": "n2", "to_email": "b@x.io", "read": True})

        assert await store.update_many(NOTIFICATIONS, {"to_email": "b@x.io"}, {"read": True}) == 1

    async def test_ping(self, store: InMemoryDocumentStore) -> None:
        assert await store.ping() is True


class TestBuildDocumentStore:
    def test_memory_backend(self) -> None:
        store = build_document_store(SimpleNamespace(storage_backend="memory"))
        assert isinstance(store, InMemoryDocumentStore)
