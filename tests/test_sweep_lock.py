"""Tests for the escalation sweep lock (in-memory path and Redis fallback)."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

from src.services.sweep_lock import InMemoryLockBackend, SweepLock


class TestInMemoryLockBackend:
    async def test_exclusive_until_released(self) -> None:
        backend = InMemoryLockBackend()
        assert await backend.acquire("k", "t1", 10_000) is True
        assert await backend.acquire("k", "t2", 10_000) is False

        await backend.release("k", "t1")
        assert await backend.acquire("k", "t2", 10_000) is True

    async def test_release_by_non_owner_is_ignored(self) -> None:
        backend = InMemoryLockBackend()
        await backend.acquire("k", "owner", 10_000)
        await backend.release("k", "intruder")
        assert await backend.acquire("k", "other", 10_000) is False

    async def test_expired_lock_can_be_taken(self) -> None:
        backend = InMemoryLockBackend()
        with patch("src.services.sweep_lock.time") as fake_time:
            fake_time.monotonic.return_value = 100.0
            await backend.acquire("k", "t1", 1_000)
            assert await backend.acquire("k", "t2", 1_000) is False

            fake_time.monotonic.return_value = 101.5
            assert await backend.acquire("k", "t2", 1_000) is True


class TestSweepLock:
    async def test_without_redis_uses_memory(self) -> None:
        lock = SweepLock()
        token = await lock.acquire()
        assert token is not None
        assert lock.backend_name == "memory"
        assert await lock.acquire() is None

        await lock.release(token)
        assert await lock.acquire() is not None

    async def test_unreachable_redis_falls_back(self) -> None:
        lock = SweepLock(redis_url="redis://localhost:6399/0")
        lock._redis = AsyncMock()
        lock._redis.ping.return_value = False

        token = await lock.acquire()

        assert token is not None
        assert lock.backend_name == "memory"
        lock._redis.acquire.assert_not_awaited()

    async def test_redis_used_when_reachable(self) -> None:
        lock = SweepLock(redis_url="redis://localhost:6399/0")
        lock._redis = AsyncMock()
        lock._redis.ping.return_value = True
        lock._redis.acquire.return_value = True

        token = await lock.acquire()

        assert token is not None
        assert lock.backend_name == "redis"
        lock._redis.acquire.assert_awaited_once()
        await lock.release(token)
        lock._redis.release.assert_awaited_once()

    async def test_redis_error_mid_flight_falls_back(self) -> None:
        lock = SweepLock(redis_url="redis://localhost:6399/0")
        lock._redis = AsyncMock()
        lock._redis.ping.return_value = True
        lock._redis.acquire.side_effect = ConnectionError("lost")

        token = await lock.acquire()

        assert token is not None
        assert lock.backend_name == "memory"
