"""Single-runner lock for the escalation sweep.

With several API workers each running the scheduler, only one of them
may sweep at a time or expired requests would be escalated twice.  The
lock is a Redis key set with ``NX`` and a ``PX`` expiry, released only by
its owner token.  Without Redis (or when Redis stops answering) a
process-local lock is used instead, which is correct for one worker.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from typing import Final, Protocol, runtime_checkable
from uuid import uuid4

import structlog

logger = structlog.get_logger(__name__)

_LOCK_KEY: Final[str] = "safeline:escalation:sweep"

# Delete the key only if this owner still holds it
_RELEASE_SCRIPT: Final[str] = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


@runtime_checkable
class LockBackend(Protocol):
    async def acquire(self, key: str, token: str, ttl_ms: int) -> bool: ...

    async def release(self, key: str, token: str) -> None: ...


class RedisLockBackend:
    """``SET key token NX PX ttl`` on ``redis.asyncio``."""

    __slots__ = ("_redis",)

    def __init__(self, url: str) -> None:
        import redis.asyncio as aioredis

        self._redis = aioredis.Redis.from_url(url, decode_responses=True)

    async def acquire(self, key: str, token: str, ttl_ms: int) -> bool:
        return bool(await self._redis.set(key, token, nx=True, px=ttl_ms))

    async def release(self, key: str, token: str) -> None:
        await self._redis.eval(_RELEASE_SCRIPT, 1, key, token)

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except Exception:
            return False

    async def close(self) -> None:
        await self._redis.aclose()


class InMemoryLockBackend:
    """Process-local equivalent with the same expiry semantics."""

    __slots__ = ("_held", "_lock")

    def __init__(self) -> None:
        self._held: dict[str, tuple[str, float]] = {}
        self._lock = asyncio.Lock()

    async def acquire(self, key: str, token: str, ttl_ms: int) -> bool:
        async with self._lock:
            now = time.monotonic()
            current = self._held.get(key)
            if current is not None and current[1] > now:
                return False
            self._held[key] = (token, now + ttl_ms / 1000)
            return True

    async def release(self, key: str, token: str) -> None:
        async with self._lock:
            current = self._held.get(key)
            if current is not None and current[0] == token:
                del self._held[key]


# ---------------------------------------------------------------------------
# SweepLock
# ---------------------------------------------------------------------------


class SweepLock:
    """Try-lock with automatic Redis -> in-memory fallback.

    Parameters
    ----------
    redis_url:
        Redis connection string.  Empty or *None* skips Redis entirely.
    ttl_seconds:
        Lock expiry; keep it below the sweep interval so a crashed holder
        never blocks more than one tick.
    """

    __slots__ = ("_fallback", "_redis", "_redis_available", "_redis_checked", "_ttl_ms")

    def __init__(self, *, redis_url: str | None = None, ttl_seconds: int = 55) -> None:
        self._ttl_ms = ttl_seconds * 1000
        self._fallback = InMemoryLockBackend()
        self._redis: RedisLockBackend | None = None
        self._redis_available = False
        self._redis_checked = False

        if redis_url:
            try:
                self._redis = RedisLockBackend(redis_url)
            except Exception:
                logger.warning("sweep_lock.redis_init_failed", redis_url=redis_url)
                self._redis = None

    @property
    def backend_name(self) -> str:
        return "redis" if self._redis_available else "memory"

    async def _backend(self) -> LockBackend:
        if self._redis is not None and not self._redis_checked:
            self._redis_checked = True
            self._redis_available = await self._redis.ping()
            if self._redis_available:
                logger.info("sweep_lock.redis_connected")
            else:
                logger.warning("sweep_lock.redis_unavailable_using_inmemory")

        if self._redis_available and self._redis is not None:
            return self._redis
        return self._fallback

    async def acquire(self) -> str | None:
        """Return an owner token, or *None* if another runner holds the lock."""
        token = uuid4().hex
        backend = await self._backend()
        try:
            acquired = await backend.acquire(_LOCK_KEY, token, self._ttl_ms)
        except Exception:
            logger.warning("sweep_lock.redis_op_failed", op="acquire")
            self._redis_available = False
            acquired = await self._fallback.acquire(_LOCK_KEY, token, self._ttl_ms)
        return token if acquired else None

    async def release(self, token: str) -> None:
        backend = await self._backend()
        try:
            await backend.release(_LOCK_KEY, token)
        except Exception:
            logger.warning("sweep_lock.redis_op_failed", op="release")
            self._redis_available = False
        # Covers a lock taken on the fallback before Redis failed over
        await self._fallback.release(_LOCK_KEY, token)

    async def close(self) -> None:
        if self._redis is not None:
            with contextlib.suppress(Exception):
                await self._redis.close()
