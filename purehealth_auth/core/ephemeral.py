"""
Ephemeral key-value storage.

Pending WebAuthn challenges and temporary registrations live here rather
than in PostgreSQL. Two backends share one interface:

- MemoryEphemeralStore: a dict guarded by an asyncio lock, for a single API
  process and for tests.
- RedisEphemeralStore: Redis with native TTLs and GETDEL, for deployments
  running several API processes.

``take`` is the only read operation and is destructive: a value can be
returned at most once.
"""

import asyncio
import json
import logging
import time
from collections.abc import Callable
from typing import Any, Protocol

import redis.asyncio as redis

from purehealth_auth.config import Settings, get_settings

logger = logging.getLogger(__name__)

# Module-level cache for the Redis client
_redis_client: redis.Redis | None = None


async def get_redis() -> redis.Redis:
    """
    Get the shared Redis client instance.

    Creates a new connection on first call, reuses for subsequent calls.
    """
    global _redis_client

    if _redis_client is None:
        settings = get_settings()
        _redis_client = redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
        )

    return _redis_client


async def close_redis() -> None:
    """Close the Redis connection on application shutdown."""
    global _redis_client

    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None


class EphemeralStore(Protocol):
    """Interface shared by the ephemeral storage backends."""

    async def put(self, key: str, value: dict[str, Any], ttl_seconds: int) -> None: ...

    async def take(self, key: str) -> dict[str, Any] | None: ...

    async def sweep(self) -> int: ...


class MemoryEphemeralStore:
    """In-process ephemeral store with TTL expiry."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._items: dict[str, tuple[float, dict[str, Any]]] = {}
        self._lock = asyncio.Lock()

    async def put(self, key: str, value: dict[str, Any], ttl_seconds: int) -> None:
        async with self._lock:
            self._sweep_locked()
            self._items[key] = (self._clock() + ttl_seconds, value)

    async def take(self, key: str) -> dict[str, Any] | None:
        async with self._lock:
            item = self._items.pop(key, None)
        if item is None:
            return None
        deadline, value = item
        if deadline <= self._clock():
            return None
        return value

    async def sweep(self) -> int:
        """Remove expired entries. Returns the number removed."""
        async with self._lock:
            return self._sweep_locked()

    def _sweep_locked(self) -> int:
        now = self._clock()
        expired = [key for key, (deadline, _) in self._items.items() if deadline <= now]
        for key in expired:
            del self._items[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._items)


class RedisEphemeralStore:
    """Redis-backed ephemeral store. Expiry is delegated to Redis TTLs."""

    def __init__(self, client: redis.Redis | None = None, prefix: str = "purehealth:"):
        self._client = client
        self._prefix = prefix

    async def _redis(self) -> redis.Redis:
        if self._client is None:
            self._client = await get_redis()
        return self._client

    async def put(self, key: str, value: dict[str, Any], ttl_seconds: int) -> None:
        client = await self._redis()
        # Redis rejects a zero expiry; the stored expires_at still governs
        await client.set(f"{self._prefix}{key}", json.dumps(value), ex=max(ttl_seconds, 1))

    async def take(self, key: str) -> dict[str, Any] | None:
        client = await self._redis()
        # GETDEL is atomic, so concurrent takers cannot both see the value
        raw = await client.getdel(f"{self._prefix}{key}")
        if raw is None:
            return None
        return json.loads(raw)

    async def sweep(self) -> int:
        return 0


def build_ephemeral_store(settings: Settings | None = None) -> EphemeralStore:
    """Create the configured ephemeral store backend."""
    settings = settings or get_settings()
    if settings.challenge_store == "redis":
        logger.info("Using Redis for WebAuthn challenges and temporary registrations")
        return RedisEphemeralStore()
    if settings.is_production:
        logger.warning(
            "In-memory challenge store in production: challenges are not shared "
            "between API processes"
        )
    return MemoryEphemeralStore()
