"""Expiring keyed stores.

An ExpiringStore answers one question: "has this key been claimed within
its TTL?". ``claim`` is atomic per key -- the first caller gets True, every
other caller gets False until the key expires.

Implementations are injected wherever a short-lived memory is needed (the
webhook gateway uses one to drop re-delivered envelopes by trace id), so no
module keeps its own global TTL map.

- RedisExpiringStore: SET NX EX against a shared Redis, survives restarts and
  is shared across worker processes.
- InMemoryExpiringStore: process-local dict with lazy purge, for single
  process deployments and tests.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Protocol

import redis.asyncio as aioredis


class ExpiringStore(Protocol):
    """Keyed store whose entries disappear after a TTL."""

    async def claim(self, key: str, ttl_seconds: int) -> bool: ...


class RedisExpiringStore:
    """ExpiringStore backed by Redis ``SET key value NX EX ttl``.

    Args:
        redis_client: Async Redis client (decode_responses is irrelevant here).
        prefix: Namespace prepended to every key.
    """

    def __init__(self, redis_client: aioredis.Redis, prefix: str = "meeting-hook") -> None:
        self._redis = redis_client
        self._prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    async def claim(self, key: str, ttl_seconds: int) -> bool:
        """Claim ``key`` for ``ttl_seconds``. Returns False if already claimed."""
        result = await self._redis.set(self._key(key), "1", nx=True, ex=ttl_seconds)
        return bool(result)


class InMemoryExpiringStore:
    """Process-local ExpiringStore.

    Expired entries are purged lazily on every access, so memory stays bounded
    by the number of keys claimed within one TTL window.

    Args:
        clock: Monotonic clock returning seconds. Injected for tests.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._expires_at: dict[str, float] = {}

    def _purge(self, now: float) -> None:
        expired = [k for k, deadline in self._expires_at.items() if deadline <= now]
        for k in expired:
            del self._expires_at[k]

    async def claim(self, key: str, ttl_seconds: int) -> bool:
        now = self._clock()
        self._purge(now)
        if key in self._expires_at:
            return False
        self._expires_at[key] = now + ttl_seconds
        return True

    def __len__(self) -> int:
        self._purge(self._clock())
        return len(self._expires_at)
