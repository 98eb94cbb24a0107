"""Key-value store behind presence, liveness and signaling state.

Room coordination state is small, per-meeting and best-effort, so the
components above only need get/set/delete of JSON-shaped dicts plus a
per-key lock for their read-modify-write sequences.

Two backends:
- InMemoryRoomStore: single-process dict guarded by per-key asyncio locks
  that are dropped once no caller holds or awaits them.
- RedisRoomStore: JSON values in Redis with a redis-py distributed lock,
  so several API processes can share room state.
"""

from __future__ import annotations

import copy
import json
import time
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any, Protocol

import redis.asyncio as aioredis
import structlog

from src.fitcoach.core.locks import KeyedLock

logger = structlog.get_logger(__name__)

Clock = Callable[[], int]


def system_clock_ms() -> int:
    """Wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class RoomStateStore(Protocol):
    """Minimal per-key storage consumed by the room components."""

    async def get(self, key: str) -> dict[str, Any] | None: ...

    async def set(self, key: str, value: dict[str, Any]) -> None: ...

    async def delete(self, key: str) -> None: ...

    def lock(self, key: str) -> AbstractAsyncContextManager[None]: ...


class InMemoryRoomStore:
    """Process-local room state.

    Values are deep-copied on the way in and out so callers never hold a
    reference into the stored state outside a lock.
    """

    def __init__(self) -> None:
        self._data: dict[str, dict[str, Any]] = {}
        self._locks = KeyedLock()

    async def get(self, key: str) -> dict[str, Any] | None:
        value = self._data.get(key)
        return copy.deepcopy(value) if value is not None else None

    async def set(self, key: str, value: dict[str, Any]) -> None:
        self._data[key] = copy.deepcopy(value)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    @asynccontextmanager
    async def lock(self, key: str) -> AsyncIterator[None]:
        async with self._locks.hold(key):
            yield

    def keys(self) -> list[str]:
        return sorted(self._data)

    def held_locks(self) -> int:
        return len(self._locks)


class RedisRoomStore:
    """Room state shared across processes through Redis.

    Args:
        redis: Async Redis client (decode_responses=True).
        lock_timeout: Seconds a lock may be held, and the longest a caller
            waits to acquire one.
        namespace: Prefix applied to every key.
    """

    def __init__(
        self,
        redis: aioredis.Redis,
        *,
        lock_timeout: float = 5.0,
        namespace: str = "fitcoach",
    ) -> None:
        self._redis = redis
        self._lock_timeout = lock_timeout
        self._namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    async def get(self, key: str) -> dict[str, Any] | None:
        raw = await self._redis.get(self._key(key))
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, key: str, value: dict[str, Any]) -> None:
        await self._redis.set(self._key(key), json.dumps(value))

    async def delete(self, key: str) -> None:
        await self._redis.delete(self._key(key))

    @asynccontextmanager
    async def lock(self, key: str) -> AsyncIterator[None]:
        """Hold the distributed lock for ``key``.

        Raises:
            redis.exceptions.LockError: If the lock cannot be acquired
                within ``lock_timeout`` seconds.
        """
        redis_lock = self._redis.lock(
            f"{self._key(key)}:lock",
            timeout=self._lock_timeout,
            blocking_timeout=self._lock_timeout,
        )
        async with redis_lock:
            yield
