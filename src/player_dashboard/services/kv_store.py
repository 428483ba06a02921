"""Key/value adapters with per-key TTL used by the revocation store."""

from __future__ import annotations

import fnmatch
import math
import time
from collections.abc import Callable
from typing import Protocol

import redis.asyncio as aioredis

# Redis TTL sentinels
TTL_MISSING = -2
TTL_PERSISTENT = -1


class KeyValueStore(Protocol):
    """Subset of Redis semantics the services rely on."""

    async def set(
        self,
        key: str,
        value: str,
        ttl_seconds: int | None = None,
        *,
        expire_at: float | None = None,
    ) -> None: ...

    async def get(self, key: str) -> str | None: ...

    async def keys(self, pattern: str) -> list[str]: ...

    async def ttl(self, key: str) -> int: ...

    async def delete(self, key: str) -> int: ...

    async def aclose(self) -> None: ...


class RedisKeyValueStore:
    """Key/value adapter backed by a Redis server."""

    def __init__(self, client: aioredis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> RedisKeyValueStore:
        return cls(aioredis.from_url(url, decode_responses=True))

    async def set(
        self,
        key: str,
        value: str,
        ttl_seconds: int | None = None,
        *,
        expire_at: float | None = None,
    ) -> None:
        if expire_at is not None:
            # EXAT takes whole seconds; round up so the key lives at least until expire_at
            await self._client.set(key, value, exat=math.ceil(expire_at))
        else:
            await self._client.set(key, value, ex=ttl_seconds)

    async def get(self, key: str) -> str | None:
        value = await self._client.get(key)
        if isinstance(value, bytes):
            return value.decode()
        return value

    async def keys(self, pattern: str) -> list[str]:
        found: list[str] = []
        async for key in self._client.scan_iter(match=pattern):
            found.append(key.decode() if isinstance(key, bytes) else str(key))
        return found

    async def ttl(self, key: str) -> int:
        return int(await self._client.ttl(key))

    async def delete(self, key: str) -> int:
        return int(await self._client.delete(key))

    async def aclose(self) -> None:
        await self._client.aclose()


class InMemoryKeyValueStore:
    """Process-local key/value store with Redis-like expiry semantics.

    Expired keys are evicted lazily on access. The clock is injectable so
    tests can move time forward without sleeping.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._data: dict[str, tuple[str, float | None]] = {}

    def _live(self, key: str) -> tuple[str, float | None] | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        expires_at = entry[1]
        if expires_at is not None and expires_at <= self._clock():
            del self._data[key]
            return None
        return entry

    async def set(
        self,
        key: str,
        value: str,
        ttl_seconds: int | None = None,
        *,
        expire_at: float | None = None,
    ) -> None:
        now = self._clock()
        if expire_at is None:
            if ttl_seconds is None or ttl_seconds <= 0:
                raise ValueError("ttl_seconds must be positive")
            expire_at = now + ttl_seconds
        elif expire_at <= now:
            raise ValueError("expire_at must be in the future")
        self._data[key] = (value, expire_at)

    async def get(self, key: str) -> str | None:
        entry = self._live(key)
        return entry[0] if entry else None

    async def keys(self, pattern: str) -> list[str]:
        return [
            key
            for key in list(self._data)
            if self._live(key) is not None and fnmatch.fnmatchcase(key, pattern)
        ]

    async def ttl(self, key: str) -> int:
        entry = self._live(key)
        if entry is None:
            return TTL_MISSING
        if entry[1] is None:
            return TTL_PERSISTENT
        return max(0, math.ceil(entry[1] - self._clock()))

    async def delete(self, key: str) -> int:
        return 1 if self._data.pop(key, None) is not None else 0

    async def aclose(self) -> None:
        self._data.clear()
