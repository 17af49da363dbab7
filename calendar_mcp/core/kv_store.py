"""
Key-value store abstraction (get / set with optional TTL / set-if-absent / delete).

RedisClient (calendar_mcp.services.redis_client) satisfies the same
protocol; InMemoryKeyValueStore is used when no Redis URL is configured
and in tests.
"""

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Protocol


class KeyValueStore(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set_with_ttl(self, key: str, value: str, ttl_s: int | None = None) -> bool: ...

    async def set_if_absent(self, key: str, value: str, ttl_s: int | None = None) -> bool: ...

    async def delete(self, key: str) -> bool: ...

    async def sadd(self, key: str, member: str) -> bool: ...

    async def srem(self, key: str, member: str) -> bool: ...

    async def smembers(self, key: str) -> set[str]: ...

    async def close(self) -> None: ...


class InMemoryKeyValueStore:
    """Process-local store with lazy TTL expiry."""

    def __init__(self, clock: Callable[[], datetime] | None = None):
        self._clock = clock or (lambda: datetime.now(UTC))
        self._values: dict[str, tuple[str, datetime | None]] = {}
        self._sets: dict[str, set[str]] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> str | None:
        entry = self._values.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            self._values.pop(key, None)
            return None
        return value

    async def set_with_ttl(self, key: str, value: str, ttl_s: int | None = None) -> bool:
        expires_at = self._clock() + timedelta(seconds=ttl_s) if ttl_s else None
        async with self._lock:
            self._values[key] = (value, expires_at)
        return True

    async def set_if_absent(self, key: str, value: str, ttl_s: int | None = None) -> bool:
        expires_at = self._clock() + timedelta(seconds=ttl_s) if ttl_s else None
        async with self._lock:
            if await self.get(key) is not None:
                return False
            self._values[key] = (value, expires_at)
        return True

    async def delete(self, key: str) -> bool:
        async with self._lock:
            existed = self._values.pop(key, None) is not None
            existed = self._sets.pop(key, None) is not None or existed
        return existed

    async def sadd(self, key: str, member: str) -> bool:
        async with self._lock:
            members = self._sets.setdefault(key, set())
            added = member not in members
            members.add(member)
        return added

    async def srem(self, key: str, member: str) -> bool:
        async with self._lock:
            members = self._sets.get(key, set())
            removed = member in members
            members.discard(member)
        return removed

    async def smembers(self, key: str) -> set[str]:
        return set(self._sets.get(key, set()))

    async def close(self) -> None:
        return None
