"""
Per-user memory: context values, preferences and conversation history.

Stored as JSON documents on a key-value store:
    memory:context:{user_id}      -> {key: {"value": ..., "timestamp": ...}}
    memory:preferences:{user_id}  -> {..., "user_id": ..., "updated_at": ...}
    memory:history:{user_id}      -> [{"timestamp": ..., "message": ..., "role": ...}]
"""

import asyncio
import json
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from calendar_mcp.core.kv_store import InMemoryKeyValueStore, KeyValueStore
from calendar_mcp.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

MAX_HISTORY_ITEMS = 100


class MemoryStoreError(Exception):
    def __init__(self, message: str, user_id: str | None = None, operation: str = "unknown"):
        super().__init__(message)
        self.user_id = user_id
        self.operation = operation


class MemoryStore:
    def __init__(
        self,
        kv: KeyValueStore | None = None,
        max_history_items: int = MAX_HISTORY_ITEMS,
        clock: Callable[[], datetime] | None = None,
    ):
        self.kv = kv or InMemoryKeyValueStore()
        self.max_history_items = max_history_items
        self._clock = clock or (lambda: datetime.now(UTC))
        # key -> (lock, number of holders and waiters); dropped when nobody uses it
        self._locks: dict[str, tuple[asyncio.Lock, int]] = {}

    @asynccontextmanager
    async def _locked(self, key: str) -> AsyncIterator[None]:
        lock, users = self._locks.get(key, (None, 0))
        lock = lock or asyncio.Lock()
        self._locks[key] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._locks[key]
            if users == 1:
                del self._locks[key]
            else:
                self._locks[key] = (lock, users - 1)

    async def _load(self, key: str, default: Any) -> Any:
        raw = await self.kv.get(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error("Corrupt memory record", key=key, error=str(e))
            return default

    async def _save(self, key: str, value: Any, user_id: str, operation: str) -> None:
        if not await self.kv.set_with_ttl(key, json.dumps(value, default=str)):
            raise MemoryStoreError("Failed to write memory record", user_id, operation)

    # Context

    async def store_context(self, user_id: str, key: str, value: Any) -> None:
        storage_key = f"memory:context:{user_id}"
        async with self._locked(storage_key):
            context = await self._load(storage_key, {})
            context[key] = {"value": value, "timestamp": self._clock().isoformat()}
            await self._save(storage_key, context, user_id, "store_context")
        logger.debug("Stored context", user_id=user_id, key=key)

    async def get_context(self, user_id: str, key: str) -> Any:
        context = await self._load(f"memory:context:{user_id}", {})
        entry = context.get(key)
        return entry["value"] if entry else None

    async def clear_context(self, user_id: str, key: str | None = None) -> None:
        storage_key = f"memory:context:{user_id}"
        async with self._locked(storage_key):
            if key is None:
                await self.kv.delete(storage_key)
            else:
                context = await self._load(storage_key, {})
                if context.pop(key, None) is not None:
                    await self._save(storage_key, context, user_id, "clear_context")
        logger.debug("Cleared context", user_id=user_id, key=key)

    async def get_relevant_context(self, user_id: str, query: str | None = None) -> dict:
        """All stored context for the user; no similarity ranking is applied."""
        return await self._load(f"memory:context:{user_id}", {})

    # Preferences

    async def store_preferences(self, user_id: str, preferences: dict[str, Any]) -> dict:
        """Merge a partial preferences update and return the full preferences."""
        storage_key = f"memory:preferences:{user_id}"
        async with self._locked(storage_key):
            current = await self._load(storage_key, {"user_id": user_id})
            updated = {**current, **preferences, "user_id": user_id}
            updated["updated_at"] = self._clock().isoformat()
            await self._save(storage_key, updated, user_id, "store_preferences")

        logger.debug("Stored preferences", user_id=user_id, keys=sorted(preferences))
        return updated

    async def get_preferences(self, user_id: str) -> dict | None:
        return await self._load(f"memory:preferences:{user_id}", None)

    # History

    async def store_message(self, user_id: str, message: str, role: str = "user") -> None:
        storage_key = f"memory:history:{user_id}"
        async with self._locked(storage_key):
            history = await self._load(storage_key, [])
            history.append(
                {"timestamp": self._clock().isoformat(), "message": message, "role": role}
            )
            await self._save(
                storage_key, history[-self.max_history_items :], user_id, "store_message"
            )

    async def get_history(self, user_id: str, limit: int = 10) -> list[dict]:
        history = await self._load(f"memory:history:{user_id}", [])
        return history[-limit:] if limit > 0 else []

    async def clear_history(self, user_id: str) -> None:
        await self.kv.delete(f"memory:history:{user_id}")
        logger.debug("Cleared conversation history", user_id=user_id)
