# calendar_mcp/services/redis_client.py
"""
Redis-backed KeyValueStore for job records, memory documents and indexes.

Every command goes through _run(): the pool is connected lazily, failures
are logged with the command name and the caller gets the command's neutral
value (None / False / empty set), never an exception. The job store turns a
False write into JobStoreError, so lost writes still surface.
"""

from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from calendar_mcp.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class RedisClient:
    def __init__(self, url: str, max_connections: int = 20, namespace: str = ""):
        self.url = url
        self.max_connections = max_connections
        self.namespace = namespace
        self.pool: ConnectionPool | None = None
        self.client: redis.Redis | None = None

    @property
    def connected(self) -> bool:
        return self.client is not None

    def _key(self, key: str) -> str:
        return f"{self.namespace}{key}"

    async def initialize(self) -> None:
        """Open the pool and verify it with a PING. Raises RuntimeError when unreachable."""
        if self.connected:
            return

        logger.info(
            "Connecting to Redis", host=self.url.rsplit("@", 1)[-1], max_connections=self.max_connections
        )
        pool = ConnectionPool.from_url(
            self.url,
            max_connections=self.max_connections,
            retry_on_timeout=True,
            retry_on_error=[redis.ConnectionError, redis.TimeoutError],
            socket_connect_timeout=10,
            socket_timeout=10,
            health_check_interval=30,
            decode_responses=True,
        )
        client = redis.Redis(connection_pool=pool)

        try:
            await client.ping()
        except Exception as e:
            logger.error("Redis connection failed", error=str(e), error_type=type(e).__name__)
            await pool.disconnect()
            raise RuntimeError("Redis initialization failed") from e

        self.pool, self.client = pool, client
        logger.info("Redis connected")

    async def close(self) -> None:
        client, pool = self.client, self.pool
        self.client, self.pool = None, None
        try:
            if client is not None:
                await client.aclose()
            if pool is not None:
                await pool.disconnect()
        except Exception as e:
            logger.error("Error closing Redis connection", error=str(e))
        else:
            logger.info("Redis connection closed")

    async def _run(
        self,
        command: str,
        key: str | None,
        call: Callable[[redis.Redis], Awaitable[T]],
        default: T,
    ) -> T:
        try:
            if not self.connected:
                logger.warning("Redis not connected, connecting on demand", command=command)
                await self.initialize()
            return await call(self.client)
        except Exception as e:
            logger.error(
                "Redis command failed",
                command=command,
                key=key[:40] if key else None,
                error=str(e),
                error_type=type(e).__name__,
            )
            return default

    async def ping(self) -> bool:
        return bool(await self._run("PING", None, lambda c: c.ping(), False))

    async def get(self, key: str) -> str | None:
        value: Any = await self._run("GET", key, lambda c: c.get(self._key(key)), None)
        return value or None

    async def set_with_ttl(self, key: str, value: str, ttl_s: int | None = None) -> bool:
        full_key = self._key(key)
        if ttl_s:
            result = await self._run("SETEX", key, lambda c: c.setex(full_key, ttl_s, value), False)
        else:
            result = await self._run("SET", key, lambda c: c.set(full_key, value), False)
        return bool(result)

    async def set_if_absent(self, key: str, value: str, ttl_s: int | None = None) -> bool:
        """SET NX, with an expiry when ttl_s is given. False when the key already exists."""
        full_key = self._key(key)
        result = await self._run(
            "SET NX", key, lambda c: c.set(full_key, value, nx=True, ex=ttl_s or None), None
        )
        return bool(result)

    async def delete(self, key: str) -> bool:
        return await self._run("DEL", key, lambda c: c.delete(self._key(key)), 0) > 0

    async def sadd(self, key: str, member: str) -> bool:
        return await self._run("SADD", key, lambda c: c.sadd(self._key(key), member), 0) > 0

    async def srem(self, key: str, member: str) -> bool:
        return await self._run("SREM", key, lambda c: c.srem(self._key(key), member), 0) > 0

    async def smembers(self, key: str) -> set[str]:
        members = await self._run("SMEMBERS", key, lambda c: c.smembers(self._key(key)), set())
        return set(members)
