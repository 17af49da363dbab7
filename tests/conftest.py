from datetime import UTC, datetime, timedelta

import pytest

from calendar_mcp.core.queue.manager import JobQueueManager
from calendar_mcp.core.queue.store import JobStore

# Monday morning
REFERENCE_TIME = datetime(2025, 1, 6, 9, 0, tzinfo=UTC)


class FrozenClock:
    """Injectable clock that only moves when told to."""

    def __init__(self, now: datetime = REFERENCE_TIME):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeRedis:
    def __init__(self):
        self.store: dict[str, str] = {}
        self.sets: dict[str, set[str]] = {}
        self.closed = False

    async def set_with_ttl(self, key: str, value: str, ttl_s: int | None = None) -> bool:
        self.store[key] = value
        return True

    async def set_if_absent(self, key: str, value: str, ttl_s: int | None = None) -> bool:
        if key in self.store:
            return False
        self.store[key] = value
        return True

    async def get(self, key: str) -> str | None:
        return self.store.get(key)

    async def delete(self, key: str) -> bool:
        return self.store.pop(key, None) is not None

    async def sadd(self, key: str, member: str) -> bool:
        members = self.sets.setdefault(key, set())
        added = member not in members
        members.add(member)
        return added

    async def srem(self, key: str, member: str) -> bool:
        members = self.sets.get(key, set())
        removed = member in members
        members.discard(member)
        return removed

    async def smembers(self, key: str) -> set[str]:
        return set(self.sets.get(key, set()))

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def queue_manager(clock, fake_redis):
    return JobQueueManager(store=JobStore(fake_redis), clock=clock, poll_interval_seconds=0.01)
