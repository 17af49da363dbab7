"""
Job persistence on top of a key-value store.

Layout:
    jobs:{queue}:{job_id}       -> Job JSON
    jobs:{queue}:{job_id}:lock  -> owner token of the worker running it (SET NX, expires)
    jobs:{queue}:index          -> set of job ids
    jobs:{queue}:open           -> set of ids whose stored state is PENDING or ACTIVE

Processes sharing a store coordinate through the lock key only: a job is
run by whoever holds its lock, and the holder re-reads the record before
running it.
"""

from calendar_mcp.core.kv_store import InMemoryKeyValueStore, KeyValueStore
from calendar_mcp.infrastructure.observability.logging import get_logger
from calendar_mcp.models.domain.job_domain import Job

logger = get_logger(__name__)

DEFAULT_LOCK_TTL_SECONDS = 300


class JobStoreError(Exception):
    """Raised when a job record cannot be persisted or loaded."""

    def __init__(self, message: str, job_id: str | None = None, operation: str = "unknown"):
        super().__init__(message)
        self.job_id = job_id
        self.operation = operation


class JobStore:
    def __init__(
        self, kv: KeyValueStore | None = None, lock_ttl_seconds: int = DEFAULT_LOCK_TTL_SECONDS
    ):
        self.kv = kv or InMemoryKeyValueStore()
        # Must outlast the slowest processor run
        self.lock_ttl_seconds = lock_ttl_seconds

    @staticmethod
    def _job_key(queue_name: str, job_id: str) -> str:
        return f"jobs:{queue_name}:{job_id}"

    @staticmethod
    def _lock_key(queue_name: str, job_id: str) -> str:
        return f"jobs:{queue_name}:{job_id}:lock"

    @staticmethod
    def _index_key(queue_name: str) -> str:
        return f"jobs:{queue_name}:index"

    @staticmethod
    def _open_key(queue_name: str) -> str:
        return f"jobs:{queue_name}:open"

    async def save(self, job: Job) -> None:
        stored = await self.kv.set_with_ttl(
            self._job_key(job.queue_name, job.id), job.model_dump_json()
        )
        if not stored:
            raise JobStoreError("Failed to persist job", job_id=job.id, operation="save")
        await self.kv.sadd(self._index_key(job.queue_name), job.id)

        if job.state.is_terminal:
            await self.kv.srem(self._open_key(job.queue_name), job.id)
        else:
            await self.kv.sadd(self._open_key(job.queue_name), job.id)

    async def load(self, queue_name: str, job_id: str) -> Job | None:
        raw = await self.kv.get(self._job_key(queue_name, job_id))
        if raw is None:
            return None
        try:
            return Job.model_validate_json(raw)
        except ValueError as e:
            logger.error("Corrupt job record", queue=queue_name, job_id=job_id, error=str(e))
            return None

    async def delete(self, job: Job) -> None:
        await self.kv.delete(self._job_key(job.queue_name, job.id))
        await self.kv.srem(self._index_key(job.queue_name), job.id)
        await self.kv.srem(self._open_key(job.queue_name), job.id)

    async def load_queue(self, queue_name: str) -> list[Job]:
        jobs = []
        for job_id in await self.kv.smembers(self._index_key(queue_name)):
            job = await self.load(queue_name, job_id)
            if job is not None:
                jobs.append(job)
        return jobs

    async def open_ids(self, queue_name: str) -> set[str]:
        """Ids of jobs that are waiting or running, in any process."""
        return await self.kv.smembers(self._open_key(queue_name))

    async def lock(self, job: Job, owner: str) -> bool:
        """Take the job's lock. False when another worker (in any process) holds it."""
        return await self.kv.set_if_absent(
            self._lock_key(job.queue_name, job.id), owner, ttl_s=self.lock_ttl_seconds
        )

    async def unlock(self, job: Job, owner: str) -> None:
        key = self._lock_key(job.queue_name, job.id)
        holder = await self.kv.get(key)
        if holder == owner:
            await self.kv.delete(key)
        elif holder is not None:
            logger.warning(
                "Job lock taken over by another worker",
                queue=job.queue_name,
                job_id=job.id,
                holder=holder,
            )

    async def close(self) -> None:
        await self.kv.close()
