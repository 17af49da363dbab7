"""
Job Queue Manager - owns the named queues of one process.

Queues are partitioned by work category so each can carry its own
concurrency, default retry options and rate limit.

Usage:
    manager = JobQueueManager()
    manager.register_processor("notification-jobs", send_reminder, job_name="send-reminder")
    await manager.enqueue("notification-jobs", {"message": "Standup"}, job_name="send-reminder")
    await manager.start()
    ...
    await manager.close()
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from calendar_mcp.core.queue.job_queue import JobProcessor, JobQueue, QueueError
from calendar_mcp.core.queue.store import JobStore
from calendar_mcp.infrastructure.observability.logging import get_logger
from calendar_mcp.models.domain.job_domain import Job, JobOptions, JobState, RateLimit

logger = get_logger(__name__)


class JobQueueManager:
    def __init__(
        self,
        store: JobStore | None = None,
        default_options: JobOptions | None = None,
        concurrency: int = 5,
        clock: Callable[[], datetime] | None = None,
        poll_interval_seconds: float = 1.0,
    ):
        self.store = store or JobStore()
        self.default_options = default_options or JobOptions()
        self.concurrency = concurrency
        self.poll_interval_seconds = poll_interval_seconds
        self._clock = clock or (lambda: datetime.now(UTC))
        self._queues: dict[str, JobQueue] = {}
        self._started = False

    def queue(
        self,
        name: str,
        *,
        concurrency: int | None = None,
        default_options: JobOptions | None = None,
        rate_limit: RateLimit | None = None,
    ) -> JobQueue:
        """Get a queue by name, creating it on first use."""
        existing = self._queues.get(name)
        if existing is not None:
            return existing

        queue = JobQueue(
            name,
            store=self.store,
            default_options=default_options or self.default_options,
            concurrency=concurrency or self.concurrency,
            rate_limit=rate_limit,
            clock=self._clock,
            poll_interval_seconds=self.poll_interval_seconds,
        )
        self._queues[name] = queue
        logger.info("Created job queue", queue=name, concurrency=queue.concurrency)
        return queue

    def _get(self, name: str, operation: str) -> JobQueue:
        queue = self._queues.get(name)
        if queue is None:
            raise QueueError(f"Unknown queue: {name}", queue_name=name, operation=operation)
        return queue

    @property
    def queue_names(self) -> list[str]:
        return list(self._queues)

    def register_processor(
        self, queue_name: str, processor: JobProcessor, job_name: str | None = None
    ) -> None:
        self.queue(queue_name).process(processor, job_name=job_name)

    async def enqueue(
        self,
        queue_name: str,
        payload: Any,
        options: JobOptions | None = None,
        job_name: str = "default",
    ) -> Job:
        return await self.queue(queue_name).add(payload, options=options, job_name=job_name)

    def get_metrics(self, queue_name: str | None = None) -> dict[str, Any]:
        """
        Counts by state, for one queue or for every queue.

        Returns:
            dict: {"timestamp": ..., "queues": {name: {state: count}}}
        """
        names = [queue_name] if queue_name else list(self._queues)
        return {
            "timestamp": self._clock().isoformat(),
            "queues": {name: self._get(name, "get_metrics").get_metrics() for name in names},
        }

    def get_job(self, queue_name: str, job_id: str) -> Job | None:
        return self._get(queue_name, "get_job").get_job(job_id)

    def get_jobs(self, queue_name: str, state: JobState | None = None) -> list[Job]:
        return self._get(queue_name, "get_jobs").get_jobs(state)

    async def retry_job(self, queue_name: str, job_id: str) -> Job | None:
        return await self._get(queue_name, "retry_job").retry_job(job_id)

    async def clean(self, queue_name: str, older_than: timedelta) -> int:
        return await self._get(queue_name, "clean").clean(older_than)

    async def clean_all(self, older_than: timedelta) -> int:
        removed = 0
        for queue in self._queues.values():
            removed += await queue.clean(older_than)
        return removed

    async def drain(self) -> list[Job]:
        """Run every due job on every queue in the calling task."""
        processed: list[Job] = []
        for queue in self._queues.values():
            processed.extend(await queue.drain())
        return processed

    async def recover(self) -> int:
        """Load persisted jobs into every queue without starting workers."""
        recovered = 0
        for queue in self._queues.values():
            recovered += await queue.recover()
        return recovered

    async def start(self) -> None:
        for queue in self._queues.values():
            await queue.start()
        self._started = True
        logger.info("Job queues started", queues=self.queue_names)

    async def close(self) -> None:
        """Close every queue, then release the store connection."""
        for name, queue in self._queues.items():
            try:
                await queue.close()
            except Exception as e:
                logger.error("Error closing queue", queue=name, error=str(e))

        await self.store.close()
        self._started = False
        logger.info("Job queues closed")

    @property
    def is_running(self) -> bool:
        return self._started
