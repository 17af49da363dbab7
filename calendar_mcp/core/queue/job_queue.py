"""
Job Queue - durable, retryable execution of deferred work.

Each named queue keeps a priority index of PENDING jobs ordered by
(next_run_at, priority, insertion order) and runs them on a configurable
number of asyncio workers.

Several processes may run workers for the same queue over one shared
store (the API and `python -m calendar_mcp.jobs.worker`). The local index
is only a hint: a job is claimed by taking its lock in the store and
re-reading the stored record, and idle workers sync() to pick up jobs
written by other processes.

Lifecycle of a job:
    PENDING -> ACTIVE -> COMPLETED
                      -> PENDING (retry, attempts < max_attempts)
                      -> DEAD    (attempts == max_attempts)
                      -> FAILED  (processor raised UnrecoverableJobError)

Delivery is at-least-once: a worker that dies between running a processor
and recording COMPLETED leaves the job ACTIVE in the store with a lock that
eventually expires, and recover()/sync() put it back to PENDING.
Processors must be idempotent.
"""

import asyncio
import heapq
import itertools
import time
import uuid
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from calendar_mcp.core.queue.rate_limit import SlidingWindowLimiter
from calendar_mcp.core.queue.store import JobStore
from calendar_mcp.infrastructure.observability.logging import get_logger
from calendar_mcp.models.domain.job_domain import Job, JobOptions, JobState, RateLimit

logger = get_logger(__name__)

JobProcessor = Callable[[Any], Awaitable[Any]]

ANY_JOB = "*"


class QueueError(Exception):
    """Raised for queue misuse (unknown queue, closed queue)."""

    def __init__(self, message: str, queue_name: str | None = None, operation: str = "unknown"):
        super().__init__(message)
        self.queue_name = queue_name
        self.operation = operation


class UnrecoverableJobError(Exception):
    """Raise from a processor to fail a job permanently without retries."""


def _adopt(job: Job, stored: Job) -> None:
    """Copy the stored record onto the instance this process hands out."""
    for field in Job.model_fields:
        setattr(job, field, getattr(stored, field))


class JobQueue:
    def __init__(
        self,
        name: str,
        *,
        store: JobStore | None = None,
        default_options: JobOptions | None = None,
        concurrency: int = 1,
        rate_limit: RateLimit | None = None,
        clock: Callable[[], datetime] | None = None,
        poll_interval_seconds: float = 1.0,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        self.name = name
        self.store = store or JobStore()
        self.default_options = default_options or JobOptions()
        self.concurrency = concurrency
        self.poll_interval_seconds = poll_interval_seconds
        self._clock = clock or (lambda: datetime.now(UTC))
        self._limiter = SlidingWindowLimiter(rate_limit, self._clock) if rate_limit else None

        self._processors: dict[str, JobProcessor] = {}
        self._jobs: dict[str, Job] = {}
        self._pending: list[tuple[datetime, int, int, str]] = []
        self._indexed: dict[str, datetime] = {}
        self._sequence = itertools.count()
        self._active: set[str] = set()
        self._owner = f"{name}:{uuid.uuid4().hex}"

        self._wakeup = asyncio.Event()
        self._workers: list[asyncio.Task] = []
        self._closing = False
        self._last_sync = 0.0

    # ------------------------------------------------------------------
    # Registration and enqueue
    # ------------------------------------------------------------------

    def process(
        self, processor: JobProcessor, job_name: str | None = None, concurrency: int | None = None
    ) -> None:
        """
        Register the processor for a job name (or for every job name).

        The processor receives the job payload and either returns an outcome
        or raises.
        """
        self._processors[job_name or ANY_JOB] = processor
        if concurrency is not None:
            if concurrency < 1:
                raise ValueError("concurrency must be at least 1")
            self.concurrency = concurrency
        logger.info("Registered job processor", queue=self.name, job_name=job_name or ANY_JOB)

    async def add(
        self, payload: Any, options: JobOptions | None = None, job_name: str = "default"
    ) -> Job:
        """
        Create a PENDING job due at now + delay.

        Returns:
            Job: The stored job record
        """
        if self._closing:
            raise QueueError("Queue is closed", queue_name=self.name, operation="add")

        options = options or self.default_options
        job = Job(
            queue_name=self.name,
            name=job_name,
            payload=payload,
            max_attempts=options.max_attempts,
            priority=options.priority or 0,
            next_run_at=self._clock() + timedelta(milliseconds=options.delay_ms),
            backoff=options.backoff,
            remove_on_complete=options.remove_on_complete,
        )

        await self.store.save(job)
        self._jobs[job.id] = job
        self._push(job)

        logger.info(
            "Job enqueued",
            queue=self.name,
            job_id=job.id,
            job_name=job_name,
            delay_ms=options.delay_ms,
            max_attempts=job.max_attempts,
        )
        return job

    def _push(self, job: Job) -> None:
        if self._is_indexed(job):
            return
        self._indexed[job.id] = job.next_run_at
        heapq.heappush(
            self._pending, (job.next_run_at, job.priority, next(self._sequence), job.id)
        )
        self._wakeup.set()

    def _is_indexed(self, job: Job) -> bool:
        return job.state == JobState.PENDING and self._indexed.get(job.id) == job.next_run_at

    def _drop_head(self) -> None:
        run_at, _, _, job_id = heapq.heappop(self._pending)
        if self._indexed.get(job_id) == run_at:
            del self._indexed[job_id]

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _pop_due(self) -> Job | None:
        """
        Pop the earliest due PENDING job from the local index.

        Runs without awaiting, so two workers of this queue never pop the
        same entry.
        """
        now = self._clock()
        while self._pending:
            run_at, _, _, job_id = self._pending[0]
            job = self._jobs.get(job_id)

            # Drop index entries made stale by retries, retention or manual retry
            if (
                job is None
                or job.state != JobState.PENDING
                or job.next_run_at != run_at
                or job_id in self._active
            ):
                self._drop_head()
                continue

            if run_at > now:
                return None
            if self._limiter is not None and not self._limiter.try_acquire():
                return None

            self._drop_head()
            self._active.add(job_id)
            return job

        return None

    async def _acquire_due(self) -> Job | None:
        """Claim the earliest due job and mark it ACTIVE. The job's lock is held on return."""
        while True:
            job = self._pop_due()
            if job is None:
                return None
            if await self._claim(job):
                return job
            self._active.discard(job.id)

    async def _claim(self, job: Job) -> bool:
        if not await self.store.lock(job, self._owner):
            logger.debug("Job locked by another worker", queue=self.name, job_id=job.id)
            return False

        stored = await self.store.load(self.name, job.id)
        now = self._clock()
        if stored is None:
            # Removed by another process after completing
            self._jobs.pop(job.id, None)
            await self.store.unlock(job, self._owner)
            return False

        if stored.state.is_terminal or (
            stored.state == JobState.PENDING and stored.next_run_at > now
        ):
            _adopt(job, stored)
            await self.store.unlock(job, self._owner)
            if job.state == JobState.PENDING:
                self._push(job)
            logger.debug(
                "Job changed by another worker", queue=self.name, job_id=job.id, state=job.state
            )
            return False

        # Stored ACTIVE here means its previous owner died mid-attempt
        attempts = max(job.attempts, stored.attempts)
        _adopt(job, stored)
        job.attempts = attempts + 1
        job.started_at = now
        job.transition(JobState.ACTIVE)
        return True

    async def process_next(self) -> Job | None:
        """Run the earliest due job, if any. Returns the job after its attempt."""
        job = await self._acquire_due()
        if job is None:
            return None
        await self._execute(job)
        return job

    async def drain(self, max_jobs: int | None = None) -> list[Job]:
        """Run due jobs until none are left (or max_jobs attempts were made)."""
        processed: list[Job] = []
        while max_jobs is None or len(processed) < max_jobs:
            job = await self.process_next()
            if job is None:
                break
            processed.append(job)
        return processed

    async def _execute(self, job: Job) -> None:
        logger.debug(
            "Job attempt started",
            queue=self.name,
            job_id=job.id,
            job_name=job.name,
            attempt=job.attempts,
            max_attempts=job.max_attempts,
        )
        start_time = time.time()

        try:
            await self._persist(job)
            processor = self._processors.get(job.name) or self._processors.get(ANY_JOB)

            try:
                if processor is None:
                    logger.warning("Unknown job type", queue=self.name, job_name=job.name)
                    outcome = None
                else:
                    outcome = await processor(job.payload)
            except UnrecoverableJobError as e:
                self._mark_failed(job, e)
            except Exception as e:
                self._mark_retry_or_dead(job, e)
            else:
                self._mark_completed(job, outcome, duration_ms=(time.time() - start_time) * 1000)

            if job.state == JobState.COMPLETED and job.remove_on_complete:
                self._jobs.pop(job.id, None)
                await self.store.delete(job)
            else:
                await self._persist(job)
        finally:
            # The outcome is stored before the lock goes, so the next holder sees it
            await self.store.unlock(job, self._owner)
            self._active.discard(job.id)

    def _mark_completed(self, job: Job, outcome: Any, duration_ms: float) -> None:
        job.result = outcome
        job.last_error = None
        job.finished_at = self._clock()
        job.transition(JobState.COMPLETED)
        logger.info(
            "Job completed",
            queue=self.name,
            job_id=job.id,
            job_name=job.name,
            attempt=job.attempts,
            duration_ms=round(duration_ms, 2),
        )

    def _mark_failed(self, job: Job, error: Exception) -> None:
        job.last_error = f"{type(error).__name__}: {error}"
        job.finished_at = self._clock()
        job.transition(JobState.FAILED)
        logger.error(
            "Job failed permanently",
            queue=self.name,
            job_id=job.id,
            job_name=job.name,
            attempt=job.attempts,
            error=str(error),
        )

    def _mark_retry_or_dead(self, job: Job, error: Exception) -> None:
        job.last_error = f"{type(error).__name__}: {error}"

        if job.attempts < job.max_attempts:
            delay_ms = job.schedule_retry(self._clock())
            job.transition(JobState.PENDING)
            self._push(job)
            logger.warning(
                "Job attempt failed, retry scheduled",
                queue=self.name,
                job_id=job.id,
                job_name=job.name,
                attempt=job.attempts,
                max_attempts=job.max_attempts,
                delay_ms=delay_ms,
                error=str(error),
                error_type=type(error).__name__,
            )
            return

        job.finished_at = self._clock()
        job.transition(JobState.DEAD)
        logger.error(
            "Job dead-lettered after exhausting attempts",
            queue=self.name,
            job_id=job.id,
            job_name=job.name,
            attempts=job.attempts,
            error=str(error),
            error_type=type(error).__name__,
        )

    async def _persist(self, job: Job) -> None:
        try:
            await self.store.save(job)
        except Exception as e:
            # The in-memory record stays authoritative for this process
            logger.error(
                "Failed to persist job state",
                queue=self.name,
                job_id=job.id,
                state=job.state.value,
                error=str(e),
            )

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------

    def next_due_in_seconds(self) -> float | None:
        for run_at, _, _, job_id in sorted(self._pending):
            job = self._jobs.get(job_id)
            if job is not None and job.state == JobState.PENDING and job.next_run_at == run_at:
                return max((run_at - self._clock()).total_seconds(), 0.0)
        return None

    def _idle_delay(self) -> float:
        delay = self.poll_interval_seconds
        due_in = self.next_due_in_seconds()
        if due_in is not None:
            delay = min(delay, due_in)
        if self._limiter is not None:
            delay = max(delay, self._limiter.retry_after_seconds())
        return max(delay, 0.01)

    async def _worker(self, index: int) -> None:
        logger.debug("Queue worker started", queue=self.name, worker=index)
        while not self._closing:
            try:
                self._wakeup.clear()
                job = await self._acquire_due()
                if job is None:
                    await self._sync_if_due()
                    if self._wakeup.is_set():
                        continue
                    try:
                        await asyncio.wait_for(self._wakeup.wait(), timeout=self._idle_delay())
                    except TimeoutError:
                        pass
                    continue
                await self._execute(job)
            except Exception as e:
                logger.error(
                    "Queue worker error",
                    queue=self.name,
                    worker=index,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                await asyncio.sleep(self.poll_interval_seconds)
        logger.debug("Queue worker stopped", queue=self.name, worker=index)

    async def start(self) -> None:
        """Recover persisted jobs and start the worker tasks."""
        if self._workers:
            return
        self._closing = False
        await self.recover()
        self._workers = [
            asyncio.create_task(self._worker(index), name=f"queue:{self.name}:{index}")
            for index in range(self.concurrency)
        ]
        logger.info("Queue started", queue=self.name, concurrency=self.concurrency)

    async def close(self, timeout_seconds: float = 30.0) -> None:
        """Stop accepting jobs and let in-flight attempts finish."""
        self._closing = True
        self._wakeup.set()

        if self._workers:
            _, pending = await asyncio.wait(self._workers, timeout=timeout_seconds)
            for task in pending:
                task.cancel()
            if pending:
                logger.warning(
                    "Cancelled queue workers that did not stop in time",
                    queue=self.name,
                    count=len(pending),
                )
                await asyncio.gather(*pending, return_exceptions=True)
            self._workers = []

        logger.info("Queue closed", queue=self.name)

    @property
    def is_running(self) -> bool:
        return bool(self._workers) and not self._closing

    async def recover(self) -> int:
        """
        Load persisted jobs not yet known to this process.

        Unlocked ACTIVE jobs were interrupted mid-attempt and go back to
        PENDING, unless that was their final attempt. A locked ACTIVE job is
        still running in another process and is left alone.
        """
        recovered = 0
        for job in await self.store.load_queue(self.name):
            if job.id in self._jobs:
                continue
            self._jobs[job.id] = job

            if job.state == JobState.ACTIVE:
                await self._requeue_interrupted(job)

            if job.state == JobState.PENDING:
                self._push(job)
                recovered += 1

        if recovered:
            logger.info("Recovered pending jobs", queue=self.name, count=recovered)
        return recovered

    async def sync(self) -> int:
        """
        Reconcile the local index with the shared store.

        Picks up PENDING jobs written by other processes (new jobs, retries,
        manual retries), refreshes local records that lost a claim, and
        requeues ACTIVE jobs whose owner's lock has lapsed.

        Returns:
            int: Number of jobs (re)indexed
        """
        stale = {
            job.id
            for job in self._jobs.values()
            if not job.state.is_terminal and not self._is_indexed(job)
        }
        candidates = (await self.store.open_ids(self.name) | stale) - self._active

        picked = 0
        for job_id in candidates:
            local = self._jobs.get(job_id)
            if local is not None and self._is_indexed(local):
                continue

            stored = await self.store.load(self.name, job_id)
            if stored is None:
                continue
            if local is None:
                self._jobs[job_id] = local = stored
            else:
                _adopt(local, stored)

            if local.state == JobState.ACTIVE:
                await self._requeue_interrupted(local)
            if local.state == JobState.PENDING:
                self._push(local)
                picked += 1

        if picked:
            logger.debug("Synced jobs from store", queue=self.name, count=picked)
        return picked

    async def _sync_if_due(self) -> None:
        now = asyncio.get_running_loop().time()
        if now - self._last_sync < self.poll_interval_seconds:
            return
        self._last_sync = now
        await self.sync()

    async def _requeue_interrupted(self, job: Job) -> None:
        if not await self.store.lock(job, self._owner):
            return
        try:
            stored = await self.store.load(self.name, job.id)
            if stored is not None:
                _adopt(job, stored)
            if job.state != JobState.ACTIVE:
                return

            if job.attempts >= job.max_attempts:
                job.last_error = "Interrupted during final attempt"
                job.finished_at = self._clock()
                job.transition(JobState.DEAD)
            else:
                job.transition(JobState.PENDING)
            await self._persist(job)
            logger.warning(
                "Requeued interrupted job", queue=self.name, job_id=job.id, state=job.state
            )
        finally:
            await self.store.unlock(job, self._owner)

    # ------------------------------------------------------------------
    # Introspection and manual intervention
    # ------------------------------------------------------------------

    def get_metrics(self) -> dict[str, int]:
        """Counts by state. Read-only."""
        counts = {state.value: 0 for state in JobState}
        for job in self._jobs.values():
            counts[job.state.value] += 1
        return counts

    def get_job(self, job_id: str) -> Job | None:
        return self._jobs.get(job_id)

    def get_jobs(self, state: JobState | None = None) -> list[Job]:
        jobs = [job for job in self._jobs.values() if state is None or job.state == state]
        return sorted(jobs, key=lambda job: job.sort_key())

    async def retry_job(self, job_id: str) -> Job | None:
        """Move a DEAD or FAILED job back to PENDING with a fresh attempt budget."""
        job = self._jobs.get(job_id)
        if job is None or job.state not in (JobState.DEAD, JobState.FAILED):
            return None

        job.attempts = 0
        job.finished_at = None
        job.next_run_at = max(job.next_run_at, self._clock())
        job.transition(JobState.PENDING)
        await self._persist(job)
        self._push(job)

        logger.info("Job manually re-queued", queue=self.name, job_id=job.id)
        return job

    async def clean(self, older_than: timedelta) -> int:
        """Remove COMPLETED jobs finished before now - older_than. DEAD jobs are kept."""
        cutoff = self._clock() - older_than
        expired = [
            job
            for job in self._jobs.values()
            if job.state == JobState.COMPLETED and job.finished_at and job.finished_at < cutoff
        ]
        for job in expired:
            self._jobs.pop(job.id, None)
            await self.store.delete(job)

        if expired:
            logger.info("Cleaned completed jobs", queue=self.name, removed=len(expired))
        return len(expired)
