import asyncio
from datetime import timedelta

import pytest

from calendar_mcp.core.queue.job_queue import JobQueue, QueueError, UnrecoverableJobError
from calendar_mcp.core.queue.store import JobStore
from calendar_mcp.models.domain.job_domain import (
    BackoffPolicy,
    Job,
    JobOptions,
    JobState,
    RateLimit,
)

P, A = JobState.PENDING, JobState.ACTIVE


@pytest.fixture
def store(fake_redis):
    return JobStore(fake_redis)


@pytest.fixture
def make_queue(store, clock):
    def _make(**kwargs) -> JobQueue:
        kwargs.setdefault("poll_interval_seconds", 0.01)
        return JobQueue("calendar-jobs", store=store, clock=clock, **kwargs)

    return _make


def fixed_retry(max_attempts: int = 3, delay_ms: int = 1000) -> JobOptions:
    return JobOptions(
        max_attempts=max_attempts, backoff=BackoffPolicy(type="fixed", base_delay_ms=delay_ms)
    )


@pytest.mark.asyncio
async def test_job_that_always_fails_is_dead_lettered_after_max_attempts(make_queue, clock):
    queue = make_queue()
    runs = []

    async def always_fails(payload):
        runs.append(payload)
        raise RuntimeError("provider down")

    queue.process(always_fails)
    job = await queue.add({"title": "Standup"}, fixed_retry(max_attempts=3))

    await queue.process_next()
    assert job.state == P
    assert await queue.process_next() is None  # backoff not elapsed

    clock.advance(seconds=1)
    await queue.process_next()
    clock.advance(seconds=1)
    await queue.process_next()

    assert job.state == JobState.DEAD
    assert job.attempts == 3
    assert job.state_history == [P, A, P, A, P, A, JobState.DEAD]
    assert job.last_error == "RuntimeError: provider down"

    clock.advance(minutes=10)
    assert await queue.process_next() is None
    assert len(runs) == 3


@pytest.mark.asyncio
async def test_exponential_backoff_schedules_retries(make_queue, clock):
    queue = make_queue()

    async def fails(payload):
        raise RuntimeError("nope")

    queue.process(fails)
    options = JobOptions(max_attempts=4, backoff=BackoffPolicy(base_delay_ms=1000))
    job = await queue.add({}, options)
    start = clock()

    await queue.process_next()
    assert job.next_run_at == start + timedelta(seconds=1)

    clock.advance(seconds=1)
    await queue.process_next()
    assert job.next_run_at == start + timedelta(seconds=3)


@pytest.mark.asyncio
async def test_unrecoverable_error_fails_without_retry(make_queue, clock):
    queue = make_queue()

    async def rejects(payload):
        raise UnrecoverableJobError("payload is missing the event id")

    queue.process(rejects)
    job = await queue.add({}, fixed_retry(max_attempts=5))

    await queue.process_next()
    clock.advance(minutes=5)

    assert await queue.process_next() is None
    assert job.state == JobState.FAILED
    assert job.attempts == 1
    assert job.state_history == [P, A, JobState.FAILED]


@pytest.mark.asyncio
async def test_due_jobs_run_by_time_then_priority(make_queue, clock):
    queue = make_queue()
    order = []

    async def record(payload):
        order.append(payload["n"])

    queue.process(record)
    await queue.add({"n": "low"}, JobOptions(priority=5))
    await queue.add({"n": "high"}, JobOptions(priority=1))
    await queue.add({"n": "default"})
    await queue.add({"n": "later"}, JobOptions(delay_ms=500, priority=0))

    await queue.drain()
    assert order == ["default", "high", "low"]

    clock.advance(milliseconds=500)
    await queue.drain()
    assert order[-1] == "later"


@pytest.mark.asyncio
async def test_delayed_job_is_not_run_early(make_queue, clock):
    queue = make_queue()
    ran = []

    async def record(payload):
        ran.append(payload)

    queue.process(record)
    job = await queue.add({"x": 1}, JobOptions(delay_ms=60_000))

    assert await queue.drain() == []
    assert queue.next_due_in_seconds() == 60.0

    clock.advance(minutes=1)
    assert await queue.drain() == [job]
    assert job.state == JobState.COMPLETED
    assert ran == [{"x": 1}]


@pytest.mark.asyncio
async def test_completed_jobs_are_persisted_or_removed(make_queue, store):
    queue = make_queue()

    async def ok(payload):
        return {"event_id": "evt-1"}

    queue.process(ok)
    kept = await queue.add({"keep": True})
    removed = await queue.add({"keep": False}, JobOptions(remove_on_complete=True))

    await queue.drain()

    stored = await store.load("calendar-jobs", kept.id)
    assert stored.state == JobState.COMPLETED
    assert stored.result == {"event_id": "evt-1"}
    assert await store.load("calendar-jobs", removed.id) is None
    assert queue.get_job(removed.id) is None


@pytest.mark.asyncio
async def test_processors_are_selected_by_job_name(make_queue):
    queue = make_queue()
    seen = []

    async def create(payload):
        seen.append("create")

    async def fallback(payload):
        seen.append("fallback")

    queue.process(create, job_name="create-event")
    queue.process(fallback)

    await queue.add({}, job_name="create-event")
    await queue.add({}, job_name="delete-event")
    await queue.drain()

    assert seen == ["create", "fallback"]


@pytest.mark.asyncio
async def test_unknown_job_name_completes_without_processor(make_queue):
    queue = make_queue()

    async def create(payload):
        raise AssertionError("should not run")

    queue.process(create, job_name="create-event")
    job = await queue.add({}, job_name="mystery")

    await queue.drain()

    assert job.state == JobState.COMPLETED
    assert job.result is None


@pytest.mark.asyncio
async def test_rate_limit_applies_to_first_attempts_and_retries(make_queue, clock):
    queue = make_queue(rate_limit=RateLimit(max_jobs=1, duration_ms=1000))
    attempts = []

    async def flaky(payload):
        attempts.append(payload["n"])
        if len(attempts) == 1:
            raise RuntimeError("transient")

    queue.process(flaky)
    await queue.add({"n": 1}, fixed_retry(delay_ms=0))
    await queue.add({"n": 2}, fixed_retry(delay_ms=0))

    assert len(await queue.drain()) == 1
    clock.advance(milliseconds=999)
    assert await queue.drain() == []

    clock.advance(milliseconds=1)
    assert len(await queue.drain()) == 1
    clock.advance(seconds=1)
    assert len(await queue.drain()) == 1
    # the retry of job 1 queues behind job 2, which was due at the same time
    assert attempts == [1, 2, 1]


@pytest.mark.asyncio
async def test_manual_retry_requeues_dead_jobs(make_queue):
    queue = make_queue()
    calls = []

    async def fail_once_then_ok(payload):
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("down")
        return "ok"

    queue.process(fail_once_then_ok)
    job = await queue.add({}, fixed_retry(max_attempts=1))
    await queue.drain()
    assert job.state == JobState.DEAD

    assert await queue.retry_job("missing") is None
    retried = await queue.retry_job(job.id)
    assert retried is job
    assert job.attempts == 0

    await queue.drain()
    assert job.state == JobState.COMPLETED
    assert job.result == "ok"
    assert await queue.retry_job(job.id) is None


@pytest.mark.asyncio
async def test_clean_removes_only_old_completed_jobs(make_queue, clock):
    queue = make_queue()

    async def maybe_fail(payload):
        if payload.get("fail"):
            raise RuntimeError("x")

    queue.process(maybe_fail)
    done = await queue.add({})
    dead = await queue.add({"fail": True}, fixed_retry(max_attempts=1))
    await queue.drain()

    assert await queue.clean(timedelta(days=7)) == 0

    clock.advance(days=8)
    assert await queue.clean(timedelta(days=7)) == 1
    assert queue.get_job(done.id) is None
    assert queue.get_job(dead.id).state == JobState.DEAD


@pytest.mark.asyncio
async def test_metrics_count_every_state(make_queue):
    queue = make_queue()

    async def maybe_fail(payload):
        if payload.get("fail"):
            raise UnrecoverableJobError("bad")

    queue.process(maybe_fail)
    await queue.add({})
    await queue.add({"fail": True})
    await queue.add({}, JobOptions(delay_ms=10_000))
    await queue.drain()

    assert queue.get_metrics() == {
        "PENDING": 1,
        "ACTIVE": 0,
        "COMPLETED": 1,
        "FAILED": 1,
        "DEAD": 0,
    }
    assert [job.state for job in queue.get_jobs(JobState.PENDING)] == [P]


@pytest.mark.asyncio
async def test_recover_requeues_interrupted_jobs(store, clock, make_queue):
    interrupted = Job(
        queue_name="calendar-jobs", next_run_at=clock(), attempts=1, max_attempts=3, state=A
    )
    final_attempt = Job(
        queue_name="calendar-jobs", next_run_at=clock(), attempts=3, max_attempts=3, state=A
    )
    waiting = Job(queue_name="calendar-jobs", next_run_at=clock())
    for job in (interrupted, final_attempt, waiting):
        await store.save(job)

    queue = make_queue()
    ran = []

    async def record(payload):
        ran.append(1)

    queue.process(record)

    assert await queue.recover() == 2
    assert queue.get_job(interrupted.id).state == P
    assert queue.get_job(final_attempt.id).state == JobState.DEAD
    assert (await store.load("calendar-jobs", final_attempt.id)).state == JobState.DEAD

    await queue.drain()
    assert len(ran) == 2
    assert queue.get_job(interrupted.id).attempts == 2


@pytest.mark.asyncio
async def test_workers_run_jobs_until_closed(make_queue):
    queue = make_queue(concurrency=2)
    done = asyncio.Event()

    async def record(payload):
        done.set()

    queue.process(record)
    await queue.start()
    assert queue.is_running

    job = await queue.add({})
    await asyncio.wait_for(done.wait(), timeout=2)
    await queue.close(timeout_seconds=1)

    assert queue.is_running is False
    assert job.state == JobState.COMPLETED
    with pytest.raises(QueueError):
        await queue.add({})


def test_concurrency_must_be_positive(store):
    with pytest.raises(ValueError):
        JobQueue("x", store=store, concurrency=0)


@pytest.mark.asyncio
async def test_two_processes_sharing_a_store_run_each_job_once(make_queue):
    api, worker = make_queue(), make_queue()
    runs = []

    async def record(payload):
        runs.append(payload["n"])
        await asyncio.sleep(0)

    api.process(record)
    worker.process(record)

    await worker.recover()
    jobs = [await api.add({"n": n}) for n in range(3)]
    assert await worker.sync() == 3

    await asyncio.gather(api.drain(), worker.drain())

    assert sorted(runs) == [0, 1, 2]
    await api.sync()
    await worker.sync()
    for job in jobs:
        assert job.state == JobState.COMPLETED
        assert worker.get_job(job.id).state == JobState.COMPLETED
        assert job.attempts == 1


@pytest.mark.asyncio
async def test_idle_worker_picks_up_jobs_from_another_process(make_queue):
    worker = make_queue()
    done = asyncio.Event()

    async def record(payload):
        done.set()

    worker.process(record)
    await worker.start()

    job = await make_queue().add({"title": "Standup"})
    await asyncio.wait_for(done.wait(), timeout=2)
    await worker.close(timeout_seconds=1)

    assert worker.get_job(job.id).state == JobState.COMPLETED


@pytest.mark.asyncio
async def test_manual_retry_from_another_process_is_synced(make_queue):
    worker, api = make_queue(), make_queue()
    attempts = []

    async def flaky(payload):
        attempts.append(1)
        if len(attempts) == 1:
            raise RuntimeError("calendar API down")

    worker.process(flaky)
    job = await worker.add({}, options=fixed_retry(max_attempts=1))
    await worker.drain()
    assert job.state == JobState.DEAD

    await api.recover()
    assert (await api.retry_job(job.id)).state == P

    assert await worker.sync() == 1
    await worker.drain()

    assert job.state == JobState.COMPLETED
    assert len(attempts) == 2


@pytest.mark.asyncio
async def test_sync_requeues_only_unlocked_active_jobs(store, clock, make_queue):
    abandoned = Job(
        queue_name="calendar-jobs", next_run_at=clock(), attempts=1, max_attempts=3, state=A
    )
    running = Job(
        queue_name="calendar-jobs", next_run_at=clock(), attempts=1, max_attempts=3, state=A
    )
    for job in (abandoned, running):
        await store.save(job)
    assert await store.lock(running, "other-process") is True
    assert await store.lock(running, "another-process") is False

    worker = make_queue()
    ran = []

    async def record(payload):
        ran.append(1)

    worker.process(record)

    assert await worker.sync() == 1
    assert worker.get_job(abandoned.id).state == P
    assert worker.get_job(running.id).state == A

    await worker.drain()
    assert len(ran) == 1
    assert worker.get_job(abandoned.id).attempts == 2
    # the other process still owns its job
    assert (await store.load("calendar-jobs", running.id)).state == A
