from datetime import timedelta

from calendar_mcp.models.domain.job_domain import BackoffPolicy, Job, JobState


def test_exponential_backoff_doubles_per_attempt():
    policy = BackoffPolicy(type="exponential", base_delay_ms=1000)

    assert [policy.delay_ms(n) for n in range(1, 5)] == [1000, 2000, 4000, 8000]


def test_fixed_backoff_is_constant():
    policy = BackoffPolicy(type="fixed", base_delay_ms=250)

    assert [policy.delay_ms(n) for n in range(1, 4)] == [250, 250, 250]
    assert policy.delay_ms(0) == 0


def test_retry_never_moves_next_run_at_backwards(clock):
    now = clock()
    job = Job(
        queue_name="calendar-jobs",
        next_run_at=now + timedelta(minutes=10),
        backoff=BackoffPolicy(type="fixed", base_delay_ms=1000),
        attempts=1,
    )

    delay = job.schedule_retry(now)

    assert delay == 1000
    assert job.next_run_at == now + timedelta(minutes=10)

    job.schedule_retry(now + timedelta(minutes=20))
    assert job.next_run_at == now + timedelta(minutes=20, seconds=1)


def test_terminal_states():
    assert JobState.PENDING.is_terminal is False
    assert JobState.ACTIVE.is_terminal is False
    assert all(state.is_terminal for state in (JobState.COMPLETED, JobState.FAILED, JobState.DEAD))
