# models/domain/job_domain.py
"""
Job domain models for the background job queue.
"""

import uuid
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field


class JobState(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"  # unrecoverable, never retried
    DEAD = "DEAD"  # retries exhausted

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED, JobState.DEAD)


class BackoffPolicy(BaseModel):
    """Maps a failed attempt count to the delay before the next retry."""

    type: Literal["fixed", "exponential"] = "exponential"
    base_delay_ms: int = Field(default=5000, ge=0)

    def delay_ms(self, attempts: int) -> int:
        """
        Delay after the given number of failed attempts.

        fixed: base_delay_ms every time
        exponential: base_delay_ms * 2^(attempts - 1)
        """
        if attempts < 1:
            return 0
        if self.type == "fixed":
            return self.base_delay_ms
        return self.base_delay_ms * (2 ** (attempts - 1))


class RateLimit(BaseModel):
    """At most max_jobs job starts per duration_ms window."""

    max_jobs: int = Field(ge=1)
    duration_ms: int = Field(ge=1)


class JobOptions(BaseModel):
    priority: int | None = None  # lower runs first among equally-due jobs
    delay_ms: int = Field(default=0, ge=0)
    max_attempts: int = Field(default=3, ge=1)
    backoff: BackoffPolicy = Field(default_factory=BackoffPolicy)
    remove_on_complete: bool = False


class Job(BaseModel):
    """A unit of deferred, retryable work tracked by the job queue."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    queue_name: str
    name: str = "default"
    payload: Any = None
    attempts: int = 0
    max_attempts: int = Field(default=3, ge=1)
    priority: int = 0
    next_run_at: datetime
    backoff: BackoffPolicy = Field(default_factory=BackoffPolicy)
    remove_on_complete: bool = False
    state: JobState = JobState.PENDING
    state_history: list[JobState] = Field(default_factory=lambda: [JobState.PENDING])

    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    started_at: datetime | None = None
    finished_at: datetime | None = None
    last_error: str | None = None
    result: Any = None

    def transition(self, state: JobState) -> None:
        self.state = state
        self.state_history.append(state)

    def schedule_retry(self, now: datetime) -> int:
        """
        Push next_run_at forward according to the backoff policy.

        Returns:
            int: The delay applied in milliseconds
        """
        delay_ms = self.backoff.delay_ms(self.attempts)
        candidate = now + timedelta(milliseconds=delay_ms)
        # next_run_at never moves backwards across retries
        self.next_run_at = max(self.next_run_at, candidate)
        return delay_ms

    @property
    def attempts_remaining(self) -> int:
        return max(self.max_attempts - self.attempts, 0)

    def sort_key(self) -> tuple[datetime, int, datetime]:
        return (self.next_run_at, self.priority, self.created_at)
