"""
Scheduler - recurring cron triggers that run a callback or enqueue a job.

Each trigger runs in its own asyncio task which sleeps until the next cron
time and then fires. A failing trigger is logged and keeps its schedule;
it never stops other triggers or the scheduler.

Usage:
    scheduler = Scheduler(queue_manager, timezone="Europe/Paris")
    scheduler.schedule_task("queue-metrics", "*/10 * * * *", log_metrics)
    scheduler.schedule_task(
        "daily-digest",
        "0 7 * * *",
        EnqueueTarget("docs-jobs", "create-document", {"title": "Daily digest"}),
    )

    async with scheduler:
        ...  # triggers stopped and queues closed on every exit path
"""

import asyncio
import inspect
import signal
import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any
from zoneinfo import ZoneInfo

from croniter import croniter

from calendar_mcp.core.queue.manager import JobQueueManager
from calendar_mcp.infrastructure.observability.logging import get_logger
from calendar_mcp.models.domain.job_domain import JobOptions

logger = get_logger(__name__)

TaskCallable = Callable[[], Any | Awaitable[Any]]


@dataclass(frozen=True)
class EnqueueTarget:
    """Trigger target that enqueues a job instead of calling a function."""

    queue_name: str
    job_name: str = "default"
    payload: Any = None
    options: JobOptions | None = None


@dataclass
class ScheduledTrigger:
    name: str
    expression: str
    task: TaskCallable | EnqueueTarget
    next_run_at: datetime | None = None
    last_run_at: datetime | None = None
    last_error: str | None = None
    runs: int = 0
    active_runs: int = 0
    # True only while the trigger's own loop is inside a callback
    firing: bool = False
    cancelled: bool = False
    handle: asyncio.Task | None = field(default=None, repr=False)

    @property
    def running(self) -> bool:
        return self.active_runs > 0

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "expression": self.expression,
            "next_run_at": self.next_run_at.isoformat() if self.next_run_at else None,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "running": self.running,
            "runs": self.runs,
            "last_error": self.last_error,
        }


class Scheduler:
    """
    Owns the active-triggers map of one process.

    Thread Safety:
        Installing, replacing and cancelling triggers happen under a lock;
        list_tasks() reads a snapshot.
    """

    def __init__(
        self,
        queue_manager: JobQueueManager | None = None,
        timezone: str = "UTC",
        clock: Callable[[], datetime] | None = None,
    ):
        self.queue_manager = queue_manager
        self.timezone = ZoneInfo(timezone)
        self._clock = clock or (lambda: datetime.now(UTC))
        self._triggers: dict[str, ScheduledTrigger] = {}
        self._lock = threading.Lock()
        self._shutdown = False
        self._closed = asyncio.Event()

    @staticmethod
    def is_valid_expression(expression: str) -> bool:
        return bool(expression) and croniter.is_valid(expression)

    def next_fire_time(self, expression: str, after: datetime | None = None) -> datetime:
        base = (after or self._clock()).astimezone(self.timezone)
        return croniter(expression, base).get_next(datetime)

    def schedule_task(
        self,
        name: str,
        cron_expression: str,
        task: TaskCallable | EnqueueTarget,
        run_immediately: bool = False,
    ) -> bool:
        """
        Install a recurring trigger, replacing any trigger with the same name.

        Returns:
            bool: False when the cron expression is invalid (nothing changes)
        """
        if not self.is_valid_expression(cron_expression):
            logger.error("Invalid cron expression", task=name, expression=cron_expression)
            return False
        if isinstance(task, EnqueueTarget) and self.queue_manager is None:
            raise ValueError("Enqueue triggers require a queue manager")

        trigger = ScheduledTrigger(name=name, expression=cron_expression, task=task)

        with self._lock:
            previous = self._triggers.pop(name, None)
            if previous is not None:
                logger.info("Replacing scheduled task", task=name)
                self._stop(previous)

            trigger.handle = asyncio.get_running_loop().create_task(
                self._run_trigger(trigger, run_immediately), name=f"trigger:{name}"
            )
            self._triggers[name] = trigger

        logger.info(
            "Scheduled task",
            task=name,
            expression=cron_expression,
            timezone=str(self.timezone),
            run_immediately=run_immediately,
        )
        return True

    async def _run_trigger(self, trigger: ScheduledTrigger, run_immediately: bool) -> None:
        if run_immediately:
            await self._fire_scheduled(trigger)

        while not trigger.cancelled:
            # Never before the slot just fired, even if the wall clock reads earlier
            after = self._clock()
            if trigger.next_run_at is not None:
                after = max(after, trigger.next_run_at)
            trigger.next_run_at = self.next_fire_time(trigger.expression, after)
            delay = (trigger.next_run_at - self._clock()).total_seconds()
            await asyncio.sleep(max(delay, 0))
            if trigger.cancelled:
                break
            await self._fire_scheduled(trigger)

    async def _fire_scheduled(self, trigger: ScheduledTrigger) -> None:
        trigger.firing = True
        try:
            await self._fire(trigger)
        finally:
            trigger.firing = False

    async def _fire(self, trigger: ScheduledTrigger) -> bool:
        """Run a trigger once. Exceptions are logged and swallowed."""
        trigger.active_runs += 1
        start_time = time.time()
        logger.info("Running scheduled task", task=trigger.name)

        try:
            if isinstance(trigger.task, EnqueueTarget):
                target = trigger.task
                await self.queue_manager.enqueue(
                    target.queue_name, target.payload, options=target.options, job_name=target.job_name
                )
            else:
                outcome = trigger.task()
                if inspect.isawaitable(outcome):
                    await outcome
        except Exception as e:
            trigger.last_error = str(e)
            logger.error(
                "Scheduled task failed",
                task=trigger.name,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            return False
        else:
            trigger.last_error = None
            logger.info(
                "Completed scheduled task",
                task=trigger.name,
                duration_ms=round((time.time() - start_time) * 1000, 2),
            )
            return True
        finally:
            trigger.active_runs -= 1
            trigger.runs += 1
            trigger.last_run_at = self._clock()

    async def run_task_now(self, name: str) -> bool:
        """Fire a trigger once outside its schedule. False if unknown or it failed."""
        trigger = self._triggers.get(name)
        if trigger is None:
            return False
        return await self._fire(trigger)

    @staticmethod
    def _stop(trigger: ScheduledTrigger) -> None:
        # A loop inside its own callback finishes it, then exits; a sleeping loop is cancelled.
        # Manual run_task_now() calls belong to their callers and are not waited on here.
        trigger.cancelled = True
        if trigger.handle is not None and not trigger.firing:
            trigger.handle.cancel()

    def cancel_task(self, name: str) -> bool:
        with self._lock:
            trigger = self._triggers.pop(name, None)
            if trigger is None:
                return False
            self._stop(trigger)

        logger.info("Cancelled scheduled task", task=name)
        return True

    def list_tasks(self) -> list[dict]:
        return [trigger.to_dict() for trigger in list(self._triggers.values())]

    def has_task(self, name: str) -> bool:
        return name in self._triggers

    def stop_all(self) -> list[asyncio.Task]:
        """Stop every trigger. Returns their tasks so callers can await them."""
        with self._lock:
            triggers = list(self._triggers.values())
            self._triggers = {}
            for trigger in triggers:
                self._stop(trigger)

        logger.info("Stopped all scheduled tasks", count=len(triggers))
        return [trigger.handle for trigger in triggers if trigger.handle is not None]

    async def shutdown(self) -> None:
        """Stop all triggers, then close the job queues. Safe to call twice."""
        if self._shutdown:
            return
        self._shutdown = True
        logger.info("Shutting down scheduler")

        try:
            handles = self.stop_all()
            if handles:
                await asyncio.gather(*handles, return_exceptions=True)
        finally:
            if self.queue_manager is not None:
                await self.queue_manager.close()

        self._closed.set()
        logger.info("Scheduler shut down")

    async def wait_closed(self) -> None:
        """Block until shutdown() has completed."""
        await self._closed.wait()

    def install_signal_handlers(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Shut down on SIGINT/SIGTERM."""
        loop = loop or asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, lambda s=sig: asyncio.ensure_future(self._on_signal(s)))

    async def _on_signal(self, sig: signal.Signals) -> None:
        logger.info("Received shutdown signal", signal=sig.name)
        await self.shutdown()

    async def __aenter__(self) -> "Scheduler":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()
