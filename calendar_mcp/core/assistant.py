"""
Assistant - lifecycle-owned composition root.

Builds one router, queue manager, scheduler, memory store and intent
interpreter per process (or per test) and exposes the two inbound entry
points: submit() for structured commands and interpret() for free text.

Usage:
    assistant = Assistant.from_settings(settings)
    await assistant.start()
    try:
        result = await assistant.submit("calendar.event.create", {"title": "Standup"})
        intent, result = await assistant.interpret("schedule a meeting tomorrow at 3pm")
    finally:
        await assistant.shutdown()
"""

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from calendar_mcp.config import Settings
from calendar_mcp.core.auth.credentials import CredentialStore
from calendar_mcp.core.auth.token_supervisor import TokenSupervisor
from calendar_mcp.core.kv_store import InMemoryKeyValueStore, KeyValueStore
from calendar_mcp.core.memory import MemoryStore
from calendar_mcp.core.nlp.classifiers import IntentModel
from calendar_mcp.core.nlp.interpreter import IntentInterpreter, build_classifier
from calendar_mcp.core.nlp.processor import IntentProcessor
from calendar_mcp.core.queue.manager import JobQueueManager
from calendar_mcp.core.queue.store import DEFAULT_LOCK_TTL_SECONDS, JobStore
from calendar_mcp.core.router import CommandRouter
from calendar_mcp.core.scheduler import Scheduler
from calendar_mcp.handlers import register_default_handlers
from calendar_mcp.infrastructure.observability.logging import get_logger
from calendar_mcp.jobs.maintenance import MaintenanceTasks, initialize_default_tasks
from calendar_mcp.jobs.processors import DomainProcessors, register_domain_processors
from calendar_mcp.models.domain.command_domain import Command, CommandContext, CommandResult
from calendar_mcp.models.domain.intent_domain import Intent, NlpContext
from calendar_mcp.models.domain.job_domain import JobOptions

logger = get_logger(__name__)


class Assistant:
    def __init__(
        self,
        *,
        kv: KeyValueStore | None = None,
        model: IntentModel | None = None,
        token_supervisor: TokenSupervisor | None = None,
        processors: DomainProcessors | None = None,
        default_job_options: JobOptions | None = None,
        queue_concurrency: int = 5,
        poll_interval_seconds: float = 1.0,
        low_confidence_threshold: float = 0.5,
        model_timeout_seconds: float = 15.0,
        timezone: str = "UTC",
        retention_days: int = 7,
        queue_lock_ttl_seconds: int = DEFAULT_LOCK_TTL_SECONDS,
        reminder_minutes_before: list[int] | None = None,
        version: str = "0.1.0",
        clock: Callable[[], datetime] | None = None,
    ):
        self._clock = clock or (lambda: datetime.now(UTC))
        self.kv = kv or InMemoryKeyValueStore(clock=self._clock)

        self.router = CommandRouter(version=version)
        self.queue_manager = JobQueueManager(
            store=JobStore(self.kv, lock_ttl_seconds=queue_lock_ttl_seconds),
            default_options=default_job_options,
            concurrency=queue_concurrency,
            clock=self._clock,
            poll_interval_seconds=poll_interval_seconds,
        )
        self.scheduler = Scheduler(self.queue_manager, timezone=timezone, clock=self._clock)
        self.memory = MemoryStore(self.kv, clock=self._clock)
        self.token_supervisor = token_supervisor
        self.credentials = CredentialStore(self.kv, token_supervisor)

        self.interpreter = IntentInterpreter(
            processor=IntentProcessor(self.router, low_confidence_threshold),
            classifier=build_classifier(model, timeout_seconds=model_timeout_seconds),
            timezone=timezone,
            clock=self._clock,
        )
        self.maintenance = MaintenanceTasks(self.queue_manager, self.router, retention_days)

        register_default_handlers(
            self.router, self.queue_manager, self.memory, reminder_minutes_before
        )
        processors = processors or DomainProcessors(clock=self._clock)
        if processors.credentials is None:
            processors.credentials = self.credentials
        self.processors = register_domain_processors(self.queue_manager, processors)

        self._started = False

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        kv: KeyValueStore | None = None,
        model: IntentModel | None = None,
        token_supervisor: TokenSupervisor | None = None,
    ) -> "Assistant":
        return cls(
            kv=kv,
            model=model,
            token_supervisor=token_supervisor,
            default_job_options=settings.default_job_options(),
            queue_concurrency=settings.QUEUE_CONCURRENCY,
            poll_interval_seconds=settings.QUEUE_POLL_INTERVAL_SECONDS,
            low_confidence_threshold=settings.LOW_CONFIDENCE_THRESHOLD,
            model_timeout_seconds=settings.OPENAI_TIMEOUT_SECONDS,
            timezone=settings.CRON_TIMEZONE,
            retention_days=settings.JOB_RETENTION_DAYS,
            queue_lock_ttl_seconds=settings.QUEUE_LOCK_TTL_SECONDS,
            reminder_minutes_before=settings.REMINDER_DEFAULT_MINUTES_BEFORE,
            version=settings.APP_VERSION,
        )

    async def submit(
        self,
        name: str | None,
        parameters: dict[str, Any] | None = None,
        context: CommandContext | None = None,
    ) -> CommandResult:
        """Structured command entry point. Handler exceptions propagate."""
        command = Command(name=name, parameters=parameters, context=context or CommandContext())
        return await self.router.process_command(command)

    async def interpret(
        self,
        text: str,
        context: NlpContext | None = None,
        command_context: CommandContext | None = None,
    ) -> tuple[Intent, CommandResult]:
        """Free-text entry point. Never raises."""
        intent, result = await self.interpreter.interpret(text, context, command_context)

        user_id = command_context.user_id if command_context else None
        if user_id:
            try:
                await self.memory.store_message(user_id, text, role="user")
            except Exception as e:
                logger.warning("Failed to record conversation history", user_id=user_id, error=str(e))

        return intent, result

    async def start(self, schedule_defaults: bool = True) -> None:
        """Start queue workers and, optionally, the default maintenance triggers."""
        if self._started:
            return
        await self.queue_manager.start()
        if schedule_defaults:
            initialize_default_tasks(self.scheduler, self.maintenance)
        self._started = True
        logger.info("Assistant started", commands=self.router.registered_commands())

    async def shutdown(self) -> None:
        """Stop triggers, close queues (and the store behind them)."""
        await self.scheduler.shutdown()
        self._started = False
        logger.info("Assistant shut down")

    async def __aenter__(self) -> "Assistant":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()
