"""
Calendar command handlers. Event writes are deferred to the calendar-jobs queue.
"""

from calendar_mcp.core.queue.manager import JobQueueManager
from calendar_mcp.handlers.base import parse_parameters, queued
from calendar_mcp.jobs.queues import (
    CALENDAR_QUEUE,
    DELETE_EVENT,
    UPDATE_EVENT,
    schedule_event_creation,
    schedule_job,
)
from calendar_mcp.models.domain.command_domain import Command, CommandContext, CommandResult


def job_payload(parameters, context: CommandContext) -> dict:
    """Parameters plus the caller identity; request_id doubles as an idempotency key."""
    return {
        **parameters.model_dump(mode="json", exclude_none=True),
        "user_id": context.user_id,
        "request_id": context.request_id,
    }


class CalendarHandlers:
    def __init__(
        self, queue_manager: JobQueueManager, default_reminder_minutes: list[int] | None = None
    ):
        self.queue_manager = queue_manager
        self.default_reminder_minutes = list(default_reminder_minutes or [])

    async def create_event(self, command: Command, context: CommandContext) -> CommandResult:
        parameters = parse_parameters(command)
        if isinstance(parameters, CommandResult):
            return parameters

        payload = job_payload(parameters, context)
        if parameters.reminder_minutes is None and self.default_reminder_minutes:
            payload["reminder_minutes"] = list(self.default_reminder_minutes)

        job = await schedule_event_creation(self.queue_manager, payload)
        return CommandResult.ok(queued(job, parameters))

    async def update_event(self, command: Command, context: CommandContext) -> CommandResult:
        parameters = parse_parameters(command)
        if isinstance(parameters, CommandResult):
            return parameters

        job = await schedule_job(
            self.queue_manager, CALENDAR_QUEUE, UPDATE_EVENT, job_payload(parameters, context)
        )
        return CommandResult.ok(queued(job, parameters))

    async def delete_event(self, command: Command, context: CommandContext) -> CommandResult:
        parameters = parse_parameters(command)
        if isinstance(parameters, CommandResult):
            return parameters

        job = await schedule_job(
            self.queue_manager, CALENDAR_QUEUE, DELETE_EVENT, job_payload(parameters, context)
        )
        return CommandResult.ok(queued(job, parameters))
