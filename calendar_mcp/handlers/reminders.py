"""
Reminder command handler. Reminders are delayed jobs on notification-jobs.
"""

from calendar_mcp.core.queue.manager import JobQueueManager
from calendar_mcp.handlers.base import parse_parameters, queued
from calendar_mcp.handlers.calendar import job_payload
from calendar_mcp.jobs.queues import schedule_reminder
from calendar_mcp.models.domain.command_domain import Command, CommandContext, CommandResult


class ReminderHandlers:
    def __init__(self, queue_manager: JobQueueManager):
        self.queue_manager = queue_manager

    async def schedule(self, command: Command, context: CommandContext) -> CommandResult:
        parameters = parse_parameters(command)
        if isinstance(parameters, CommandResult):
            return parameters

        payload = job_payload(parameters, context)
        payload.pop("delay_ms", None)
        job = await schedule_reminder(self.queue_manager, payload, delay_ms=parameters.delay_ms)
        return CommandResult.ok(queued(job, parameters))
