"""
Document command handlers. Document writes are deferred to the docs-jobs queue.
"""

from calendar_mcp.core.queue.manager import JobQueueManager
from calendar_mcp.handlers.base import parse_parameters, queued
from calendar_mcp.handlers.calendar import job_payload
from calendar_mcp.jobs.queues import (
    DOCS_QUEUE,
    UPDATE_DOCUMENT,
    schedule_document_creation,
    schedule_job,
)
from calendar_mcp.models.domain.command_domain import Command, CommandContext, CommandResult


class DocumentHandlers:
    def __init__(self, queue_manager: JobQueueManager):
        self.queue_manager = queue_manager

    async def create_document(self, command: Command, context: CommandContext) -> CommandResult:
        parameters = parse_parameters(command)
        if isinstance(parameters, CommandResult):
            return parameters

        job = await schedule_document_creation(self.queue_manager, job_payload(parameters, context))
        return CommandResult.ok(queued(job, parameters))

    async def update_document(self, command: Command, context: CommandContext) -> CommandResult:
        parameters = parse_parameters(command)
        if isinstance(parameters, CommandResult):
            return parameters

        job = await schedule_job(
            self.queue_manager, DOCS_QUEUE, UPDATE_DOCUMENT, job_payload(parameters, context)
        )
        return CommandResult.ok(queued(job, parameters))
