"""
Shared helpers for built-in command handlers.
"""

from typing import Any

from pydantic import BaseModel, ValidationError

from calendar_mcp.infrastructure.observability.logging import get_logger
from calendar_mcp.models.domain.command_domain import Command, CommandResult, ErrorCode
from calendar_mcp.models.domain.job_domain import Job
from calendar_mcp.models.domain.parameters import COMMAND_PARAMETERS

logger = get_logger(__name__)


def parse_parameters(command: Command) -> BaseModel | CommandResult:
    """
    Validate command parameters into the command's typed model.

    Returns:
        The parameters model, or an INVALID_PARAMETERS failure result
    """
    model = COMMAND_PARAMETERS[command.name]
    try:
        return model.model_validate(command.parameters or {})
    except ValidationError as e:
        logger.info("Invalid command parameters", command=command.name, errors=e.error_count())
        return CommandResult.fail(
            ErrorCode.INVALID_PARAMETERS,
            f"Invalid parameters for {command.name}",
            details=e.errors(include_url=False, include_context=False),
        )


def queued(job: Job, parameters: BaseModel) -> dict[str, Any]:
    return {
        "status": "queued",
        "job_id": job.id,
        "queue": job.queue_name,
        "job_name": job.name,
        "run_at": job.next_run_at.isoformat(),
        "parameters": parameters.model_dump(mode="json", exclude_none=True),
    }
