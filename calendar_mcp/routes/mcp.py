"""
MCP API Routes
HTTP adapter over the assistant: structured commands, free text, health,
queue metrics, dead-letter inspection and per-user credentials.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse

from calendar_mcp.core.assistant import Assistant
from calendar_mcp.core.auth.token_supervisor import AuthenticationError
from calendar_mcp.core.queue.job_queue import QueueError
from calendar_mcp.infrastructure.observability.logging import get_logger
from calendar_mcp.models.api.mcp_request import (
    InterpretRequest,
    ProcessCommandRequest,
    StoreCredentialRequest,
)
from calendar_mcp.models.api.mcp_response import (
    CredentialResponse,
    HealthResponse,
    InterpretResponse,
    JobResponse,
    QueueMetricsResponse,
)
from calendar_mcp.models.domain.command_domain import CommandContext, CommandResult, ErrorCode
from calendar_mcp.models.domain.intent_domain import NlpContext
from calendar_mcp.models.domain.job_domain import Job, JobState
from calendar_mcp.models.domain.token_domain import AuthToken

logger = get_logger(__name__)

router = APIRouter(prefix="/mcp", tags=["mcp"])

ERROR_STATUS = {
    ErrorCode.MISSING_COMMAND.value: status.HTTP_400_BAD_REQUEST,
    ErrorCode.INVALID_PARAMETERS.value: status.HTTP_400_BAD_REQUEST,
    ErrorCode.NO_HANDLER.value: status.HTTP_404_NOT_FOUND,
    ErrorCode.AUTH_ERROR.value: status.HTTP_401_UNAUTHORIZED,
}


def get_assistant(request: Request) -> Assistant:
    assistant = getattr(request.app.state, "assistant", None)
    if assistant is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Assistant not started"
        )
    return assistant


def _result_response(result: CommandResult) -> JSONResponse:
    status_code = status.HTTP_200_OK
    if not result.success:
        details = result.error.details if isinstance(result.error.details, dict) else {}
        status_code = details.get("status_code") or ERROR_STATUS.get(
            result.error.code, status.HTTP_200_OK
        )
    return JSONResponse(status_code=status_code, content=result.model_dump(mode="json"))


def _job_response(job: Job) -> JobResponse:
    return JobResponse(
        id=job.id,
        queue_name=job.queue_name,
        name=job.name,
        state=job.state.value,
        attempts=job.attempts,
        max_attempts=job.max_attempts,
        next_run_at=job.next_run_at.isoformat(),
        last_error=job.last_error,
    )


@router.post("/process")
async def process_command(
    body: ProcessCommandRequest, request: Request, assistant: Assistant = Depends(get_assistant)
):
    """Submit a structured command."""
    context = CommandContext(
        user_id=body.user_id,
        user_email=body.user_email,
        request_id=request.state.request_id,
    )

    try:
        result = await assistant.submit(body.command, body.parameters, context)
    except AuthenticationError as e:
        logger.warning("Authentication failed for command", command=body.command, user_id=e.user_id)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e)) from e
    except Exception as e:
        logger.error(
            "Error processing command",
            command=body.command,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to process command",
        ) from e

    return _result_response(result)


@router.post("/interpret", response_model=InterpretResponse)
async def interpret_text(
    body: InterpretRequest, request: Request, assistant: Assistant = Depends(get_assistant)
):
    """Interpret free text and act on the detected intent."""
    command_context = CommandContext(user_id=body.user_id, request_id=request.state.request_id)
    nlp_context = NlpContext(conversation_id=body.conversation_id)

    intent, result = await assistant.interpret(body.text, nlp_context, command_context)
    return InterpretResponse(intent=intent, result=result)


@router.get("/health", response_model=HealthResponse)
async def health(assistant: Assistant = Depends(get_assistant)):
    router_health = assistant.router.health()
    return HealthResponse(
        **router_health,
        queues_running=assistant.queue_manager.is_running,
        scheduled_tasks=assistant.scheduler.list_tasks(),
    )


@router.get("/queues/metrics", response_model=QueueMetricsResponse)
async def queue_metrics(assistant: Assistant = Depends(get_assistant)):
    return QueueMetricsResponse(**assistant.queue_manager.get_metrics())


@router.get("/queues/{queue_name}/jobs", response_model=list[JobResponse])
async def list_jobs(
    queue_name: str,
    state: JobState | None = Query(default=None, description="Filter by job state"),
    assistant: Assistant = Depends(get_assistant),
):
    try:
        jobs = assistant.queue_manager.get_jobs(queue_name, state)
    except QueueError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    return [_job_response(job) for job in jobs]


@router.post("/queues/{queue_name}/jobs/{job_id}/retry", response_model=JobResponse)
async def retry_job(queue_name: str, job_id: str, assistant: Assistant = Depends(get_assistant)):
    """Re-queue a DEAD or FAILED job."""
    try:
        job = await assistant.queue_manager.retry_job(queue_name, job_id)
    except QueueError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e

    if job is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Job not found or not in a DEAD/FAILED state",
        )
    return _job_response(job)


@router.put("/users/{user_id}/credentials", response_model=CredentialResponse)
async def store_credentials(
    user_id: str, body: StoreCredentialRequest, assistant: Assistant = Depends(get_assistant)
):
    """Store the OAuth credential the job processors use for this user."""
    token = AuthToken(user_id=user_id, **body.model_dump())
    try:
        await assistant.credentials.save(token)
    except AuthenticationError as e:
        logger.error("Failed to store credential", user_id=user_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Credential store unavailable"
        ) from e

    return CredentialResponse(
        user_id=user_id,
        state=assistant.credentials.state_of(token).value,
        expires_at=token.expires_at.isoformat() if token.expires_at else None,
    )
