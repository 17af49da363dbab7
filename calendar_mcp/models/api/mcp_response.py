# calendar_mcp/models/api/mcp_response.py
"""
MCP API response models.
Used by routes for output formatting.
"""

from typing import Any

from pydantic import BaseModel, Field

from calendar_mcp.models.domain.command_domain import CommandResult
from calendar_mcp.models.domain.intent_domain import Intent


class InterpretResponse(BaseModel):
    """Interpretation outcome: the detected intent and what was done with it."""

    intent: Intent = Field(..., description="Detected intent with entities")
    result: CommandResult = Field(..., description="Outcome of processing the intent")


class QueueMetricsResponse(BaseModel):
    timestamp: str = Field(..., description="When the counts were taken")
    queues: dict[str, dict[str, int]] = Field(..., description="Job counts by state per queue")


class JobResponse(BaseModel):
    id: str
    queue_name: str
    name: str
    state: str
    attempts: int
    max_attempts: int
    next_run_at: str
    last_error: str | None = None


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    version: str
    handlers: list[str]
    queues_running: bool
    scheduled_tasks: list[dict[str, Any]]


class CredentialResponse(BaseModel):
    user_id: str
    state: str = Field(..., description="VALID, NEEDS_REFRESH or INVALID")
    expires_at: str | None = None
