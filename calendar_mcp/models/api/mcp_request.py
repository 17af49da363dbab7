# calendar_mcp/models/api/mcp_request.py
"""
MCP API request models.
Used by routes for input validation.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class ProcessCommandRequest(BaseModel):
    """Structured command submission."""

    command: str | None = Field(default=None, description="Dot-namespaced command name")
    parameters: dict[str, Any] | None = Field(default=None, description="Command parameters")
    user_id: str | None = Field(default=None, description="Acting user")
    user_email: str | None = Field(default=None, description="Acting user's email")


class InterpretRequest(BaseModel):
    """Free-text submission."""

    text: str = Field(..., min_length=1, max_length=2000, description="Natural language request")
    user_id: str | None = Field(default=None, description="Acting user")
    conversation_id: str | None = Field(default=None, description="Conversation to attach to")


class StoreCredentialRequest(BaseModel):
    """OAuth credential obtained by the client for a user."""

    access_token: str = Field(..., min_length=1)
    refresh_token: str | None = None
    expires_at: datetime | None = Field(default=None, description="Access token expiry (UTC)")
    scope: list[str] = Field(default_factory=list)
