# models/domain/command_domain.py
"""
Command domain models shared by the router, the intent pipeline and handlers.
"""

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ErrorCode(str, Enum):
    """Codes surfaced through CommandResult.error.code."""

    MISSING_COMMAND = "MISSING_COMMAND"
    NO_HANDLER = "NO_HANDLER"
    LOW_CONFIDENCE = "LOW_CONFIDENCE"
    UNKNOWN_INTENT = "UNKNOWN_INTENT"
    PROCESSING_ERROR = "PROCESSING_ERROR"
    AUTH_ERROR = "AUTH_ERROR"
    INVALID_PARAMETERS = "INVALID_PARAMETERS"


def new_request_id() -> str:
    return f"req-{uuid.uuid4()}"


class CommandContext(BaseModel):
    """Cross-cutting metadata for one command invocation."""

    model_config = ConfigDict(frozen=True)

    user_id: str | None = None
    user_email: str | None = None
    request_id: str = Field(default_factory=new_request_id)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    # Handlers may extend this for pipeline-local state
    session_data: dict[str, Any] = Field(default_factory=dict)


class Command(BaseModel):
    """A named unit of work. Immutable once dispatched; middlewares return copies."""

    model_config = ConfigDict(frozen=True)

    name: str | None = None
    parameters: dict[str, Any] | None = None
    context: CommandContext = Field(default_factory=CommandContext)

    def with_updates(self, **changes: Any) -> "Command":
        """Return a transformed copy (used by middlewares)."""
        return self.model_copy(update=changes)


class CommandError(BaseModel):
    code: str
    message: str
    details: Any | None = None


class CommandResult(BaseModel):
    """Terminal value returned by every handler and processor step."""

    success: bool
    data: Any | None = None
    error: CommandError | None = None

    @model_validator(mode="after")
    def _success_and_error_are_exclusive(self) -> "CommandResult":
        if self.success and self.error is not None:
            raise ValueError("A successful result cannot carry an error")
        if not self.success and self.error is None:
            raise ValueError("A failed result must carry an error")
        return self

    @classmethod
    def ok(cls, data: Any = None) -> "CommandResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(
        cls, code: ErrorCode | str, message: str, details: Any | None = None
    ) -> "CommandResult":
        code_value = code.value if isinstance(code, ErrorCode) else code
        return cls(
            success=False, error=CommandError(code=code_value, message=message, details=details)
        )

    @property
    def error_code(self) -> str | None:
        return self.error.code if self.error else None
