# models/domain/token_domain.py
"""
Credential domain model consumed by job handlers through the token supervisor.
"""

from datetime import UTC, datetime, timedelta
from enum import Enum

from pydantic import BaseModel, Field


class TokenState(str, Enum):
    VALID = "VALID"
    NEEDS_REFRESH = "NEEDS_REFRESH"
    INVALID = "INVALID"


def needs_refresh(
    expires_at: datetime | None, threshold_minutes: int = 5, now: datetime | None = None
) -> bool:
    """Check if a credential expiring at expires_at is inside the refresh window."""
    if not expires_at:
        return False
    now = now or datetime.now(UTC)
    return now > expires_at - timedelta(minutes=threshold_minutes)


def create_auth_header(access_token: str) -> str:
    return f"Bearer {access_token}"


class AuthToken(BaseModel):
    """Domain model for an OAuth credential (decrypted)."""

    user_id: str | None = None
    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None
    token_type: str = "Bearer"
    scope: list[str] = Field(default_factory=list)
    invalid: bool = False

    def is_expired(self, now: datetime | None = None) -> bool:
        """Check if access token is expired."""
        if not self.expires_at:
            return False
        return (now or datetime.now(UTC)) >= self.expires_at

    def needs_refresh(self, threshold_minutes: int = 5, now: datetime | None = None) -> bool:
        """Check if token should be refreshed soon."""
        return needs_refresh(self.expires_at, threshold_minutes, now)

    def state(self, threshold_minutes: int = 5, now: datetime | None = None) -> TokenState:
        if self.invalid:
            return TokenState.INVALID
        if self.needs_refresh(threshold_minutes, now):
            return TokenState.NEEDS_REFRESH
        return TokenState.VALID

    def auth_header(self) -> str:
        return create_auth_header(self.access_token)
