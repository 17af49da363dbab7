"""
Token Supervisor - keeps a credential usable for the duration of an API call.

State machine per credential:
    VALID -> NEEDS_REFRESH (now > expires_at - threshold)
    NEEDS_REFRESH -> VALID   (refresh succeeded)
    NEEDS_REFRESH -> INVALID (refresh failed, surfaced as AuthenticationError)

Concurrent callers holding the same refresh token share one refresh.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

from calendar_mcp.infrastructure.observability.logging import get_logger
from calendar_mcp.models.domain.command_domain import ErrorCode
from calendar_mcp.models.domain.token_domain import AuthToken, TokenState

logger = get_logger(__name__)

RefreshFunction = Callable[[AuthToken], Awaitable[AuthToken]]


class AuthenticationError(Exception):
    """Credential is invalid or could not be refreshed. Re-authenticate, do not retry."""

    code = ErrorCode.AUTH_ERROR

    def __init__(
        self,
        message: str,
        user_id: str | None = None,
        operation: str = "ensure_valid",
        recoverable: bool = False,
    ):
        super().__init__(message)
        self.user_id = user_id
        self.operation = operation
        self.recoverable = recoverable


class TokenSupervisor:
    def __init__(
        self,
        refresh_fn: RefreshFunction,
        refresh_threshold_minutes: int = 5,
        clock: Callable[[], datetime] | None = None,
    ):
        self._refresh_fn = refresh_fn
        self.refresh_threshold_minutes = refresh_threshold_minutes
        self._clock = clock or (lambda: datetime.now(UTC))
        # refresh_token -> running refresh; entries are removed as each refresh finishes
        self._inflight: dict[str, asyncio.Future[AuthToken]] = {}

    @property
    def refreshes_in_flight(self) -> int:
        return len(self._inflight)

    def state_of(self, token: AuthToken) -> TokenState:
        return token.state(self.refresh_threshold_minutes, self._clock())

    def _is_fresh(self, token: AuthToken) -> bool:
        return not token.needs_refresh(self.refresh_threshold_minutes, self._clock())

    async def ensure_valid(self, token: AuthToken) -> AuthToken:
        """
        Return a credential that is outside the refresh window.

        Args:
            token: Current credential

        Returns:
            AuthToken: The same token when no refresh is needed or possible,
                       otherwise the refreshed token

        Raises:
            AuthenticationError: The refresh failed (not retried here)
        """
        if token.invalid:
            raise AuthenticationError(
                "Credential is invalid, re-authentication required", user_id=token.user_id
            )

        if self._is_fresh(token):
            return token

        if not token.refresh_token:
            # Nothing to refresh with; the API call will surface its own error
            logger.debug("Credential needs refresh but has no refresh token", user_id=token.user_id)
            return token

        key = token.refresh_token
        refresh = self._inflight.get(key)
        if refresh is None:
            refresh = asyncio.ensure_future(self._refresh(token))
            self._inflight[key] = refresh
            refresh.add_done_callback(lambda done: self._forget(key, done))

        # One caller being cancelled must not cancel the refresh the others wait on
        return await asyncio.shield(refresh)

    def _forget(self, key: str, done: asyncio.Future) -> None:
        if self._inflight.get(key) is done:
            del self._inflight[key]
        if not done.cancelled():
            # Marks the outcome as retrieved when every waiter was cancelled
            done.exception()

    async def _refresh(self, token: AuthToken) -> AuthToken:
        logger.info(
            "Refreshing credential",
            user_id=token.user_id,
            expires_at=token.expires_at.isoformat() if token.expires_at else None,
        )

        try:
            refreshed = await self._refresh_fn(token)
        except AuthenticationError:
            logger.error("Credential refresh rejected", user_id=token.user_id)
            raise
        except Exception as e:
            logger.error(
                "Credential refresh failed",
                user_id=token.user_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise AuthenticationError(
                f"Token refresh failed: {e}",
                user_id=token.user_id,
                operation="refresh_token",
                recoverable=getattr(e, "recoverable", False),
            ) from e

        # Providers may omit the refresh token when it did not rotate
        if not refreshed.refresh_token:
            refreshed = refreshed.model_copy(update={"refresh_token": token.refresh_token})
        if refreshed.user_id is None:
            refreshed = refreshed.model_copy(update={"user_id": token.user_id})

        logger.info(
            "Credential refreshed",
            user_id=token.user_id,
            expires_at=refreshed.expires_at.isoformat() if refreshed.expires_at else None,
        )
        return refreshed
