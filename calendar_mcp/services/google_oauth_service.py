"""
Google credential refresh for the Calendar and Docs scopes.

GoogleOAuthService.refresh is the refresh function handed to TokenSupervisor:
it trades a refresh token for a new access token at Google's token endpoint,
retrying transient HTTP statuses and network errors with backoff.
"""

import asyncio
from datetime import UTC, datetime, timedelta

import httpx
from pydantic import BaseModel, ValidationError

from calendar_mcp.infrastructure.observability.logging import get_logger
from calendar_mcp.models.domain.token_domain import AuthToken

logger = get_logger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"

REQUEST_TIMEOUT = 10  # seconds
MAX_RETRIES = 3
BACKOFF_FACTOR = 2  # waits 2s, then 4s
RETRY_STATUS_CODES = {429, 500, 502, 503, 504}

GOOGLE_ERROR_MESSAGES = {
    "invalid_grant": "Authorization expired or was revoked, please reconnect your account",
    "invalid_client": "OAuth client configuration is invalid",
    "unauthorized_client": "OAuth client is not authorized for this grant",
}


class GoogleOAuthError(Exception):
    """Token endpoint rejected the request or could not be reached."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        response_data: dict | None = None,
        recoverable: bool = False,
    ):
        super().__init__(message)
        self.error_code = error_code
        self.response_data = response_data or {}
        self.recoverable = recoverable


class GoogleTokenResponse(BaseModel):
    """Body of a successful token endpoint response."""

    access_token: str | None = None
    refresh_token: str | None = None
    token_type: str = "Bearer"
    expires_in: int | None = None
    scope: str = ""

    def to_auth_token(self, user_id: str | None = None, issued_at: datetime | None = None) -> AuthToken:
        issued_at = issued_at or datetime.now(UTC)
        expires_at = issued_at + timedelta(seconds=self.expires_in) if self.expires_in else None
        return AuthToken(
            user_id=user_id,
            access_token=self.access_token,
            refresh_token=self.refresh_token,
            expires_at=expires_at,
            token_type=self.token_type,
            scope=self.scope.split(),
        )


class GoogleOAuthService:
    def __init__(self, client_id: str | None, client_secret: str | None):
        self.client_id = client_id
        self.client_secret = client_secret

    def _validate_config(self) -> None:
        if not self.client_id:
            raise GoogleOAuthError("GOOGLE_CLIENT_ID not configured")
        if not self.client_secret:
            raise GoogleOAuthError("GOOGLE_CLIENT_SECRET not configured")

    async def _post_with_retry(self, url: str, data: dict, operation: str) -> httpx.Response:
        """
        POST a form, retrying transient statuses and network errors.

        The last response is returned even when its status is transient;
        the last network error is re-raised.
        """
        async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT) as client:
            for attempt in range(1, MAX_RETRIES + 1):
                final_attempt = attempt == MAX_RETRIES
                wait_time = BACKOFF_FACTOR**attempt
                try:
                    response = await client.post(url, data=data)
                except httpx.RequestError as exc:
                    if final_attempt:
                        raise
                    logger.warning(
                        "Token endpoint unreachable, retrying",
                        operation=operation,
                        attempt=attempt,
                        wait_time=wait_time,
                        error_type=type(exc).__name__,
                    )
                else:
                    if response.status_code not in RETRY_STATUS_CODES or final_attempt:
                        return response
                    logger.warning(
                        "Token endpoint returned transient status, retrying",
                        operation=operation,
                        status_code=response.status_code,
                        attempt=attempt,
                        wait_time=wait_time,
                    )
                await asyncio.sleep(wait_time)

        raise GoogleOAuthError(f"{operation} failed without a response", recoverable=True)

    async def refresh_access_token(self, refresh_token: str) -> GoogleTokenResponse:
        """
        Exchange a refresh token for a new access token.

        Google usually omits refresh_token on refresh; the one sent is kept.

        Raises:
            GoogleOAuthError: Rejected grant, bad configuration or network failure
        """
        self._validate_config()
        form = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }

        try:
            response = await self._post_with_retry(GOOGLE_TOKEN_URL, form, operation="token_refresh")
        except httpx.RequestError as e:
            logger.error("Token refresh network failure", error=str(e), error_type=type(e).__name__)
            raise GoogleOAuthError(f"Network error during token refresh: {e}", recoverable=True) from e

        token = self._parse_token_response(response)
        if not token.refresh_token:
            token.refresh_token = refresh_token
        return token

    async def refresh(self, token: AuthToken) -> AuthToken:
        """Refresh function for TokenSupervisor."""
        if not token.refresh_token:
            raise GoogleOAuthError("No refresh token available")
        logger.info("Refreshing Google credential", user_id=token.user_id)
        refreshed = await self.refresh_access_token(token.refresh_token)
        return refreshed.to_auth_token(user_id=token.user_id)

    def _parse_token_response(self, response: httpx.Response) -> GoogleTokenResponse:
        if response.is_success:
            try:
                token = GoogleTokenResponse.model_validate(response.json())
            except (ValueError, ValidationError) as e:
                raise GoogleOAuthError(f"Invalid token response: {e}") from e
            if not token.access_token:
                raise GoogleOAuthError("Token response missing access token")
            return token

        try:
            body = response.json()
        except ValueError:
            logger.error(
                "Token endpoint returned non-JSON error",
                status_code=response.status_code,
                body_preview=response.text[:200],
            )
            raise GoogleOAuthError(
                f"Google OAuth service error (HTTP {response.status_code})",
                recoverable=response.status_code in RETRY_STATUS_CODES,
            ) from None

        error_code = body.get("error", "unknown_error")
        logger.error(
            "Token refresh rejected",
            status_code=response.status_code,
            error_code=error_code,
            error_description=body.get("error_description"),
        )
        raise GoogleOAuthError(
            GOOGLE_ERROR_MESSAGES.get(error_code, f"Google OAuth error: {error_code}"),
            error_code=error_code,
            response_data=body,
        )
