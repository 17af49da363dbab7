from datetime import UTC, datetime

import httpx
import pytest

from calendar_mcp.models.domain.token_domain import AuthToken
from calendar_mcp.services.google_oauth_service import GoogleOAuthError, GoogleOAuthService


def _service_returning(monkeypatch, response=None, error=None):
    service = GoogleOAuthService(client_id="client-id", client_secret="client-secret")
    sent = {}

    async def fake_post(url, data, operation):
        sent.update(data)
        if error is not None:
            raise error
        return response

    monkeypatch.setattr(service, "_post_with_retry", fake_post)
    return service, sent


@pytest.mark.asyncio
async def test_refresh_preserves_refresh_token(monkeypatch):
    response = httpx.Response(
        200,
        json={
            "access_token": "access-new",
            "expires_in": 3600,
            "token_type": "Bearer",
            "scope": "https://www.googleapis.com/auth/calendar",
        },
    )
    service, sent = _service_returning(monkeypatch, response)
    before = datetime.now(UTC)

    refreshed = await service.refresh(
        AuthToken(user_id="user-1", access_token="access-old", refresh_token="refresh-1")
    )

    assert sent["grant_type"] == "refresh_token"
    assert sent["refresh_token"] == "refresh-1"
    assert refreshed.access_token == "access-new"
    assert refreshed.refresh_token == "refresh-1"
    assert refreshed.user_id == "user-1"
    assert refreshed.scope == ["https://www.googleapis.com/auth/calendar"]
    assert refreshed.expires_at > before


@pytest.mark.asyncio
async def test_revoked_grant_maps_to_reconnect_message(monkeypatch):
    response = httpx.Response(
        400, json={"error": "invalid_grant", "error_description": "Token has been revoked"}
    )
    service, _ = _service_returning(monkeypatch, response)

    with pytest.raises(GoogleOAuthError) as exc_info:
        await service.refresh_access_token("refresh-1")

    assert exc_info.value.error_code == "invalid_grant"
    assert "reconnect" in str(exc_info.value)
    assert exc_info.value.recoverable is False


@pytest.mark.asyncio
async def test_network_error_is_recoverable(monkeypatch):
    service, _ = _service_returning(monkeypatch, error=httpx.ConnectError("unreachable"))

    with pytest.raises(GoogleOAuthError) as exc_info:
        await service.refresh_access_token("refresh-1")

    assert exc_info.value.recoverable is True


@pytest.mark.asyncio
async def test_response_without_access_token_is_rejected(monkeypatch):
    service, _ = _service_returning(monkeypatch, httpx.Response(200, json={"expires_in": 10}))

    with pytest.raises(GoogleOAuthError, match="missing access token"):
        await service.refresh_access_token("refresh-1")


@pytest.mark.asyncio
async def test_missing_configuration_and_refresh_token():
    with pytest.raises(GoogleOAuthError, match="GOOGLE_CLIENT_ID"):
        await GoogleOAuthService(None, "secret").refresh_access_token("refresh-1")

    with pytest.raises(GoogleOAuthError, match="No refresh token"):
        await GoogleOAuthService("id", "secret").refresh(AuthToken(access_token="a"))
