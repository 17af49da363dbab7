import asyncio
from datetime import timedelta

import pytest

from calendar_mcp.core.auth.token_supervisor import AuthenticationError, TokenSupervisor
from calendar_mcp.models.domain.token_domain import (
    AuthToken,
    TokenState,
    create_auth_header,
    needs_refresh,
)


def token(clock, expires_in: timedelta | None, refresh_token: str | None = "refresh-1") -> AuthToken:
    return AuthToken(
        user_id="user-1",
        access_token="access-old",
        refresh_token=refresh_token,
        expires_at=clock() + expires_in if expires_in is not None else None,
    )


class FakeRefresher:
    def __init__(self, clock, fail: Exception | None = None):
        self.clock = clock
        self.fail = fail
        self.calls = 0

    async def __call__(self, current: AuthToken) -> AuthToken:
        self.calls += 1
        await asyncio.sleep(0)
        if self.fail is not None:
            raise self.fail
        return AuthToken(
            access_token=f"access-{self.calls}", expires_at=self.clock() + timedelta(hours=1)
        )


def test_token_states(clock):
    supervisor = TokenSupervisor(FakeRefresher(clock), clock=clock)

    assert supervisor.state_of(token(clock, timedelta(hours=1))) == TokenState.VALID
    assert supervisor.state_of(token(clock, timedelta(minutes=4))) == TokenState.NEEDS_REFRESH
    assert supervisor.state_of(token(clock, None)) == TokenState.VALID
    invalid = token(clock, timedelta(hours=1)).model_copy(update={"invalid": True})
    assert supervisor.state_of(invalid) == TokenState.INVALID


@pytest.mark.asyncio
async def test_fresh_token_is_returned_unchanged(clock):
    refresher = FakeRefresher(clock)
    supervisor = TokenSupervisor(refresher, clock=clock)
    current = token(clock, timedelta(minutes=30))

    assert await supervisor.ensure_valid(current) is current
    assert refresher.calls == 0


@pytest.mark.asyncio
async def test_expiring_token_is_refreshed_and_keeps_refresh_token(clock):
    supervisor = TokenSupervisor(FakeRefresher(clock), clock=clock)

    refreshed = await supervisor.ensure_valid(token(clock, timedelta(minutes=2)))

    assert refreshed.access_token == "access-1"
    assert refreshed.refresh_token == "refresh-1"
    assert refreshed.user_id == "user-1"
    assert supervisor.state_of(refreshed) == TokenState.VALID


@pytest.mark.asyncio
async def test_token_without_refresh_token_is_returned_as_is(clock):
    refresher = FakeRefresher(clock)
    supervisor = TokenSupervisor(refresher, clock=clock)
    current = token(clock, timedelta(minutes=1), refresh_token=None)

    assert await supervisor.ensure_valid(current) is current
    assert refresher.calls == 0


@pytest.mark.asyncio
async def test_refresh_failure_raises_authentication_error(clock):
    supervisor = TokenSupervisor(
        FakeRefresher(clock, fail=RuntimeError("invalid_grant")), clock=clock
    )

    with pytest.raises(AuthenticationError) as exc_info:
        await supervisor.ensure_valid(token(clock, timedelta(minutes=1)))

    assert exc_info.value.user_id == "user-1"
    assert exc_info.value.operation == "refresh_token"
    assert exc_info.value.code.value == "AUTH_ERROR"
    assert "invalid_grant" in str(exc_info.value)
    await asyncio.sleep(0)
    assert supervisor.refreshes_in_flight == 0


@pytest.mark.asyncio
async def test_invalid_token_is_rejected_without_refresh(clock):
    refresher = FakeRefresher(clock)
    supervisor = TokenSupervisor(refresher, clock=clock)
    invalid = token(clock, timedelta(hours=1)).model_copy(update={"invalid": True})

    with pytest.raises(AuthenticationError):
        await supervisor.ensure_valid(invalid)
    assert refresher.calls == 0


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_refresh(clock):
    refresher = FakeRefresher(clock)
    supervisor = TokenSupervisor(refresher, clock=clock)
    current = token(clock, timedelta(minutes=1))

    results = await asyncio.gather(*(supervisor.ensure_valid(current) for _ in range(5)))

    assert refresher.calls == 1
    assert {result.access_token for result in results} == {"access-1"}
    await asyncio.sleep(0)
    assert supervisor.refreshes_in_flight == 0


@pytest.mark.asyncio
async def test_threshold_is_configurable(clock):
    refresher = FakeRefresher(clock)
    supervisor = TokenSupervisor(refresher, refresh_threshold_minutes=30, clock=clock)

    await supervisor.ensure_valid(token(clock, timedelta(minutes=20)))

    assert refresher.calls == 1


def test_token_helpers(clock):
    current = token(clock, timedelta(minutes=10))

    assert needs_refresh(current.expires_at, threshold_minutes=5, now=clock()) is False
    assert needs_refresh(current.expires_at, threshold_minutes=15, now=clock()) is True
    assert needs_refresh(None) is False
    assert current.is_expired(now=clock() + timedelta(minutes=10)) is True
    assert create_auth_header("abc") == "Bearer abc"
    assert current.auth_header() == "Bearer access-old"
