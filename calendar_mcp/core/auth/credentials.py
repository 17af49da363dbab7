"""
Per-user credentials for the job processors.

Tokens live in the key-value store under auth:tokens:{user_id}. get_valid()
is the "valid credential for user U" capability: it runs the stored token
through the TokenSupervisor and writes back whatever comes out, including
the INVALID marker when a refresh is rejected for good.
"""

from calendar_mcp.core.auth.token_supervisor import AuthenticationError, TokenSupervisor
from calendar_mcp.core.kv_store import InMemoryKeyValueStore, KeyValueStore
from calendar_mcp.infrastructure.observability.logging import get_logger
from calendar_mcp.models.domain.token_domain import AuthToken, TokenState

logger = get_logger(__name__)


class CredentialStore:
    def __init__(self, kv: KeyValueStore | None = None, supervisor: TokenSupervisor | None = None):
        self.kv = kv or InMemoryKeyValueStore()
        self.supervisor = supervisor

    @staticmethod
    def _key(user_id: str) -> str:
        return f"auth:tokens:{user_id}"

    def state_of(self, token: AuthToken) -> TokenState:
        if self.supervisor is not None:
            return self.supervisor.state_of(token)
        return token.state()

    async def save(self, token: AuthToken) -> None:
        if not token.user_id:
            raise ValueError("Credential has no user_id")
        if not await self.kv.set_with_ttl(self._key(token.user_id), token.model_dump_json()):
            raise AuthenticationError(
                "Failed to store credential", user_id=token.user_id, operation="save", recoverable=True
            )
        logger.info("Stored credential", user_id=token.user_id)

    async def load(self, user_id: str) -> AuthToken | None:
        raw = await self.kv.get(self._key(user_id))
        if raw is None:
            return None
        try:
            return AuthToken.model_validate_json(raw)
        except ValueError as e:
            logger.error("Corrupt credential record", user_id=user_id, error=str(e))
            return None

    async def get_valid(self, user_id: str) -> AuthToken | None:
        """
        The user's credential, refreshed when it is close to expiry.

        Returns None when the user has no stored credential.

        Raises:
            AuthenticationError: The credential is invalid or the refresh failed
        """
        token = await self.load(user_id)
        if token is None:
            return None

        if self.supervisor is None:
            if token.invalid:
                raise AuthenticationError(
                    "Credential is invalid, re-authentication required", user_id=user_id
                )
            return token

        try:
            valid = await self.supervisor.ensure_valid(token)
        except AuthenticationError as e:
            # Transient failures (network, 5xx) leave the stored credential as it was
            if not e.recoverable and not token.invalid:
                await self.save(token.model_copy(update={"invalid": True}))
            raise

        if valid is not token:
            await self.save(valid)
        return valid
