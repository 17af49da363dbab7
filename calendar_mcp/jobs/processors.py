"""
Job processors for the domain queues.

Each processor receives the job payload and delegates to a workspace
gateway (the calendar/docs/notification provider), together with the
user's credential when a CredentialStore is configured. A credential that
cannot be made valid fails the job (FAILED, AUTH_ERROR) instead of retrying.
Without a gateway the operation is only logged and acknowledged, which is
what a development server without Google credentials does.

Processors must be idempotent: a job may run more than once.
"""

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, Protocol

from calendar_mcp.core.auth.credentials import CredentialStore
from calendar_mcp.core.auth.token_supervisor import AuthenticationError
from calendar_mcp.core.queue.job_queue import UnrecoverableJobError
from calendar_mcp.core.queue.manager import JobQueueManager
from calendar_mcp.infrastructure.observability.logging import get_logger
from calendar_mcp.jobs.queues import (
    CALENDAR_QUEUE,
    CREATE_DOCUMENT,
    CREATE_EVENT,
    DELETE_EVENT,
    DOCS_QUEUE,
    NOTIFICATION_QUEUE,
    SEND_REMINDER,
    UPDATE_DOCUMENT,
    UPDATE_EVENT,
)
from calendar_mcp.models.domain.token_domain import AuthToken

logger = get_logger(__name__)


class WorkspaceGateway(Protocol):
    """External provider calls behind the domain jobs. token is None when the user has none stored."""

    async def create_event(self, payload: dict, token: AuthToken | None = None) -> dict: ...

    async def update_event(self, payload: dict, token: AuthToken | None = None) -> dict: ...

    async def delete_event(self, payload: dict, token: AuthToken | None = None) -> dict: ...

    async def create_document(self, payload: dict, token: AuthToken | None = None) -> dict: ...

    async def update_document(self, payload: dict, token: AuthToken | None = None) -> dict: ...

    async def send_reminder(self, payload: dict, token: AuthToken | None = None) -> dict: ...


class DomainProcessors:
    def __init__(
        self,
        gateway: WorkspaceGateway | None = None,
        clock: Callable[[], datetime] | None = None,
        credentials: CredentialStore | None = None,
    ):
        self.gateway = gateway
        self.credentials = credentials
        self._clock = clock or (lambda: datetime.now(UTC))

    async def _credential_for(self, operation: str, payload: dict) -> AuthToken | None:
        user_id = payload.get("user_id")
        if self.credentials is None or not user_id:
            return None

        try:
            return await self.credentials.get_valid(user_id)
        except AuthenticationError as e:
            if e.recoverable:
                raise
            logger.error(
                "Credential unusable, job will not be retried",
                operation=operation,
                user_id=user_id,
                error=str(e),
            )
            raise UnrecoverableJobError(f"{e.code.value}: {e}") from e

    async def _run(self, operation: str, payload: Any) -> dict:
        if not isinstance(payload, dict):
            raise UnrecoverableJobError(f"{operation} payload must be an object")

        logger.info("Processing workspace job", operation=operation, keys=sorted(payload))

        outcome: dict = {}
        if self.gateway is not None:
            token = await self._credential_for(operation, payload)
            outcome = await getattr(self.gateway, operation)(payload, token=token) or {}

        return {"success": True, "processed_at": self._clock().isoformat(), **outcome}

    async def create_event(self, payload: Any) -> dict:
        return await self._run("create_event", payload)

    async def update_event(self, payload: Any) -> dict:
        return await self._run("update_event", payload)

    async def delete_event(self, payload: Any) -> dict:
        return await self._run("delete_event", payload)

    async def create_document(self, payload: Any) -> dict:
        return await self._run("create_document", payload)

    async def update_document(self, payload: Any) -> dict:
        return await self._run("update_document", payload)

    async def send_reminder(self, payload: Any) -> dict:
        if isinstance(payload, dict) and not payload.get("message"):
            raise UnrecoverableJobError("Reminder without a message")
        return await self._run("send_reminder", payload)


def register_domain_processors(
    manager: JobQueueManager, processors: DomainProcessors | None = None
) -> DomainProcessors:
    """Create the three domain queues and register their named processors."""
    processors = processors or DomainProcessors()

    routes = {
        CALENDAR_QUEUE: {
            CREATE_EVENT: processors.create_event,
            UPDATE_EVENT: processors.update_event,
            DELETE_EVENT: processors.delete_event,
        },
        DOCS_QUEUE: {
            CREATE_DOCUMENT: processors.create_document,
            UPDATE_DOCUMENT: processors.update_document,
        },
        NOTIFICATION_QUEUE: {
            SEND_REMINDER: processors.send_reminder,
        },
    }

    for queue_name, handlers in routes.items():
        for job_name, processor in handlers.items():
            manager.register_processor(queue_name, processor, job_name=job_name)

    logger.info("Queue processors initialized", queues=list(routes))
    return processors
