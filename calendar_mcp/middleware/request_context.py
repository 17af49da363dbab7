"""
RequestContext Middleware - Adds request tracking to all requests.

Every request gets a request_id (the caller's X-Request-ID when present,
otherwise a new req-<uuid>), stored in request.state, bound to the log
context for the duration of the request, and echoed in the X-Request-ID
response header.

Usage:
    In endpoints:
        request.state.request_id
"""

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from calendar_mcp.infrastructure.observability.logging import (
    bind_request_context,
    clear_request_context,
    get_logger,
)
from calendar_mcp.models.domain.command_domain import new_request_id

logger = get_logger(__name__)

MAX_REQUEST_ID_LENGTH = 128


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        incoming = request.headers.get("x-request-id", "").strip()
        request_id = incoming[:MAX_REQUEST_ID_LENGTH] if incoming else new_request_id()
        request.state.request_id = request_id

        bind_request_context(request_id)
        logger.debug("Request started", method=request.method, path=request.url.path)

        try:
            response = await call_next(request)
        finally:
            clear_request_context()

        response.headers["X-Request-ID"] = request_id
        return response
