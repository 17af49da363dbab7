"""
structlog configuration for the server and the worker.

JSON lines in production, a readable console renderer when json_logs is
off. Request-scoped fields (request_id, user_id) are bound through
contextvars, so every log line emitted while handling a request carries them.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.stdlib import LoggerFactory

NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "openai")


def setup_logging(log_level: str = "INFO", json_logs: bool = True) -> None:
    """
    Configure structlog on top of stdlib logging.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        json_logs: False renders human-readable lines (local development)
    """
    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            _drop_empty_context,
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level.upper())

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _drop_empty_context(logger, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Bound context fields that were never set (user_id=None) are left out."""
    for key in ("request_id", "user_id"):
        if key in event_dict and event_dict[key] is None:
            event_dict.pop(key)
    return event_dict


def bind_request_context(request_id: str, user_id: str | None = None) -> None:
    structlog.contextvars.bind_contextvars(request_id=request_id, user_id=user_id)


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
