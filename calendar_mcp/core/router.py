"""
Command Router - maps dot-namespaced command names to handlers.

The router is a thin dispatch boundary:
- one handler per command name (re-registering hot-swaps the handler)
- an ordered middleware chain that may transform the command before dispatch
- handler exceptions propagate to the caller, they are never recovered here

Usage:
    router = CommandRouter()
    router.register_handler("calendar.event.create", create_event_handler)
    router.use(audit_middleware)

    result = await router.process_command(
        Command(name="calendar.event.create", parameters={"title": "Standup"})
    )
"""

import inspect
import threading
from collections.abc import Awaitable, Callable, Mapping
from datetime import UTC, datetime
from typing import Any

from calendar_mcp.infrastructure.observability.logging import get_logger
from calendar_mcp.models.domain.command_domain import (
    Command,
    CommandContext,
    CommandResult,
    ErrorCode,
)

logger = get_logger(__name__)

CommandHandler = Callable[[Command, CommandContext], Awaitable[CommandResult]]
Middleware = Callable[[Command], Command | Awaitable[Command]]


class RouterError(Exception):
    """Raised for router misuse (bad middleware or handler return values)."""

    def __init__(self, message: str, command: str | None = None):
        super().__init__(message)
        self.command = command


class CommandRouter:
    """
    Registry of command handlers plus a linear middleware chain.

    Thread Safety:
        Registration swaps in a new handler map under a lock (single writer),
        dispatch reads whichever map is current without locking.
    """

    def __init__(self, version: str = "0.1.0"):
        self.version = version
        self._handlers: dict[str, CommandHandler] = {}
        self._middlewares: tuple[Middleware, ...] = ()
        self._write_lock = threading.Lock()

    def register_handler(self, name: str, handler: CommandHandler) -> None:
        """
        Register a handler for a command name.

        Re-registering an existing name replaces the previous handler.
        """
        if not name:
            raise ValueError("Command name is required")

        with self._write_lock:
            handlers = dict(self._handlers)
            if name in handlers:
                logger.warning("Overwriting existing handler for command", command=name)
            handlers[name] = handler
            self._handlers = handlers

        logger.info("Registered command handler", command=name)

    def unregister_handler(self, name: str) -> bool:
        with self._write_lock:
            if name not in self._handlers:
                return False
            handlers = dict(self._handlers)
            del handlers[name]
            self._handlers = handlers

        logger.info("Unregistered command handler", command=name)
        return True

    def use(self, middleware: Middleware) -> None:
        """Append a middleware; middlewares run in registration order."""
        with self._write_lock:
            self._middlewares = self._middlewares + (middleware,)

        logger.debug(
            "Registered middleware",
            middleware=getattr(middleware, "__name__", type(middleware).__name__),
            position=len(self._middlewares),
        )

    def get_handler(self, name: str) -> CommandHandler | None:
        return self._handlers.get(name)

    def has_handler(self, name: str) -> bool:
        return name in self._handlers

    def registered_commands(self) -> list[str]:
        return sorted(self._handlers.keys())

    async def process_command(self, command: Command | Mapping[str, Any] | None) -> CommandResult:
        """
        Run the middleware chain and dispatch to the registered handler.

        Args:
            command: Command (or a plain mapping in command shape)

        Returns:
            CommandResult from the handler, or a MISSING_COMMAND / NO_HANDLER failure

        Raises:
            Exception: Whatever the handler raises is propagated unchanged
        """
        if command is None:
            command = Command()
        elif isinstance(command, Mapping):
            command = Command.model_validate(dict(command))

        if not command.name:
            logger.warning("Rejected command without a name")
            return CommandResult.fail(
                ErrorCode.MISSING_COMMAND,
                "Missing command field in request",
                details={"status_code": 400},
            )

        command = await self._run_middlewares(command)

        handler = self._handlers.get(command.name) if command.name else None
        if handler is None:
            logger.warning("No handler registered for command", command=command.name)
            return CommandResult.fail(
                ErrorCode.NO_HANDLER,
                f"No handler registered for command: {command.name}",
                details={"status_code": 404, "command": command.name},
            )

        if command.parameters is None:
            command = command.with_updates(parameters={})

        logger.info(
            "Processing command",
            command=command.name,
            request_id=command.context.request_id,
            user_id=command.context.user_id,
        )

        try:
            result = await handler(command, command.context)
        except Exception as e:
            logger.error(
                "Command handler raised",
                command=command.name,
                request_id=command.context.request_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

        return self._coerce_result(command.name, result)

    async def _run_middlewares(self, command: Command) -> Command:
        for middleware in self._middlewares:
            transformed = middleware(command)
            if inspect.isawaitable(transformed):
                transformed = await transformed
            if not isinstance(transformed, Command):
                raise RouterError(
                    f"Middleware {getattr(middleware, '__name__', middleware)!r} "
                    "must return a Command",
                    command=command.name,
                )
            command = transformed
        return command

    @staticmethod
    def _coerce_result(name: str, result: Any) -> CommandResult:
        if isinstance(result, CommandResult):
            return result
        if isinstance(result, Mapping):
            return CommandResult.model_validate(dict(result))
        raise RouterError(
            f"Handler for {name!r} returned {type(result).__name__}, expected CommandResult",
            command=name,
        )

    def health(self) -> dict:
        """Router health snapshot."""
        return {
            "status": "ok",
            "timestamp": datetime.now(UTC).isoformat(),
            "version": self.version,
            "handlers": self.registered_commands(),
            "middlewares": len(self._middlewares),
        }
