"""
Preference command handlers, served synchronously from the memory store.
"""

from calendar_mcp.core.memory import MemoryStore
from calendar_mcp.handlers.base import parse_parameters
from calendar_mcp.models.domain.command_domain import (
    Command,
    CommandContext,
    CommandResult,
    ErrorCode,
)


def _require_user(context: CommandContext) -> CommandResult | None:
    if context.user_id:
        return None
    return CommandResult.fail(
        ErrorCode.INVALID_PARAMETERS, "Preferences require an authenticated user"
    )


class PreferenceHandlers:
    def __init__(self, memory: MemoryStore):
        self.memory = memory

    async def set_preferences(self, command: Command, context: CommandContext) -> CommandResult:
        missing_user = _require_user(context)
        if missing_user:
            return missing_user

        parameters = parse_parameters(command)
        if isinstance(parameters, CommandResult):
            return parameters

        preferences = await self.memory.store_preferences(context.user_id, parameters.preferences)
        return CommandResult.ok({"preferences": preferences})

    async def get_preferences(self, command: Command, context: CommandContext) -> CommandResult:
        missing_user = _require_user(context)
        if missing_user:
            return missing_user

        parameters = parse_parameters(command)
        if isinstance(parameters, CommandResult):
            return parameters

        preferences = await self.memory.get_preferences(context.user_id) or {}
        if parameters.key:
            return CommandResult.ok({"key": parameters.key, "value": preferences.get(parameters.key)})
        return CommandResult.ok({"preferences": preferences})
