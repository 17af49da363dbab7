"""
Intent Processor - confidence gate plus dispatch from intent to domain action.

This is the resilience boundary of the natural-language path: whatever a
domain action raises is logged and returned as PROCESSING_ERROR, callers
never see a raw exception.
"""

from collections.abc import Awaitable, Callable
from typing import Any

from calendar_mcp.core.router import CommandRouter
from calendar_mcp.infrastructure.observability.logging import get_logger
from calendar_mcp.models.domain.command_domain import (
    Command,
    CommandContext,
    CommandResult,
    ErrorCode,
)
from calendar_mcp.models.domain.intent_domain import EntityType, Intent, IntentType, NlpContext
from calendar_mcp.models.domain.parameters import COMMAND_PARAMETERS

logger = get_logger(__name__)

LOW_CONFIDENCE_THRESHOLD = 0.5

DomainAction = Callable[[Intent, NlpContext | None, CommandContext], Awaitable[CommandResult]]

INTENT_COMMANDS: dict[IntentType, str] = {
    IntentType.CREATE_EVENT: "calendar.event.create",
    IntentType.UPDATE_EVENT: "calendar.event.update",
    IntentType.DELETE_EVENT: "calendar.event.delete",
    IntentType.QUERY_EVENTS: "calendar.events.query",
    IntentType.CREATE_DOCUMENT: "docs.document.create",
    IntentType.UPDATE_DOCUMENT: "docs.document.update",
    IntentType.SET_PREFERENCE: "preferences.set",
    IntentType.GET_PREFERENCE: "preferences.get",
}

ACKNOWLEDGEMENTS: dict[IntentType, str] = {
    IntentType.CREATE_EVENT: "Event created successfully",
    IntentType.UPDATE_EVENT: "Event updated successfully",
    IntentType.DELETE_EVENT: "Event deleted successfully",
    IntentType.QUERY_EVENTS: "Events retrieved successfully",
    IntentType.CREATE_DOCUMENT: "Document created successfully",
    IntentType.UPDATE_DOCUMENT: "Document updated successfully",
    IntentType.SET_PREFERENCE: "Preferences updated successfully",
    IntentType.GET_PREFERENCE: "Preferences retrieved successfully",
}


def _first_value(intent: Intent, entity_type: EntityType) -> Any:
    entity = intent.first(entity_type)
    return entity.value if entity else None


def parameters_from_intent(intent: Intent) -> dict[str, Any]:
    """
    Map extracted entities onto the typed parameters of the intent's command.

    The first entity of each type wins, except PERSON which collects all.
    """
    command_name = INTENT_COMMANDS.get(intent.type)
    if command_name is None:
        return {}

    date_time = intent.first(EntityType.DATE_TIME)
    duration = intent.first(EntityType.DURATION)
    raw: dict[str, Any] = {
        "title": _first_value(intent, EntityType.TITLE),
        "start": date_time.value if date_time else None,
        "start_at": date_time.metadata.get("resolved") if date_time else None,
        "duration": duration.value if duration else None,
        "location": _first_value(intent, EntityType.LOCATION),
        "attendees": [entity.value for entity in intent.entities_of(EntityType.PERSON)],
        "description": _first_value(intent, EntityType.DESCRIPTION),
    }

    if intent.type == IntentType.SET_PREFERENCE:
        preferences: dict[str, Any] = {}
        if duration:
            preferences["default_meeting_duration"] = duration.metadata.get("minutes")
        if raw["location"]:
            preferences["default_location"] = raw["location"]
        raw = {"preferences": preferences}

    model = COMMAND_PARAMETERS[command_name].model_validate(raw)
    return model.model_dump(mode="json", exclude_none=True)


def _intent_payload(intent: Intent, message: str) -> dict[str, Any]:
    return {
        "message": message,
        "intent": intent.type.value,
        "entities": [entity.model_dump(mode="json") for entity in intent.entities],
    }


def acknowledge_action(intent_type: IntentType) -> DomainAction:
    """Action that only acknowledges the intent (no router attached)."""

    async def _acknowledge(
        intent: Intent, context: NlpContext | None, command_context: CommandContext
    ) -> CommandResult:
        return CommandResult.ok(_intent_payload(intent, ACKNOWLEDGEMENTS[intent_type]))

    return _acknowledge


def dispatch_action(router: CommandRouter, command_name: str) -> DomainAction:
    """Action that dispatches the intent as a command through the router."""

    async def _dispatch(
        intent: Intent, context: NlpContext | None, command_context: CommandContext
    ) -> CommandResult:
        if not router.has_handler(command_name):
            # Intents whose command is served elsewhere are acknowledged, not failed
            logger.info("No handler for intent command", intent=intent.type.value, command=command_name)
            return CommandResult.ok(_intent_payload(intent, ACKNOWLEDGEMENTS[intent.type]))

        command = Command(
            name=command_name,
            parameters=parameters_from_intent(intent),
            context=command_context,
        )
        result = await router.process_command(command)
        if not result.success:
            return result

        payload = _intent_payload(intent, ACKNOWLEDGEMENTS[intent.type])
        payload["result"] = result.data
        return CommandResult.ok(payload)

    return _dispatch


class IntentProcessor:
    """Gates intents on confidence and routes them to domain actions."""

    def __init__(
        self,
        router: CommandRouter | None = None,
        low_confidence_threshold: float = LOW_CONFIDENCE_THRESHOLD,
        actions: dict[IntentType, DomainAction] | None = None,
    ):
        self.router = router
        self.low_confidence_threshold = low_confidence_threshold
        self.actions: dict[IntentType, DomainAction] = (
            dict(actions) if actions is not None else self._default_actions()
        )

    def _default_actions(self) -> dict[IntentType, DomainAction]:
        if self.router is None:
            return {intent_type: acknowledge_action(intent_type) for intent_type in INTENT_COMMANDS}
        return {
            intent_type: dispatch_action(self.router, command_name)
            for intent_type, command_name in INTENT_COMMANDS.items()
        }

    def register_action(self, intent_type: IntentType, action: DomainAction) -> None:
        if intent_type == IntentType.UNKNOWN:
            raise ValueError("UNKNOWN intents cannot have an action")
        self.actions[intent_type] = action

    async def process_intent(
        self,
        intent: Intent,
        context: NlpContext | None = None,
        command_context: CommandContext | None = None,
    ) -> CommandResult:
        """
        Process a detected intent.

        Args:
            intent: Intent produced by the interpreter
            context: Optional conversation context
            command_context: Request metadata forwarded to dispatched commands

        Returns:
            CommandResult: Never raises
        """
        logger.info(
            "Processing intent", intent=intent.type.value, confidence=intent.confidence
        )

        # Hard gate, independent of intent type
        if intent.confidence < self.low_confidence_threshold:
            logger.info(
                "Intent confidence below threshold",
                intent=intent.type.value,
                confidence=intent.confidence,
                threshold=self.low_confidence_threshold,
            )
            return CommandResult.fail(
                ErrorCode.LOW_CONFIDENCE,
                "Could not understand the request with sufficient confidence",
                details={"confidence": intent.confidence},
            )

        action = self.actions.get(intent.type)
        if intent.type == IntentType.UNKNOWN or action is None:
            logger.info("Unknown intent", intent=intent.type.value)
            return CommandResult.fail(
                ErrorCode.UNKNOWN_INTENT, "Could not determine what you want to do"
            )

        try:
            return await action(intent, context, command_context or CommandContext())
        except Exception as e:
            logger.error(
                "Error processing intent",
                intent=intent.type.value,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            return CommandResult.fail(
                ErrorCode.PROCESSING_ERROR, "An error occurred while processing your request"
            )
