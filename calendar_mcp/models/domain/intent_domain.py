# models/domain/intent_domain.py
"""
Intent and entity domain models produced by the natural-language pipeline.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class IntentType(str, Enum):
    """Closed set of supported actions plus UNKNOWN."""

    CREATE_EVENT = "CREATE_EVENT"
    UPDATE_EVENT = "UPDATE_EVENT"
    DELETE_EVENT = "DELETE_EVENT"
    QUERY_EVENTS = "QUERY_EVENTS"
    CREATE_DOCUMENT = "CREATE_DOCUMENT"
    UPDATE_DOCUMENT = "UPDATE_DOCUMENT"
    SET_PREFERENCE = "SET_PREFERENCE"
    GET_PREFERENCE = "GET_PREFERENCE"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def supported(cls) -> list["IntentType"]:
        return [intent for intent in cls if intent is not cls.UNKNOWN]


class EntityType(str, Enum):
    DATE_TIME = "DATE_TIME"
    DURATION = "DURATION"
    LOCATION = "LOCATION"
    PERSON = "PERSON"
    TITLE = "TITLE"
    DESCRIPTION = "DESCRIPTION"


class Entity(BaseModel):
    """A typed fragment of the source text. Never mutated after creation."""

    model_config = ConfigDict(frozen=True)

    type: EntityType
    value: str | dict[str, Any]
    confidence: float = Field(ge=0.0, le=1.0)
    span: tuple[int, int] | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class Intent(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: IntentType
    confidence: float = Field(ge=0.0, le=1.0)
    entities: list[Entity] = Field(default_factory=list)

    def entities_of(self, entity_type: EntityType) -> list[Entity]:
        """Entities of one type, in order of appearance."""
        return [entity for entity in self.entities if entity.type == entity_type]

    def first(self, entity_type: EntityType) -> Entity | None:
        matches = self.entities_of(entity_type)
        return matches[0] if matches else None


class NlpContext(BaseModel):
    """Context carried over from previous interactions."""

    previous_intents: list[Intent] = Field(default_factory=list)
    recent_entities: list[Entity] = Field(default_factory=list)
    user_data: dict[str, Any] = Field(default_factory=dict)
    conversation_id: str | None = None

    def remember(self, intent: Intent, max_intents: int = 10) -> None:
        """Record a produced intent and its entities."""
        self.previous_intents = (self.previous_intents + [intent])[-max_intents:]
        if intent.entities:
            self.recent_entities = list(intent.entities)
