"""
Intent classifiers.

Two tiers composed by FallbackClassifier:
1. PatternClassifier - ordered regex rules, first match wins (confidence 0.9)
2. ModelClassifier   - asks a language model to pick from the closed intent set (0.7)

Both report "no match" and "errored" as distinct statuses so the two can be
told apart in logs, even though both end up as UNKNOWN for callers.
"""

import asyncio
import re
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from calendar_mcp.infrastructure.observability.logging import get_logger
from calendar_mcp.models.domain.intent_domain import IntentType, NlpContext

logger = get_logger(__name__)

PATTERN_CONFIDENCE = 0.9
MODEL_CONFIDENCE = 0.7
UNKNOWN_CONFIDENCE = 0.3
ERROR_CONFIDENCE = 0.1

_EVENT_NOUNS = r"(meeting|appointment|event|call)s?"
_DOC_NOUNS = r"(document|doc|note)s?"
_PREF_NOUNS = r"(preference|setting)s?"

DEFAULT_RULES: list[tuple[IntentType, list[str]]] = [
    (IntentType.UPDATE_EVENT, [rf"\b(reschedule|move|change|update|push)\b.*\b{_EVENT_NOUNS}\b"]),
    (IntentType.DELETE_EVENT, [rf"\b(cancel|delete|remove)\b.*\b{_EVENT_NOUNS}\b"]),
    (
        IntentType.CREATE_EVENT,
        [rf"\b(schedule|create|add|set up|book|arrange|plan)\b.*\b{_EVENT_NOUNS}\b"],
    ),
    (
        IntentType.QUERY_EVENTS,
        [
            rf"\b(what|show|list|when|do i have)\b.*\b{_EVENT_NOUNS}\b",
            r"\b(what|show|list)\b.*\b(calendar|schedule|agenda)\b",
        ],
    ),
    (IntentType.UPDATE_DOCUMENT, [rf"\b(update|edit|change|append to)\b.*\b{_DOC_NOUNS}\b"]),
    (
        IntentType.CREATE_DOCUMENT,
        [rf"\b(create|write|draft|start|add|make|set up)\b.*\b{_DOC_NOUNS}\b"],
    ),
    (IntentType.GET_PREFERENCE, [rf"\b(what|show|get|list)\b.*\b{_PREF_NOUNS}\b"]),
    (
        IntentType.SET_PREFERENCE,
        [rf"\b(set|change|update)\b.*\b{_PREF_NOUNS}\b", r"\bconfigure\b", r"\bi prefer\b"],
    ),
]


class ClassificationStatus(str, Enum):
    MATCHED = "matched"
    NO_MATCH = "no_match"
    ERRORED = "errored"


@dataclass(frozen=True)
class Classification:
    intent_type: IntentType
    confidence: float
    status: ClassificationStatus
    source: str
    error: str | None = None

    @property
    def matched(self) -> bool:
        return self.status == ClassificationStatus.MATCHED


class Classifier(Protocol):
    name: str

    async def classify(self, text: str, context: NlpContext | None = None) -> Classification: ...


class IntentModel(Protocol):
    """Opaque model collaborator: pick one label from allowed_intents, or None."""

    async def classify_intent(self, text: str, allowed_intents: list[str]) -> str | None: ...


class PatternClassifier:
    """Ordered (intent -> patterns) rules over lower-cased, trimmed input."""

    name = "pattern"

    def __init__(
        self,
        rules: list[tuple[IntentType, list[str]]] | None = None,
        confidence: float = PATTERN_CONFIDENCE,
    ):
        self.confidence = confidence
        self._rules: list[tuple[IntentType, list[re.Pattern]]] = []
        for intent_type, patterns in DEFAULT_RULES if rules is None else rules:
            self.add_rule(intent_type, patterns)

    def add_rule(self, intent_type: IntentType, patterns: list[str]) -> None:
        """Append a rule; rules are evaluated in registration order."""
        self._rules.append((intent_type, [re.compile(pattern) for pattern in patterns]))

    def match(self, text: str) -> IntentType | None:
        normalized = " ".join((text or "").split()).lower()
        if not normalized:
            return None
        for intent_type, patterns in self._rules:
            if any(pattern.search(normalized) for pattern in patterns):
                return intent_type
        return None

    async def classify(self, text: str, context: NlpContext | None = None) -> Classification:
        try:
            intent_type = self.match(text)
        except Exception as e:
            return Classification(
                IntentType.UNKNOWN, ERROR_CONFIDENCE, ClassificationStatus.ERRORED, self.name, str(e)
            )

        if intent_type is None:
            return Classification(
                IntentType.UNKNOWN, UNKNOWN_CONFIDENCE, ClassificationStatus.NO_MATCH, self.name
            )
        return Classification(intent_type, self.confidence, ClassificationStatus.MATCHED, self.name)


class ModelClassifier:
    """Constrained model prompt over the closed set of supported intents."""

    name = "model"

    def __init__(
        self,
        model: IntentModel,
        confidence: float = MODEL_CONFIDENCE,
        timeout_seconds: float = 15.0,
    ):
        self.model = model
        self.confidence = confidence
        self.timeout_seconds = timeout_seconds
        self.allowed_intents = [intent.value for intent in IntentType.supported()]

    async def classify(self, text: str, context: NlpContext | None = None) -> Classification:
        try:
            label = await asyncio.wait_for(
                self.model.classify_intent(text, self.allowed_intents),
                timeout=self.timeout_seconds,
            )
        except Exception as e:
            error = str(e) or type(e).__name__
            return Classification(
                IntentType.UNKNOWN, ERROR_CONFIDENCE, ClassificationStatus.ERRORED, self.name, error
            )

        label = (label or "").strip().upper()
        if label not in self.allowed_intents:
            return Classification(
                IntentType.UNKNOWN, UNKNOWN_CONFIDENCE, ClassificationStatus.NO_MATCH, self.name
            )
        return Classification(
            IntentType(label), self.confidence, ClassificationStatus.MATCHED, self.name
        )


class FallbackClassifier:
    """Try each classifier in order; fall through on no-match or error."""

    name = "fallback"

    def __init__(self, classifiers: list[Classifier]):
        self.classifiers = list(classifiers)

    async def classify(self, text: str, context: NlpContext | None = None) -> Classification:
        errored: Classification | None = None

        for classifier in self.classifiers:
            result = await classifier.classify(text, context)

            if result.matched:
                logger.debug(
                    "Intent classified",
                    classifier=result.source,
                    intent=result.intent_type.value,
                    confidence=result.confidence,
                )
                return result

            if result.status == ClassificationStatus.ERRORED:
                errored = result
                logger.warning(
                    "Intent classifier errored", classifier=result.source, error=result.error
                )
            else:
                logger.debug("Intent classifier found no match", classifier=result.source)

        if errored is not None:
            return Classification(
                IntentType.UNKNOWN,
                ERROR_CONFIDENCE,
                ClassificationStatus.ERRORED,
                self.name,
                errored.error,
            )
        return Classification(
            IntentType.UNKNOWN, UNKNOWN_CONFIDENCE, ClassificationStatus.NO_MATCH, self.name
        )
