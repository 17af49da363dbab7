"""
Free-text entry point: classify, extract entities, then process the intent.
"""

from collections.abc import Callable
from datetime import UTC, datetime
from zoneinfo import ZoneInfo

from calendar_mcp.core.nlp.classifiers import (
    ERROR_CONFIDENCE,
    Classifier,
    FallbackClassifier,
    IntentModel,
    ModelClassifier,
    PatternClassifier,
)
from calendar_mcp.core.nlp.extractor import extract_entities, normalize
from calendar_mcp.core.nlp.processor import IntentProcessor
from calendar_mcp.infrastructure.observability.logging import get_logger
from calendar_mcp.models.domain.command_domain import CommandContext, CommandResult
from calendar_mcp.models.domain.intent_domain import Intent, IntentType, NlpContext

logger = get_logger(__name__)


def build_classifier(model: IntentModel | None = None, timeout_seconds: float = 15.0) -> Classifier:
    """Pattern tier first, model tier only when a model collaborator is available."""
    classifiers: list[Classifier] = [PatternClassifier()]
    if model is not None:
        classifiers.append(ModelClassifier(model, timeout_seconds=timeout_seconds))
    return FallbackClassifier(classifiers)


class IntentInterpreter:
    def __init__(
        self,
        processor: IntentProcessor | None = None,
        classifier: Classifier | None = None,
        timezone: str = "UTC",
        clock: Callable[[], datetime] | None = None,
    ):
        self.processor = processor or IntentProcessor()
        self.classifier = classifier or build_classifier()
        self.timezone = ZoneInfo(timezone)
        self._clock = clock or (lambda: datetime.now(UTC))

    async def parse_input(self, text: str, context: NlpContext | None = None) -> Intent:
        """
        Parse natural language input into an intent with entities.

        Never raises: malformed input or a failing classifier degrades to
        UNKNOWN with low confidence.
        """
        normalized = normalize(text)
        logger.info("Parsing input", length=len(normalized))

        try:
            classification = await self.classifier.classify(normalized, context)
            entities = extract_entities(normalized, self._clock(), self.timezone)
            intent = Intent(
                type=classification.intent_type,
                confidence=classification.confidence,
                entities=entities,
            )
        except Exception as e:
            logger.error("Error parsing input", error=str(e), error_type=type(e).__name__)
            intent = Intent(type=IntentType.UNKNOWN, confidence=ERROR_CONFIDENCE, entities=[])

        if context is not None:
            context.remember(intent)

        return intent

    async def interpret(
        self,
        text: str,
        context: NlpContext | None = None,
        command_context: CommandContext | None = None,
    ) -> tuple[Intent, CommandResult]:
        intent = await self.parse_input(text, context)
        result = await self.processor.process_intent(intent, context, command_context)
        return intent, result
