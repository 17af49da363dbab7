"""
Entity extraction for free-text commands.

Pure functions: text in, ordered list of Entity out. Extractors run in a
fixed order (date/time, duration, location, person, title, description)
and each may append zero or more entities. Overlapping spans are kept;
consumers pick the entity type they need.

Matching is case-insensitive but values keep the user's casing, so
"with Jane" yields a PERSON entity valued "Jane".
"""

import re
from collections.abc import Callable
from datetime import UTC, datetime, timedelta, tzinfo

from calendar_mcp.infrastructure.observability.logging import get_logger
from calendar_mcp.models.domain.intent_domain import Entity, EntityType

logger = get_logger(__name__)

Extractor = Callable[[str, datetime], list[Entity]]

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]
_WEEKDAY_GROUP = "|".join(WEEKDAYS)

DATE_TIME_CONFIDENCE = 0.8
DURATION_CONFIDENCE = 0.85
LOCATION_CONFIDENCE = 0.7
PERSON_CONFIDENCE = 0.75
TITLE_CONFIDENCE = 0.8
DESCRIPTION_CONFIDENCE = 0.7

_RELATIVE_DAY_TIME = re.compile(
    r"\b(today|tomorrow|tonight)\s+at\s+(\d{1,2})(?::(\d{2}))?\s*(am|pm)\b", re.IGNORECASE
)
_WEEKDAY = re.compile(rf"\b(next|this|on)\s+({_WEEKDAY_GROUP})\b", re.IGNORECASE)
_ISO_DATE = re.compile(r"\b(\d{4})-(\d{2})-(\d{2})\b")
_CLOCK_TIME = re.compile(r"\b(\d{1,2})(?::(\d{2}))?\s*(am|pm)\b", re.IGNORECASE)

_DURATION_PATTERNS = [
    re.compile(r"\bfor\s+(\d+)\s+(minutes?|mins?|hours?|hrs?)\b", re.IGNORECASE),
    re.compile(r"\b(\d+)\s+(minutes?|mins?|hours?|hrs?)\s+long\b", re.IGNORECASE),
]

# Words that end a location or person phrase
_PHRASE_STOPWORDS = {
    "today",
    "tomorrow",
    "tonight",
    "at",
    "on",
    "in",
    "for",
    "next",
    "this",
    "from",
    "to",
    "about",
    "regarding",
    "by",
    "before",
    "after",
    "every",
    "until",
    "during",
    "with",
    "called",
    "titled",
    "named",
}

_LOCATION_START = re.compile(r"\bat\s+(?=[^\W\d])", re.IGNORECASE)
_PERSON_START = re.compile(r"\bwith\s+", re.IGNORECASE)
_TOKEN = re.compile(r"\S+")

_QUOTED_TITLE = re.compile(r"[\"“]([^\"”]+)[\"”]")
_NAMED_TITLE = re.compile(
    r"\b(?:called|titled|named)\s+([^,.;\"]+?)"
    r"(?=\s+(?:with|at|on|for|tomorrow|today|about|regarding)\b|[,.;]|$)",
    re.IGNORECASE,
)
_DESCRIPTION = re.compile(r"\b(?:about|regarding)\s+([^,.;]+?)(?=[,.;]|$)", re.IGNORECASE)


def normalize(text: str | None) -> str:
    """Trim and collapse whitespace, keeping the original casing."""
    if not text:
        return ""
    return " ".join(text.split())


def _to_24h(hour: int, meridiem: str) -> int:
    hour = hour % 12
    return hour + 12 if meridiem.lower() == "pm" else hour


def resolve_relative_datetime(
    day_word: str, hour: int, minute: int, meridiem: str, reference: datetime
) -> datetime | None:
    """Resolve "tomorrow at 3pm"-style phrases against a reference time."""
    if not 1 <= hour <= 12 or not 0 <= minute <= 59:
        return None
    day_offset = 1 if day_word.lower() == "tomorrow" else 0
    day = reference + timedelta(days=day_offset)
    return day.replace(hour=_to_24h(hour, meridiem), minute=minute, second=0, microsecond=0)


def resolve_weekday(qualifier: str, weekday: str, reference: datetime) -> datetime:
    """Resolve "next friday" / "this friday" / "on friday" to a date at midnight."""
    target = WEEKDAYS.index(weekday.lower())
    days_ahead = (target - reference.weekday()) % 7
    if qualifier.lower() == "next" and days_ahead == 0:
        days_ahead = 7
    day = reference + timedelta(days=days_ahead)
    return day.replace(hour=0, minute=0, second=0, microsecond=0)


def extract_date_times(text: str, reference: datetime) -> list[Entity]:
    found: list[Entity] = []

    for match in _RELATIVE_DAY_TIME.finditer(text):
        day_word, hour, minute, meridiem = match.groups()
        resolved = resolve_relative_datetime(
            day_word, int(hour), int(minute or 0), meridiem, reference
        )
        metadata = {"pattern": "relative_day_time"}
        if resolved:
            metadata["resolved"] = resolved.isoformat()
        found.append(
            Entity(
                type=EntityType.DATE_TIME,
                value=match.group(0),
                confidence=DATE_TIME_CONFIDENCE,
                span=match.span(),
                metadata=metadata,
            )
        )

    for match in _WEEKDAY.finditer(text):
        qualifier, weekday = match.groups()
        found.append(
            Entity(
                type=EntityType.DATE_TIME,
                value=match.group(0),
                confidence=DATE_TIME_CONFIDENCE,
                span=match.span(),
                metadata={
                    "pattern": "weekday",
                    "resolved": resolve_weekday(qualifier, weekday, reference).isoformat(),
                },
            )
        )

    for match in _ISO_DATE.finditer(text):
        metadata = {"pattern": "iso_date"}
        try:
            year, month, day = (int(part) for part in match.groups())
            metadata["resolved"] = datetime(year, month, day, tzinfo=reference.tzinfo).isoformat()
        except ValueError:
            pass
        found.append(
            Entity(
                type=EntityType.DATE_TIME,
                value=match.group(0),
                confidence=DATE_TIME_CONFIDENCE,
                span=match.span(),
                metadata=metadata,
            )
        )

    for match in _CLOCK_TIME.finditer(text):
        found.append(
            Entity(
                type=EntityType.DATE_TIME,
                value=match.group(0),
                confidence=DATE_TIME_CONFIDENCE,
                span=match.span(),
                metadata={"pattern": "clock_time"},
            )
        )

    found.sort(key=lambda entity: entity.span[0])
    return found


def extract_durations(text: str, reference: datetime) -> list[Entity]:
    found: list[Entity] = []
    for pattern in _DURATION_PATTERNS:
        for match in pattern.finditer(text):
            amount, unit = match.groups()
            minutes = int(amount) * (60 if unit.lower().startswith(("hour", "hr")) else 1)
            found.append(
                Entity(
                    type=EntityType.DURATION,
                    value=match.group(0),
                    confidence=DURATION_CONFIDENCE,
                    span=match.span(),
                    metadata={"minutes": minutes},
                )
            )
    found.sort(key=lambda entity: entity.span[0])
    return found


def _collect_phrase(text: str, start: int, *, split_on_and: bool) -> list[tuple[str, int, int]]:
    """
    Collect words following a trigger word until a stopword or clause break.

    Returns:
        list of (phrase, start, end); more than one when split_on_and is set
        and the phrase lists several names ("Jane and Bob").
    """
    phrases: list[tuple[str, int, int]] = []
    words: list[str] = []
    phrase_start = phrase_end = start

    def close() -> None:
        if words:
            phrases.append((" ".join(words), phrase_start, phrase_end))
            words.clear()

    for token in _TOKEN.finditer(text, start):
        raw = token.group(0)
        word = raw.rstrip(",.;:!?")
        lowered = word.lower()

        if not word or lowered in _PHRASE_STOPWORDS or word[0].isdigit():
            break
        if split_on_and and lowered in ("and", "&"):
            close()
            continue

        if not words:
            phrase_start = token.start()
        words.append(word)
        phrase_end = token.start() + len(word)

        if raw != word:
            if split_on_and and raw.endswith(","):
                close()
                continue
            break

    close()
    return phrases


def extract_locations(text: str, reference: datetime) -> list[Entity]:
    found: list[Entity] = []
    for match in _LOCATION_START.finditer(text):
        for phrase, start, end in _collect_phrase(text, match.end(), split_on_and=False):
            found.append(
                Entity(
                    type=EntityType.LOCATION,
                    value=phrase,
                    confidence=LOCATION_CONFIDENCE,
                    span=(start, end),
                )
            )
    return found


def extract_people(text: str, reference: datetime) -> list[Entity]:
    found: list[Entity] = []
    for match in _PERSON_START.finditer(text):
        for phrase, start, end in _collect_phrase(text, match.end(), split_on_and=True):
            found.append(
                Entity(
                    type=EntityType.PERSON,
                    value=phrase,
                    confidence=PERSON_CONFIDENCE,
                    span=(start, end),
                )
            )
    return found


def extract_titles(text: str, reference: datetime) -> list[Entity]:
    found: list[Entity] = []
    for pattern, source in ((_QUOTED_TITLE, "quoted"), (_NAMED_TITLE, "named")):
        for match in pattern.finditer(text):
            value = match.group(1).strip()
            if value:
                found.append(
                    Entity(
                        type=EntityType.TITLE,
                        value=value,
                        confidence=TITLE_CONFIDENCE,
                        span=match.span(1),
                        metadata={"pattern": source},
                    )
                )
    found.sort(key=lambda entity: entity.span[0])
    return found


def extract_descriptions(text: str, reference: datetime) -> list[Entity]:
    return [
        Entity(
            type=EntityType.DESCRIPTION,
            value=match.group(1).strip(),
            confidence=DESCRIPTION_CONFIDENCE,
            span=match.span(1),
        )
        for match in _DESCRIPTION.finditer(text)
        if match.group(1).strip()
    ]


DEFAULT_EXTRACTORS: list[tuple[str, Extractor]] = [
    ("date_time", extract_date_times),
    ("duration", extract_durations),
    ("location", extract_locations),
    ("person", extract_people),
    ("title", extract_titles),
    ("description", extract_descriptions),
]


def extract_entities(
    text: str | None,
    reference_time: datetime | None = None,
    timezone: tzinfo | None = None,
    extractors: list[tuple[str, Extractor]] | None = None,
) -> list[Entity]:
    """
    Extract entities from free text.

    Args:
        text: Raw user input
        reference_time: "Now" for resolving relative dates (default: current time)
        timezone: Timezone applied to the reference time
        extractors: Override the extractor chain (default: DEFAULT_EXTRACTORS)

    Returns:
        list[Entity]: Possibly empty, never None
    """
    normalized = normalize(text)
    if not normalized:
        return []

    reference = reference_time or datetime.now(UTC)
    if timezone is not None:
        reference = reference.astimezone(timezone)

    entities: list[Entity] = []
    for name, extractor in extractors or DEFAULT_EXTRACTORS:
        try:
            entities.extend(extractor(normalized, reference))
        except Exception as e:
            # A broken extractor degrades to "nothing found" for that type
            logger.error(
                "Entity extractor failed", extractor=name, error=str(e), error_type=type(e).__name__
            )

    return entities
