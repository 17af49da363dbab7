from datetime import UTC, datetime

from calendar_mcp.core.nlp.extractor import (
    extract_entities,
    extract_people,
    normalize,
    resolve_weekday,
)
from calendar_mcp.models.domain.intent_domain import EntityType

REFERENCE = datetime(2025, 1, 6, 9, 0, tzinfo=UTC)  # Monday


def values(entities, entity_type):
    return [entity.value for entity in entities if entity.type == entity_type]


def test_meeting_request_yields_person_and_relative_datetime():
    entities = extract_entities("schedule a meeting with Jane tomorrow at 3pm", REFERENCE)

    assert values(entities, EntityType.PERSON) == ["Jane"]
    date_times = [e for e in entities if e.type == EntityType.DATE_TIME]
    assert "tomorrow at 3pm" in [e.value for e in date_times]
    relative = next(e for e in date_times if e.value == "tomorrow at 3pm")
    assert relative.metadata["resolved"] == "2025-01-07T15:00:00+00:00"
    assert relative.confidence == 0.8


def test_overlapping_date_time_entities_are_kept():
    entities = extract_entities("call tomorrow at 3pm", REFERENCE)

    assert values(entities, EntityType.DATE_TIME) == ["tomorrow at 3pm", "3pm"]


def test_clock_time_after_at_is_not_a_location():
    entities = extract_entities("lunch at 12pm", REFERENCE)

    assert values(entities, EntityType.LOCATION) == []


def test_location_stops_at_stopwords():
    entities = extract_entities("meet at Blue Bottle Cafe tomorrow at 9am", REFERENCE)

    assert values(entities, EntityType.LOCATION) == ["Blue Bottle Cafe"]


def test_people_lists_are_split():
    entities = extract_entities("sync with Jane, Bob and Alice on friday", REFERENCE)

    assert values(entities, EntityType.PERSON) == ["Jane", "Bob", "Alice"]


def test_durations_carry_minutes():
    entities = extract_entities("book a call for 2 hours", REFERENCE)

    durations = [e for e in entities if e.type == EntityType.DURATION]
    assert [d.value for d in durations] == ["for 2 hours"]
    assert durations[0].metadata["minutes"] == 120


def test_titles_and_descriptions():
    entities = extract_entities('create a document called Q3 plan about hiring', REFERENCE)

    assert values(entities, EntityType.TITLE) == ["Q3 plan"]
    assert values(entities, EntityType.DESCRIPTION) == ["hiring"]

    quoted = extract_entities('schedule "Design review" next tuesday', REFERENCE)
    assert values(quoted, EntityType.TITLE) == ["Design review"]


def test_weekday_resolution():
    assert resolve_weekday("next", "monday", REFERENCE).date().isoformat() == "2025-01-13"
    assert resolve_weekday("this", "monday", REFERENCE).date().isoformat() == "2025-01-06"
    assert resolve_weekday("on", "friday", REFERENCE).date().isoformat() == "2025-01-10"


def test_empty_and_malformed_input_return_empty_list():
    assert extract_entities("", REFERENCE) == []
    assert extract_entities(None, REFERENCE) == []
    assert extract_entities("   \n\t ", REFERENCE) == []
    assert extract_entities("at 99:99pm with", REFERENCE) is not None


def test_failing_extractor_does_not_break_the_chain():
    def broken(text, reference):
        raise ValueError("bad pattern")

    entities = extract_entities(
        "with Jane", REFERENCE, extractors=[("broken", broken), ("person", extract_people)]
    )

    assert values(entities, EntityType.PERSON) == ["Jane"]


def test_normalize_collapses_whitespace_and_keeps_case():
    assert normalize("  Schedule   a\tmeeting \n") == "Schedule a meeting"
