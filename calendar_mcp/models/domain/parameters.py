# models/domain/parameters.py
"""
Typed parameter shapes per built-in command.

The router itself treats parameters as a generic map; handlers validate
them into one of these models before doing any work.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class _Parameters(BaseModel):
    model_config = ConfigDict(extra="ignore")


class CreateEventParameters(_Parameters):
    title: str | None = None
    start: str | None = Field(default=None, description="Start time as written by the user")
    start_at: datetime | None = Field(default=None, description="Resolved start time")
    duration: str | None = None
    location: str | None = None
    attendees: list[str] = Field(default_factory=list)
    description: str | None = None
    calendar_id: str = "primary"
    reminder_minutes: list[int] | None = Field(
        default=None, description="Minutes before start; configured defaults apply when omitted"
    )


class UpdateEventParameters(_Parameters):
    event_id: str | None = None
    title: str | None = None
    start: str | None = None
    start_at: datetime | None = None
    duration: str | None = None
    location: str | None = None
    attendees: list[str] = Field(default_factory=list)
    calendar_id: str = "primary"


class DeleteEventParameters(_Parameters):
    event_id: str | None = None
    title: str | None = None
    start: str | None = None
    calendar_id: str = "primary"


class QueryEventsParameters(_Parameters):
    start: str | None = None
    start_at: datetime | None = None
    attendees: list[str] = Field(default_factory=list)
    calendar_id: str = "primary"


class CreateDocumentParameters(_Parameters):
    title: str | None = None
    description: str | None = None
    folder_id: str | None = None


class UpdateDocumentParameters(_Parameters):
    document_id: str | None = None
    title: str | None = None
    description: str | None = None


class SetPreferenceParameters(_Parameters):
    preferences: dict[str, Any] = Field(default_factory=dict)


class GetPreferenceParameters(_Parameters):
    key: str | None = None


class ScheduleReminderParameters(_Parameters):
    message: str = Field(..., min_length=1)
    delay_ms: int = Field(default=0, ge=0)
    event_id: str | None = None
    channel: str = "email"


COMMAND_PARAMETERS: dict[str, type[_Parameters]] = {
    "calendar.event.create": CreateEventParameters,
    "calendar.event.update": UpdateEventParameters,
    "calendar.event.delete": DeleteEventParameters,
    "calendar.events.query": QueryEventsParameters,
    "docs.document.create": CreateDocumentParameters,
    "docs.document.update": UpdateDocumentParameters,
    "preferences.set": SetPreferenceParameters,
    "preferences.get": GetPreferenceParameters,
    "reminders.schedule": ScheduleReminderParameters,
}
