from calendar_mcp.core.memory import MemoryStore
from calendar_mcp.core.queue.manager import JobQueueManager
from calendar_mcp.core.router import CommandRouter
from calendar_mcp.handlers.calendar import CalendarHandlers
from calendar_mcp.handlers.docs import DocumentHandlers
from calendar_mcp.handlers.preferences import PreferenceHandlers
from calendar_mcp.handlers.reminders import ReminderHandlers


def register_default_handlers(
    router: CommandRouter,
    queue_manager: JobQueueManager,
    memory: MemoryStore,
    reminder_minutes_before: list[int] | None = None,
) -> None:
    """Register the built-in commands. calendar.events.query needs a provider and is left out."""
    calendar = CalendarHandlers(queue_manager, reminder_minutes_before)
    docs = DocumentHandlers(queue_manager)
    preferences = PreferenceHandlers(memory)
    reminders = ReminderHandlers(queue_manager)

    router.register_handler("calendar.event.create", calendar.create_event)
    router.register_handler("calendar.event.update", calendar.update_event)
    router.register_handler("calendar.event.delete", calendar.delete_event)
    router.register_handler("docs.document.create", docs.create_document)
    router.register_handler("docs.document.update", docs.update_document)
    router.register_handler("preferences.set", preferences.set_preferences)
    router.register_handler("preferences.get", preferences.get_preferences)
    router.register_handler("reminders.schedule", reminders.schedule)


__all__ = [
    "CalendarHandlers",
    "DocumentHandlers",
    "PreferenceHandlers",
    "ReminderHandlers",
    "register_default_handlers",
]
