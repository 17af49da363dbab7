"""
Domain queues, job names and the enqueue helpers used by command handlers.

Usage:
    job = await schedule_event_creation(manager, {"title": "Standup"}, priority=1)
    job = await schedule_reminder(manager, {"message": "Standup in 10"}, delay_ms=600_000)
"""

from typing import Any

from calendar_mcp.core.queue.manager import JobQueueManager
from calendar_mcp.infrastructure.observability.logging import get_logger
from calendar_mcp.models.domain.job_domain import BackoffPolicy, Job, JobOptions

logger = get_logger(__name__)

CALENDAR_QUEUE = "calendar-jobs"
DOCS_QUEUE = "docs-jobs"
NOTIFICATION_QUEUE = "notification-jobs"

DOMAIN_QUEUES = (CALENDAR_QUEUE, DOCS_QUEUE, NOTIFICATION_QUEUE)

CREATE_EVENT = "create-event"
UPDATE_EVENT = "update-event"
DELETE_EVENT = "delete-event"
CREATE_DOCUMENT = "create-document"
UPDATE_DOCUMENT = "update-document"
SEND_REMINDER = "send-reminder"

# Calendar and document writes: 3 attempts, 5s / 10s between them
WORKSPACE_RETRY = {"max_attempts": 3, "backoff": BackoffPolicy(type="exponential", base_delay_ms=5000)}
# Reminders are cheap to retry and matter more: 5 attempts starting at 10s
REMINDER_RETRY = {"max_attempts": 5, "backoff": BackoffPolicy(type="exponential", base_delay_ms=10000)}


async def schedule_job(
    manager: JobQueueManager,
    queue_name: str,
    job_name: str,
    payload: Any,
    *,
    priority: int | None = None,
    delay_ms: int = 0,
    retry: dict | None = None,
) -> Job:
    options = JobOptions(priority=priority, delay_ms=delay_ms, **(retry or WORKSPACE_RETRY))
    job = await manager.enqueue(queue_name, payload, options=options, job_name=job_name)
    logger.info("Scheduled job", queue=queue_name, job_name=job_name, job_id=job.id)
    return job


async def schedule_event_creation(
    manager: JobQueueManager, event_data: dict, priority: int | None = None, delay_ms: int = 0
) -> Job:
    return await schedule_job(
        manager, CALENDAR_QUEUE, CREATE_EVENT, event_data, priority=priority, delay_ms=delay_ms
    )


async def schedule_document_creation(
    manager: JobQueueManager, doc_data: dict, priority: int | None = None, delay_ms: int = 0
) -> Job:
    return await schedule_job(
        manager, DOCS_QUEUE, CREATE_DOCUMENT, doc_data, priority=priority, delay_ms=delay_ms
    )


async def schedule_reminder(manager: JobQueueManager, reminder_data: dict, delay_ms: int) -> Job:
    return await schedule_job(
        manager,
        NOTIFICATION_QUEUE,
        SEND_REMINDER,
        reminder_data,
        delay_ms=delay_ms,
        retry=REMINDER_RETRY,
    )
