"""
Default recurring triggers: queue metrics, health check and job retention.
"""

from datetime import timedelta

from calendar_mcp.core.queue.manager import JobQueueManager
from calendar_mcp.core.router import CommandRouter
from calendar_mcp.core.scheduler import Scheduler
from calendar_mcp.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

QUEUE_METRICS_CRON = "*/10 * * * *"  # every 10 minutes
HEALTH_CHECK_CRON = "*/30 * * * *"  # every 30 minutes
JOB_CLEANUP_CRON = "0 0 * * *"  # daily at midnight


class MaintenanceTasks:
    def __init__(
        self,
        queue_manager: JobQueueManager,
        router: CommandRouter | None = None,
        retention_days: int = 7,
    ):
        self.queue_manager = queue_manager
        self.router = router
        self.retention = timedelta(days=retention_days)

    async def report_queue_metrics(self) -> dict:
        metrics = self.queue_manager.get_metrics()
        logger.info("Queue metrics", queues=metrics["queues"])
        return metrics

    async def health_check(self) -> dict:
        logger.info("Performing scheduled health check")
        status = {
            "queues_running": self.queue_manager.is_running,
            "queues": self.queue_manager.queue_names,
        }
        if self.router is not None:
            status["handlers"] = len(self.router.registered_commands())
        logger.info("Health check completed", **status)
        return status

    async def clean_completed_jobs(self) -> int:
        removed = await self.queue_manager.clean_all(self.retention)
        logger.info(
            "Job retention applied", removed=removed, retention_days=self.retention.days
        )
        return removed


def initialize_default_tasks(scheduler: Scheduler, tasks: MaintenanceTasks) -> list[str]:
    """Install the default triggers. Returns the names that were scheduled."""
    logger.info("Initializing scheduled tasks")

    defaults = [
        ("queue-metrics", QUEUE_METRICS_CRON, tasks.report_queue_metrics),
        ("health-check", HEALTH_CHECK_CRON, tasks.health_check),
        ("job-cleanup", JOB_CLEANUP_CRON, tasks.clean_completed_jobs),
    ]
    scheduled = [name for name, cron, task in defaults if scheduler.schedule_task(name, cron, task)]

    logger.info("Scheduled tasks initialized", tasks=scheduled)
    return scheduled
