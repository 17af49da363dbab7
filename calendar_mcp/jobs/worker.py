"""
Background worker process.

Runs one registered job, picked from the first CLI argument or the
WORKER_JOB environment variable (default: queue_worker):

    python -m calendar_mcp.jobs.worker queue_worker
    WORKER_JOB=job_cleanup python -m calendar_mcp.jobs.worker
"""

import asyncio
import os
import sys
from collections.abc import Awaitable, Callable

from calendar_mcp.config import settings
from calendar_mcp.infrastructure.observability.logging import get_logger, setup_logging
from calendar_mcp.main import build_assistant

logger = get_logger(__name__)

DEFAULT_JOB = "queue_worker"

WorkerJob = Callable[[], Awaitable[None]]


async def run_queue_worker() -> None:
    """Process the domain queues and run the default triggers until SIGINT/SIGTERM."""
    assistant, _ = await build_assistant(settings)

    async with assistant:
        assistant.scheduler.install_signal_handlers()
        logger.info("Queue worker running", queues=assistant.queue_manager.queue_names)
        await assistant.scheduler.wait_closed()


async def run_job_cleanup() -> None:
    """One-shot retention pass over the persisted COMPLETED jobs."""
    assistant, _ = await build_assistant(settings)
    try:
        await assistant.queue_manager.recover()
        await assistant.maintenance.clean_completed_jobs()
    finally:
        await assistant.shutdown()


JOB_REGISTRY: dict[str, WorkerJob] = {
    "queue_worker": run_queue_worker,
    "job_cleanup": run_job_cleanup,
}


def _resolve_job_name() -> str:
    raw = sys.argv[1] if len(sys.argv) > 1 else os.getenv("WORKER_JOB", DEFAULT_JOB)
    return raw.strip().lower()


async def run_worker(job_name: str | None = None) -> None:
    name = (job_name or _resolve_job_name()).strip().lower()
    job = JOB_REGISTRY.get(name)
    if job is None:
        available = ", ".join(sorted(JOB_REGISTRY))
        raise ValueError(f"Unknown worker job '{name}'. Available jobs: {available}")

    logger.info("Starting background worker", job=name)
    await job()


def main() -> None:
    setup_logging(log_level=settings.LOG_LEVEL, json_logs=settings.LOG_JSON)
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
