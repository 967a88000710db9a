"""
Job handlers shipped with the queue.

Application handlers implement the ``JobHandler`` protocol (or are plain
functions wrapped in ``FunctionHandler``) and are registered in the job
registry under their job type.
"""

import asyncio
import inspect
from collections.abc import Callable
from typing import Any

from jobqueue.config.logging import get_logger
from jobqueue.config.settings import Settings
from jobqueue.v1.infra.jobs.service import JobService
from jobqueue.v1.infra.jobs.store import JobStore

logger = get_logger(__name__)


class FunctionHandler:
    """
    Adapts a plain callable taking the payload to the ``JobHandler`` protocol.

    Coroutine functions are awaited on the event loop; synchronous functions
    run in a worker thread so they don't stall sibling jobs.
    """

    def __init__(self, func: Callable[[Any], Any]):
        if not callable(func):
            raise TypeError(f"Job handler must be callable, got {type(func).__name__}")
        self.func = func

    async def handle(self, payload: Any) -> Any:
        if inspect.iscoroutinefunction(self.func):
            return await self.func(payload)
        result = await asyncio.to_thread(self.func, payload)
        if inspect.isawaitable(result):
            result = await result
        return result

    def __repr__(self) -> str:
        return f"FunctionHandler({getattr(self.func, '__name__', self.func)!r})"


class MaintenanceCleanupHandler:
    """
    Job handler for maintenance tasks like cleaning up old jobs.

    Payload expected:
    {
        "tasks": ["cleanup_jobs"],  # optional, defaults to all
        "max_age_seconds": 3600,    # optional, defaults to JOB_CLEANUP_AFTER_S
        "dry_run": false            # optional
    }
    """

    def __init__(self, store: JobStore, settings: Settings):
        self.store = store
        self.settings = settings

    async def handle(self, payload: Any) -> dict[str, Any]:
        """Process maintenance tasks."""
        payload = payload or {}
        tasks = payload.get("tasks", ["cleanup_jobs"])
        dry_run = payload.get("dry_run", False)
        max_age_seconds = payload.get("max_age_seconds")
        results: dict[str, Any] = {}

        unknown = sorted(set(tasks) - {"cleanup_jobs"})
        if unknown:
            raise ValueError(f"Unknown maintenance tasks: {', '.join(unknown)}")

        logger.info("Starting maintenance tasks", tasks=tasks, dry_run=dry_run)

        if "cleanup_jobs" in tasks:
            if dry_run:
                results["cleanup_jobs"] = {
                    "status": "dry_run",
                    "message": "Would clean up old jobs",
                }
            else:
                job_service = JobService(self.store, settings=self.settings)
                deleted_count = await job_service.cleanup(max_age_seconds)
                results["cleanup_jobs"] = {
                    "status": "completed",
                    "deleted_count": deleted_count,
                }
            logger.info("Job cleanup task completed", **results["cleanup_jobs"])

        logger.info("Maintenance tasks completed", results=results, dry_run=dry_run)

        return {
            "status": "completed",
            "tasks_processed": tasks,
            "dry_run": dry_run,
            "results": results,
        }
