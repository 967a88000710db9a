"""
Job service for enqueueing, processing and managing background jobs.
"""

import uuid
from datetime import timedelta

from jobqueue.config.logging import get_logger
from jobqueue.config.settings import Settings, settings as default_settings
from jobqueue.v1.core.exceptions import InvalidJobOptionsError, InvalidJobTypeError
from jobqueue.v1.core.registries import JobRegistry, job_registry
from jobqueue.v1.infra.jobs.dispatcher import JobDispatcher, ProcessResult
from jobqueue.v1.infra.jobs.executor import JobExecutor
from jobqueue.v1.infra.jobs.models import (
    SWEEPABLE_STATUSES,
    Clock,
    Job,
    JobStatus,
    utcnow,
)
from jobqueue.v1.infra.jobs.retry import RetryPolicy
from jobqueue.v1.infra.jobs.store import JobStore, ensure_json_compatible

logger = get_logger(__name__)

# Lost races tolerated by cancel_job before giving up
CANCEL_RETRIES = 3

_PAGE_SIZE = 500


def _as_timedelta(value: float | timedelta | None) -> timedelta:
    if value is None:
        return timedelta(0)
    if isinstance(value, timedelta):
        return value
    return timedelta(seconds=value)


class JobService:
    """
    Entry point to the queue.

    The service keeps no state between calls; everything lives in ``store``.
    Build one per request, per CLI command or per cron invocation.
    """

    def __init__(
        self,
        store: JobStore,
        registry: JobRegistry = job_registry,
        settings: Settings = default_settings,
        clock: Clock = utcnow,
    ):
        self.store = store
        self.registry = registry
        self.settings = settings
        self.clock = clock
        self.retry_policy = RetryPolicy.from_settings(settings)
        self.executor = JobExecutor(
            store,
            registry,
            self.retry_policy,
            clock=clock,
            handler_timeout=settings.job_handler_timeout_s,
        )
        stale_after = (
            timedelta(seconds=settings.job_stale_after_s)
            if settings.job_stale_after_s
            else None
        )
        self.dispatcher = JobDispatcher(
            store,
            self.executor,
            clock=clock,
            concurrency=settings.job_concurrency,
            stale_after=stale_after,
        )

    async def enqueue(
        self,
        job_type: str,
        payload=None,
        *,
        delay: float | timedelta | None = None,
        max_attempts: int | None = None,
        job_id: str | None = None,
    ) -> str:
        """
        Add a job to the queue.

        Args:
            job_type: Handler selector, must be non-empty
            payload: JSON-compatible data handed to the handler verbatim
            delay: Seconds (or a timedelta) before the job becomes due
            max_attempts: Execution budget, defaults to JOB_DEFAULT_MAX_ATTEMPTS
            job_id: Caller-chosen id; a random UUID when omitted

        Returns:
            The id of the new job
        """
        if not isinstance(job_type, str) or not job_type.strip():
            raise InvalidJobTypeError(job_type)
        if self.settings.job_strict_types and job_type not in self.registry:
            raise InvalidJobTypeError(
                job_type, reason=f"No handler registered for job type: {job_type}"
            )

        delay_td = _as_timedelta(delay)
        if delay_td < timedelta(0):
            raise InvalidJobOptionsError(
                "delay must not be negative", {"delay": delay_td.total_seconds()}
            )

        if max_attempts is None:
            max_attempts = self.settings.job_default_max_attempts
        if max_attempts < 1:
            raise InvalidJobOptionsError(
                "max_attempts must be at least 1", {"max_attempts": max_attempts}
            )

        if job_id is not None and not job_id.strip():
            raise InvalidJobOptionsError("job_id must not be blank")

        try:
            ensure_json_compatible({"payload": payload})
        except ValueError as e:
            raise InvalidJobOptionsError(str(e)) from None

        now = self.clock()
        job = Job(
            id=job_id or str(uuid.uuid4()),
            type=job_type,
            payload=payload,
            scheduled_for=now + delay_td,
            created_at=now,
            updated_at=now,
            max_attempts=max_attempts,
        )
        await self.store.insert(job)

        logger.info(
            "Job enqueued",
            job_id=job.id,
            type=job.type,
            scheduled_for=job.scheduled_for.isoformat(),
            max_attempts=job.max_attempts,
        )
        return job.id

    async def process_pending(self, limit: int | None = None) -> ProcessResult:
        """Run one dispatcher pass, ``job_batch_limit`` jobs at most by default."""
        return await self.dispatcher.process_pending(
            limit if limit is not None else self.settings.job_batch_limit
        )

    async def reclaim_stale(self, limit: int = 100) -> int:
        return await self.dispatcher.reclaim_stale(limit)

    async def cleanup(self, max_age_seconds: float | None = None) -> int:
        """Delete terminal jobs last updated more than ``max_age_seconds`` ago."""
        if max_age_seconds is None:
            max_age_seconds = self.settings.job_cleanup_after_s
        if max_age_seconds < 0:
            raise InvalidJobOptionsError(
                "max_age_seconds must not be negative",
                {"max_age_seconds": max_age_seconds},
            )

        statuses = list(SWEEPABLE_STATUSES)
        if self.settings.job_cleanup_include_cancelled:
            statuses.append(JobStatus.CANCELLED)

        cutoff = self.clock() - timedelta(seconds=max_age_seconds)
        deleted_count = await self.store.delete_older_than(statuses, cutoff)

        if deleted_count > 0:
            logger.info(
                "Cleaned up old jobs",
                deleted_count=deleted_count,
                max_age_seconds=max_age_seconds,
                statuses=[s.value for s in statuses],
            )
        return deleted_count

    async def get_stats(self) -> dict[str, int]:
        """Job counts keyed by status value; every status is present."""
        counts = await self.store.count_by_status()
        return {status.value: counts.get(status, 0) for status in JobStatus}

    async def get_job(self, job_id: str) -> Job | None:
        return await self.store.get(job_id)

    async def list_jobs(
        self,
        status: JobStatus | None = None,
        job_type: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Job]:
        if limit < 1 or offset < 0:
            raise InvalidJobOptionsError(
                "limit must be positive and offset non-negative",
                {"limit": limit, "offset": offset},
            )
        return await self.store.list_jobs(
            status=status, job_type=job_type, limit=limit, offset=offset
        )

    async def get_jobs_by_type(self, job_type: str) -> list[Job]:
        """Every job of ``job_type``, oldest first."""
        jobs: list[Job] = []
        while True:
            page = await self.store.list_jobs(
                job_type=job_type, limit=_PAGE_SIZE, offset=len(jobs)
            )
            jobs.extend(page)
            if len(page) < _PAGE_SIZE:
                return jobs

    async def cancel_job(self, job_id: str) -> bool:
        """
        Cancel a pending or running job.

        A running handler is not interrupted; its eventual result is dropped
        because the job's version moved on. Returns False when the job does
        not exist or is already terminal.
        """
        for _ in range(CANCEL_RETRIES):
            job = await self.store.get(job_id)
            if job is None or job.is_terminal:
                return False

            now = self.clock()
            cancelled = await self.store.conditional_update(
                job.id,
                job.version,
                {
                    "status": JobStatus.CANCELLED,
                    "claimed_by": None,
                    "claimed_at": None,
                    "completed_at": now,
                    "updated_at": now,
                },
                expected_status=job.status,
            )
            if cancelled:
                logger.info("Job cancelled", job_id=job_id, previous_status=job.status.value)
                return True

        logger.warning("Job cancel lost every race", job_id=job_id, retries=CANCEL_RETRIES)
        return False
