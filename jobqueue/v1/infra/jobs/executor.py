"""
Job executor: runs one claimed job's handler and records the outcome.

Handler failures never escape ``execute``; they become a retry or a terminal
failure on the job. Only store errors propagate.
"""

import asyncio
from dataclasses import dataclass
from typing import Any

from fastapi.encoders import jsonable_encoder

from jobqueue.config.logging import get_logger
from jobqueue.v1.core.exceptions import HandlerFailureError, UnknownJobTypeError
from jobqueue.v1.core.registries import JobRegistry
from jobqueue.v1.infra.jobs.models import Clock, Job, JobStatus, utcnow
from jobqueue.v1.infra.jobs.retry import RetryPolicy
from jobqueue.v1.infra.jobs.store import JobStore, ensure_json_compatible

logger = get_logger(__name__)


@dataclass
class ExecutionOutcome:
    """What happened to a job after one execution."""

    job_id: str
    success: bool
    status: JobStatus
    error: str | None = None
    # False when another writer changed the job first and our write was dropped
    recorded: bool = True


class JobExecutor:
    """Executes claimed jobs against the handler registry."""

    def __init__(
        self,
        store: JobStore,
        registry: JobRegistry,
        retry_policy: RetryPolicy,
        clock: Clock = utcnow,
        handler_timeout: float | None = None,
    ):
        self.store = store
        self.registry = registry
        self.retry_policy = retry_policy
        self.clock = clock
        self.handler_timeout = handler_timeout

    async def execute(self, job: Job) -> ExecutionOutcome:
        """
        Run ``job``, which must be ``running`` and owned by the caller.

        Every write is guarded by the claim-time version, so an owner that
        lost the job (cancelled or reclaimed meanwhile) cannot overwrite it.
        """
        job_logger = logger.bind(
            job_id=job.id, job_type=job.type, attempt=job.attempts + 1
        )
        job_logger.info("Processing job started")

        try:
            result = self._encode_result(job, await self._run_handler(job))
        except (UnknownJobTypeError, HandlerFailureError) as e:
            outcome = await self.record_failure(job, e.message, e.error_code)
            if outcome.status == JobStatus.FAILED:
                job_logger.error(
                    "Job failed permanently", error=e.message, error_code=e.error_code
                )
            else:
                job_logger.warning(
                    "Job failed, retry scheduled",
                    error=e.message,
                    error_code=e.error_code,
                )
        else:
            outcome = await self.record_success(job, result)
            job_logger.info("Processing job completed successfully")

        if not outcome.recorded:
            job_logger.warning(
                "Job outcome dropped: job was modified by another writer",
                intended_status=outcome.status.value,
            )
        return outcome

    async def _run_handler(self, job: Job) -> Any:
        try:
            handler = self.registry.get(job.type)
        except KeyError:
            raise UnknownJobTypeError(job.type) from None

        # A None delay never expires
        deadline = asyncio.timeout(self.handler_timeout)
        try:
            async with deadline:
                return await handler.handle(job.payload)
        except TimeoutError as e:
            if not deadline.expired():
                raise HandlerFailureError(job.type, e) from e
            cause = TimeoutError(f"Handler timed out after {self.handler_timeout}s")
            raise HandlerFailureError(
                job.type, cause, error_code="HANDLER_TIMEOUT"
            ) from e
        except Exception as e:
            raise HandlerFailureError(job.type, e) from e

    def _encode_result(self, job: Job, result: Any) -> Any:
        """Convert a handler result into something the store's JSON column holds."""
        try:
            encoded = jsonable_encoder(result)
            ensure_json_compatible({"result": encoded})
        except (TypeError, ValueError) as e:
            cause = ValueError(f"Handler result is not JSON-serializable: {e}")
            raise HandlerFailureError(
                job.type, cause, error_code="INVALID_RESULT"
            ) from e
        return encoded

    async def record_success(self, job: Job, result: Any = None) -> ExecutionOutcome:
        now = self.clock()
        recorded = await self.store.conditional_update(
            job.id,
            job.version,
            {
                "status": JobStatus.COMPLETED,
                "attempts": job.attempts + 1,
                "last_error": None,
                "error_code": None,
                "result": result,
                "claimed_by": None,
                "claimed_at": None,
                "completed_at": now,
                "updated_at": now,
            },
            expected_status=JobStatus.RUNNING,
        )
        return ExecutionOutcome(
            job_id=job.id, success=True, status=JobStatus.COMPLETED, recorded=recorded
        )

    async def record_failure(
        self, job: Job, error: str, error_code: str | None = None
    ) -> ExecutionOutcome:
        """
        Count a failed execution of a running job and either reschedule it
        with backoff or, once its attempts are used up, fail it for good.
        """
        now = self.clock()
        attempts = job.attempts + 1
        changes: dict[str, Any] = {
            "attempts": attempts,
            "last_error": error,
            "error_code": error_code,
            "result": None,
            "claimed_by": None,
            "claimed_at": None,
            "updated_at": now,
        }
        if self.retry_policy.is_terminal(attempts, job.max_attempts):
            changes["status"] = JobStatus.FAILED
            changes["completed_at"] = now
        else:
            changes["status"] = JobStatus.PENDING
            changes["scheduled_for"] = now + self.retry_policy.next_delay(attempts)

        recorded = await self.store.conditional_update(
            job.id, job.version, changes, expected_status=JobStatus.RUNNING
        )
        return ExecutionOutcome(
            job_id=job.id,
            success=False,
            status=changes["status"],
            error=error,
            recorded=recorded,
        )
