"""
Dispatcher: one bounded, stateless pass over the queue.

A pass optionally recovers stale running jobs, claims a batch of due jobs and
executes them concurrently. Nothing survives between passes except what is
in the store, so overlapping passes (cron firing twice, a manual trigger
during a scheduled one) are safe.
"""

import asyncio
import uuid
from dataclasses import asdict, dataclass
from datetime import timedelta

from structlog.contextvars import bound_contextvars

from jobqueue.config.logging import get_logger
from jobqueue.v1.infra.jobs.claim import claim_due_jobs
from jobqueue.v1.infra.jobs.executor import ExecutionOutcome, JobExecutor
from jobqueue.v1.infra.jobs.models import Clock, JobStatus, utcnow
from jobqueue.v1.infra.jobs.store import JobStore

logger = get_logger(__name__)


@dataclass
class ProcessResult:
    """
    Counters for one pass.

    ``processed`` counts jobs that completed. ``failed`` counts every failed
    execution, split into ``retried`` (rescheduled) and ``dead`` (out of
    attempts). ``dropped`` counts executions whose outcome was discarded because
    another writer changed the job first; those count nowhere else. ``claimed``
    is the batch size and ``reclaimed`` the number of stale jobs recovered
    before claiming.
    """

    processed: int = 0
    failed: int = 0
    retried: int = 0
    dead: int = 0
    claimed: int = 0
    reclaimed: int = 0
    dropped: int = 0

    def add(self, outcome: ExecutionOutcome) -> None:
        if not outcome.recorded:
            self.dropped += 1
            return
        if outcome.success:
            self.processed += 1
            return
        self.failed += 1
        if outcome.status == JobStatus.FAILED:
            self.dead += 1
        else:
            self.retried += 1

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class JobDispatcher:
    """Claims due jobs and hands them to the executor."""

    def __init__(
        self,
        store: JobStore,
        executor: JobExecutor,
        clock: Clock = utcnow,
        concurrency: int = 5,
        stale_after: timedelta | None = None,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.store = store
        self.executor = executor
        self.clock = clock
        self.concurrency = concurrency
        self.stale_after = stale_after

    async def process_pending(self, limit: int = 10) -> ProcessResult:
        """
        Run one pass over at most ``limit`` due jobs.

        Per-job failures are counted, never raised. A store failure aborts
        the pass: in-flight executions are allowed to settle, then the first
        error is re-raised.
        """
        if limit < 1:
            raise ValueError("limit must be at least 1")

        pass_id = uuid.uuid4().hex
        with bound_contextvars(pass_id=pass_id):
            result = ProcessResult()
            if self.stale_after is not None:
                result.reclaimed = await self.reclaim_stale()

            jobs = await claim_due_jobs(
                self.store, now=self.clock(), limit=limit, claimant=pass_id
            )
            result.claimed = len(jobs)

            if jobs:
                semaphore = asyncio.Semaphore(self.concurrency)

                async def run(job):
                    async with semaphore:
                        return await self.executor.execute(job)

                outcomes = await asyncio.gather(
                    *(run(job) for job in jobs), return_exceptions=True
                )
                errors = [o for o in outcomes if isinstance(o, BaseException)]
                for outcome in outcomes:
                    if isinstance(outcome, ExecutionOutcome):
                        result.add(outcome)

                if errors:
                    logger.error(
                        "Pass aborted",
                        error=str(errors[0]),
                        error_count=len(errors),
                        **result.to_dict(),
                    )
                    raise errors[0]

            logger.info("Pass finished", limit=limit, **result.to_dict())
            return result

    async def reclaim_stale(self, limit: int = 100) -> int:
        """
        Recover running jobs whose owner has not reported back within
        ``stale_after``.

        The abandoned execution counts as a failed attempt, so a job whose
        handler keeps crashing the process still ends up ``failed``. Returns
        how many jobs were recovered.
        """
        if self.stale_after is None:
            return 0

        now = self.clock()
        stale = await self.store.query_stale(now - self.stale_after, limit)
        reclaimed = 0
        for job in stale:
            outcome = await self.executor.record_failure(
                job,
                f"Job timeout after {int(self.stale_after.total_seconds())}s "
                f"(claimed by {job.claimed_by})",
                "WORKER_TIMEOUT",
            )
            if outcome.recorded:
                reclaimed += 1
            else:
                logger.debug("Stale job changed before reclaim", job_id=job.id)

        if reclaimed:
            logger.warning(
                "Recovered stale jobs",
                stale_job_count=reclaimed,
                timeout_seconds=self.stale_after.total_seconds(),
            )
        return reclaimed
