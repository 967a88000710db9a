"""
Claim protocol.

A dispatcher pass owns a job only after it wins the conditional update that
moves it from ``pending`` to ``running``. Two passes that read the same job
race on its version; the loser's write matches no row and it moves on.
"""

from dataclasses import replace
from datetime import datetime

from jobqueue.config.logging import get_logger
from jobqueue.v1.infra.jobs.models import Job, JobStatus
from jobqueue.v1.infra.jobs.store import JobStore

logger = get_logger(__name__)


async def claim_due_jobs(
    store: JobStore, *, now: datetime, limit: int, claimant: str
) -> list[Job]:
    """
    Claim up to ``limit`` due jobs for ``claimant``.

    Returns the jobs this caller won, oldest due first, carrying their
    post-claim version so later writes can be guarded by it.
    """
    candidates = await store.query_due(now, limit)
    claimed: list[Job] = []

    for job in candidates:
        changes = {
            "status": JobStatus.RUNNING,
            "claimed_by": claimant,
            "claimed_at": now,
            "updated_at": now,
        }
        won = await store.conditional_update(
            job.id, job.version, changes, expected_status=JobStatus.PENDING
        )
        if not won:
            logger.debug("Claim lost to another pass", job_id=job.id)
            continue
        claimed.append(replace(job, **changes, version=job.version + 1))

    if candidates:
        logger.info(
            "Claimed jobs",
            claimant=claimant,
            candidates=len(candidates),
            job_count=len(claimed),
            job_ids=[job.id for job in claimed],
        )

    return claimed
