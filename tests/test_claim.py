import asyncio

import pytest

from jobqueue.v1.infra.jobs.claim import claim_due_jobs
from jobqueue.v1.infra.jobs.models import JobStatus
from jobqueue.v1.infra.jobs.store import InMemoryJobStore

from tests.conftest import START, YieldingJobStore, make_job


class CompetingStore(InMemoryJobStore):
    """Another pass claims ``victim`` between our read and our write."""

    def __init__(self, victim: str):
        super().__init__()
        self.victim = victim

    async def query_due(self, now, limit):
        due = await super().query_due(now, limit)
        job = self._jobs[self.victim]
        await super().conditional_update(
            self.victim,
            job.version,
            {"status": JobStatus.RUNNING, "claimed_by": "other-pass"},
            expected_status=JobStatus.PENDING,
        )
        return due


@pytest.mark.asyncio
async def test_claim_moves_due_jobs_to_running(job_store):
    await job_store.insert(make_job("a"))
    await job_store.insert(make_job("later", offset_s=30))

    claimed = await claim_due_jobs(job_store, now=START, limit=10, claimant="pass-1")

    assert [job.id for job in claimed] == ["a"]
    assert claimed[0].status == JobStatus.RUNNING
    assert claimed[0].version == 1

    stored = await job_store.get("a")
    assert stored.status == JobStatus.RUNNING
    assert stored.claimed_by == "pass-1"
    assert stored.claimed_at == START
    assert stored.version == 1
    assert (await job_store.get("later")).status == JobStatus.PENDING


@pytest.mark.asyncio
async def test_claim_respects_limit_and_order(memory_store):
    await memory_store.insert(make_job("second", offset_s=-5))
    await memory_store.insert(make_job("first", offset_s=-10))
    await memory_store.insert(make_job("third", offset_s=-1))

    claimed = await claim_due_jobs(memory_store, now=START, limit=2, claimant="p")

    assert [job.id for job in claimed] == ["first", "second"]
    assert (await memory_store.get("third")).status == JobStatus.PENDING


@pytest.mark.asyncio
async def test_lost_claim_is_skipped_silently():
    store = CompetingStore(victim="a")
    await store.insert(make_job("a", offset_s=-2))
    await store.insert(make_job("b", offset_s=-1))

    claimed = await claim_due_jobs(store, now=START, limit=10, claimant="mine")

    assert [job.id for job in claimed] == ["b"]
    assert (await store.get("a")).claimed_by == "other-pass"


@pytest.mark.asyncio
async def test_interleaved_claims_never_share_a_job():
    store = YieldingJobStore()
    for i in range(20):
        await store.insert(make_job(f"job-{i}", created_offset_s=i))

    results = await asyncio.gather(
        *(
            claim_due_jobs(store, now=START, limit=20, claimant=f"pass-{n}")
            for n in range(4)
        )
    )

    claimed_ids = [job.id for batch in results for job in batch]
    assert len(claimed_ids) == len(set(claimed_ids)) == 20

    # Each job is owned by the pass that reported winning it
    for n, batch in enumerate(results):
        for job in batch:
            assert (await store.get(job.id)).claimed_by == f"pass-{n}"


@pytest.mark.asyncio
async def test_claim_with_nothing_due(memory_store):
    await memory_store.insert(make_job("future", offset_s=60))
    assert await claim_due_jobs(memory_store, now=START, limit=5, claimant="p") == []
