import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from jobqueue.v1.core.exceptions import StoreUnavailableError
from jobqueue.v1.infra.jobs.dispatcher import JobDispatcher, ProcessResult
from jobqueue.v1.infra.jobs.executor import ExecutionOutcome, JobExecutor
from jobqueue.v1.infra.jobs.models import JobStatus
from jobqueue.v1.infra.jobs.retry import RetryPolicy
from jobqueue.v1.infra.jobs.service import JobService
from jobqueue.v1.infra.jobs.store import InMemoryJobStore

from tests.conftest import START, Recorder, YieldingJobStore, make_job


def make_dispatcher(store, registry, clock, **kwargs) -> JobDispatcher:
    executor = JobExecutor(store, registry, RetryPolicy(), clock=clock)
    return JobDispatcher(store, executor, clock=clock, **kwargs)


class CountingHandler:
    """Counts executions per job id; yields so sibling jobs interleave."""

    def __init__(self):
        self.runs: dict[str, int] = {}

    async def handle(self, payload):
        await asyncio.sleep(0)
        self.runs[payload["id"]] = self.runs.get(payload["id"], 0) + 1


@pytest.mark.asyncio
async def test_failing_job_is_retried_until_it_fails(job_service, registry, clock):
    handler = Recorder(error=RuntimeError("SMTP down"))
    registry.register("send-email", handler)
    job_id = await job_service.enqueue(
        "send-email", {"to": "x@example.com"}, max_attempts=3
    )

    result = await job_service.process_pending(10)
    assert (result.failed, result.retried, result.dead) == (1, 1, 0)
    job = await job_service.get_job(job_id)
    assert job.status == JobStatus.PENDING
    assert job.scheduled_for == START + timedelta(seconds=2)

    # Not due yet
    result = await job_service.process_pending(10)
    assert result.claimed == 0

    clock.advance(3)
    await job_service.process_pending(10)
    job = await job_service.get_job(job_id)
    assert job.attempts == 2
    assert job.scheduled_for == clock() + timedelta(seconds=4)

    clock.advance(5)
    result = await job_service.process_pending(10)
    assert (result.failed, result.retried, result.dead) == (1, 0, 1)

    job = await job_service.get_job(job_id)
    assert job.status == JobStatus.FAILED
    assert job.attempts == 3
    assert job.last_error == "SMTP down"
    assert len(handler.calls) == 3


@pytest.mark.asyncio
async def test_limit_one_claims_the_earliest_created_on_ties(job_service, registry, clock):
    registry.register("send-email", Recorder())
    first = await job_service.enqueue("send-email", {"n": 1})
    clock.advance(1)
    second = await job_service.enqueue("send-email", {"n": 2})
    # Same due time, later creation
    await job_service.store.conditional_update(
        second, 0, {"scheduled_for": START}
    )

    result = await job_service.process_pending(1)

    assert result.claimed == 1
    assert (await job_service.get_job(first)).status == JobStatus.COMPLETED
    assert (await job_service.get_job(second)).status == JobStatus.PENDING


@pytest.mark.asyncio
async def test_pass_stats_delta(job_service, registry):
    registry.register("send-email", Recorder(result="sent"))
    registry.register("broken", Recorder(error=RuntimeError("boom")))
    for n in range(3):
        await job_service.enqueue("send-email", {"n": n})
    await job_service.enqueue("broken", {}, max_attempts=1)

    before = await job_service.get_stats()
    result = await job_service.process_pending(10)
    after = await job_service.get_stats()

    assert result.processed == 3
    assert result.failed == 1
    assert result.dead == 1
    assert before["pending"] == 4
    assert after["pending"] == 0
    assert after["completed"] - before["completed"] == 3
    assert after["failed"] - before["failed"] == 1


@pytest.mark.asyncio
async def test_overlapping_passes_run_each_job_exactly_once(registry, clock):
    store = YieldingJobStore()
    handler = CountingHandler()
    registry.register("send-email", handler)
    for i in range(30):
        await store.insert(make_job(f"job-{i}", created_offset_s=i, payload={"id": i}))

    dispatchers = [make_dispatcher(store, registry, clock, concurrency=3) for _ in range(4)]
    results = await asyncio.gather(*(d.process_pending(30) for d in dispatchers))

    assert sum(r.claimed for r in results) == 30
    assert sum(r.processed for r in results) == 30
    assert handler.runs == {i: 1 for i in range(30)}
    for i in range(30):
        job = await store.get(f"job-{i}")
        assert job.status == JobStatus.COMPLETED
        assert job.attempts == 1


@pytest.mark.asyncio
async def test_concurrency_bounds_in_flight_handlers(memory_store, registry, clock):
    in_flight = 0
    peak = 0

    async def handler(payload):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1

    registry.register_callable("send-email", handler)
    for i in range(10):
        await memory_store.insert(make_job(f"job-{i}"))

    dispatcher = make_dispatcher(memory_store, registry, clock, concurrency=2)
    result = await dispatcher.process_pending(10)

    assert result.processed == 10
    assert peak == 2


@pytest.mark.asyncio
async def test_stale_running_job_is_reclaimed(memory_store, registry, clock):
    registry.register("send-email", Recorder())
    await memory_store.insert(make_job("stuck", max_attempts=3))
    await memory_store.conditional_update(
        "stuck",
        0,
        {"status": JobStatus.RUNNING, "claimed_by": "dead-pass", "claimed_at": START},
    )
    dispatcher = make_dispatcher(
        memory_store, registry, clock, stale_after=timedelta(minutes=15)
    )

    clock.advance(minutes=10)
    assert await dispatcher.reclaim_stale() == 0

    clock.advance(minutes=10)
    assert await dispatcher.reclaim_stale() == 1

    job = await memory_store.get("stuck")
    assert job.status == JobStatus.PENDING
    assert job.attempts == 1
    assert job.error_code == "WORKER_TIMEOUT"
    assert job.last_error == "Job timeout after 900s (claimed by dead-pass)"
    assert job.claimed_by is None


@pytest.mark.asyncio
async def test_reclaim_runs_at_start_of_pass(memory_store, registry, clock):
    registry.register("send-email", Recorder())
    await memory_store.insert(make_job("stuck", max_attempts=1))
    await memory_store.conditional_update(
        "stuck", 0, {"status": JobStatus.RUNNING, "claimed_at": START}
    )
    await memory_store.insert(make_job("fresh"))
    dispatcher = make_dispatcher(
        memory_store, registry, clock, stale_after=timedelta(seconds=60)
    )
    clock.advance(120)

    result = await dispatcher.process_pending(10)

    assert result.reclaimed == 1
    assert result.processed == 1
    assert (await memory_store.get("stuck")).status == JobStatus.FAILED


@pytest.mark.asyncio
async def test_reclaim_disabled_without_stale_after(memory_store, registry, clock):
    dispatcher = make_dispatcher(memory_store, registry, clock)
    assert await dispatcher.reclaim_stale() == 0


@pytest.mark.asyncio
async def test_invalid_limit_rejected(memory_store, registry, clock):
    dispatcher = make_dispatcher(memory_store, registry, clock)
    with pytest.raises(ValueError, match="limit must be at least 1"):
        await dispatcher.process_pending(0)


def test_invalid_concurrency_rejected(memory_store, registry, clock):
    with pytest.raises(ValueError, match="concurrency"):
        make_dispatcher(memory_store, registry, clock, concurrency=0)


@pytest.mark.asyncio
async def test_store_failure_aborts_pass_after_siblings_settle(registry, clock):
    class FlakyStore(InMemoryJobStore):
        async def conditional_update(self, job_id, expected_version, changes, **kwargs):
            if job_id == "bad" and changes.get("status") == JobStatus.COMPLETED:
                raise StoreUnavailableError()
            return await super().conditional_update(
                job_id, expected_version, changes, **kwargs
            )

    store = FlakyStore()
    registry.register("send-email", Recorder())
    await store.insert(make_job("bad", created_offset_s=0))
    await store.insert(make_job("good", created_offset_s=1))

    dispatcher = make_dispatcher(store, registry, clock)
    with pytest.raises(StoreUnavailableError):
        await dispatcher.process_pending(10)

    assert (await store.get("good")).status == JobStatus.COMPLETED
    assert (await store.get("bad")).status == JobStatus.RUNNING


@pytest.mark.asyncio
async def test_delay_is_respected(job_service, registry, clock):
    registry.register("send-email", Recorder())
    job_id = await job_service.enqueue("send-email", {}, delay=30)

    job = await job_service.get_job(job_id)
    assert job.scheduled_for >= job.created_at + timedelta(seconds=30)

    clock.advance(29)
    assert (await job_service.process_pending()).claimed == 0
    clock.advance(1)
    assert (await job_service.process_pending()).processed == 1


@pytest.mark.asyncio
async def test_sql_store_pass(sql_store, registry, test_settings, clock):
    registry.register("send-email", Recorder(result={"ok": True}))
    registry.register("broken", Recorder(error=RuntimeError("boom")))
    settings = test_settings.model_copy(update={"job_concurrency": 1})
    service = JobService(sql_store, registry, settings, clock)
    ok = await service.enqueue("send-email", {"to": "a@example.com"})
    bad = await service.enqueue("broken", {})

    result = await service.process_pending(10)

    assert (result.processed, result.retried) == (1, 1)
    done = await service.get_job(ok)
    assert done.status == JobStatus.COMPLETED
    assert done.result == {"ok": True}
    assert done.version == 2
    retry = await service.get_job(bad)
    assert retry.status == JobStatus.PENDING
    assert retry.scheduled_for == START + timedelta(seconds=2)


@pytest.mark.asyncio
async def test_sql_store_pass_survives_unstorable_result(
    sql_store, registry, test_settings, clock
):
    registry.register(
        "stamp", Recorder(result={"when": datetime(2026, 1, 1, tzinfo=timezone.utc)})
    )
    registry.register("opaque", Recorder(result=object()))
    service = JobService(sql_store, registry, test_settings, clock)
    stamped = await service.enqueue("stamp", {})
    opaque = await service.enqueue("opaque", {}, max_attempts=1)

    result = await service.process_pending(10)

    assert (result.processed, result.dead) == (1, 1)
    done = await service.get_job(stamped)
    assert done.status == JobStatus.COMPLETED
    assert done.result == {"when": "2026-01-01T00:00:00+00:00"}
    failed = await service.get_job(opaque)
    assert failed.status == JobStatus.FAILED
    assert failed.error_code == "INVALID_RESULT"


def test_process_result_counting():
    result = ProcessResult()
    result.add(ExecutionOutcome("a", True, JobStatus.COMPLETED))
    result.add(ExecutionOutcome("b", False, JobStatus.PENDING, "x"))
    result.add(ExecutionOutcome("c", False, JobStatus.FAILED, "y"))
    result.add(ExecutionOutcome("d", True, JobStatus.COMPLETED, recorded=False))
    result.add(ExecutionOutcome("e", False, JobStatus.FAILED, "z", recorded=False))

    assert result.to_dict() == {
        "processed": 1,
        "failed": 2,
        "retried": 1,
        "dead": 1,
        "claimed": 0,
        "reclaimed": 0,
        "dropped": 2,
    }
