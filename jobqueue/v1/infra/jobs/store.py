"""
Job record store contract and the in-memory implementation.

The queue core talks to persistence only through ``JobStore``. Every state
change is a compare-and-swap on the job's ``version``: a write applies only if
nobody else has written the job since it was read, and each applied write
bumps the version by exactly one. There are no locks.
"""

import copy
import json
from collections.abc import Iterable, Mapping
from dataclasses import fields, replace
from datetime import datetime
from typing import Any, Protocol

from jobqueue.v1.core.exceptions import DuplicateKeyError
from jobqueue.v1.infra.jobs.models import Job, JobStatus

# Fields a conditional update may change; id, created_at and version are owned by the store
MUTABLE_FIELDS = frozenset(
    f.name for f in fields(Job) if f.name not in ("id", "created_at", "version")
)

# Stored in JSON columns by every store
JSON_FIELDS = ("payload", "result")


def validate_changes(changes: Mapping[str, Any]) -> None:
    unknown = set(changes) - MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update job fields: {', '.join(sorted(unknown))}")
    ensure_json_compatible(changes)


def ensure_json_compatible(values: Mapping[str, Any]) -> None:
    """Reject payloads and results a JSON column cannot hold."""
    for name in JSON_FIELDS:
        if name not in values:
            continue
        try:
            json.dumps(values[name], allow_nan=False)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Job {name} is not JSON-serializable: {e}") from e


class JobStore(Protocol):
    """Durable table of jobs with optimistic concurrency."""

    async def insert(self, job: Job) -> str:
        """
        Insert a new job, raising ``DuplicateKeyError`` if the id exists and
        ``ValueError`` if its payload or result is not JSON-serializable.
        """
        ...

    async def get(self, job_id: str) -> Job | None:
        ...

    async def conditional_update(
        self,
        job_id: str,
        expected_version: int,
        changes: Mapping[str, Any],
        *,
        expected_status: JobStatus | None = None,
    ) -> bool:
        """
        Apply ``changes`` only if the stored job still has ``expected_version``
        (and ``expected_status`` when given). Returns False, with no side
        effects, when the job is missing or was modified in the meantime.
        """
        ...

    async def query_due(self, now: datetime, limit: int) -> list[Job]:
        """Pending jobs with ``scheduled_for <= now``, oldest due first."""
        ...

    async def query_stale(self, cutoff: datetime, limit: int) -> list[Job]:
        """Running jobs claimed before ``cutoff``, oldest claim first."""
        ...

    async def list_jobs(
        self,
        status: JobStatus | None = None,
        job_type: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Job]:
        ...

    async def count_by_status(self) -> dict[JobStatus, int]:
        ...

    async def delete_older_than(
        self, statuses: Iterable[JobStatus], cutoff: datetime
    ) -> int:
        """Delete jobs in ``statuses`` whose ``updated_at`` is before ``cutoff``."""
        ...


class InMemoryJobStore:
    """
    Process-local ``JobStore``.

    Used by the test-suite and for embedding the queue in a single process.
    Each method completes without awaiting, so every call is atomic with
    respect to other coroutines on the same event loop. Exact ordering ties
    in ``query_due`` fall back to insertion order.
    """

    def __init__(self) -> None:
        self._jobs: dict[str, Job] = {}

    def __len__(self) -> int:
        return len(self._jobs)

    @staticmethod
    def _copy(job: Job) -> Job:
        return replace(
            job,
            payload=copy.deepcopy(job.payload),
            result=copy.deepcopy(job.result),
        )

    async def insert(self, job: Job) -> str:
        ensure_json_compatible({"payload": job.payload, "result": job.result})
        if job.id in self._jobs:
            raise DuplicateKeyError(job.id)
        self._jobs[job.id] = self._copy(job)
        return job.id

    async def get(self, job_id: str) -> Job | None:
        job = self._jobs.get(job_id)
        return self._copy(job) if job else None

    async def conditional_update(
        self,
        job_id: str,
        expected_version: int,
        changes: Mapping[str, Any],
        *,
        expected_status: JobStatus | None = None,
    ) -> bool:
        validate_changes(changes)
        current = self._jobs.get(job_id)
        if current is None or current.version != expected_version:
            return False
        if expected_status is not None and current.status != expected_status:
            return False

        self._jobs[job_id] = replace(
            current, **copy.deepcopy(dict(changes)), version=current.version + 1
        )
        return True

    async def query_due(self, now: datetime, limit: int) -> list[Job]:
        due = [job for job in self._jobs.values() if job.is_due(now)]
        due.sort(key=lambda job: (job.scheduled_for, job.created_at))
        return [self._copy(job) for job in due[:limit]]

    async def query_stale(self, cutoff: datetime, limit: int) -> list[Job]:
        stale = [
            job
            for job in self._jobs.values()
            if job.status == JobStatus.RUNNING
            and job.claimed_at is not None
            and job.claimed_at < cutoff
        ]
        stale.sort(key=lambda job: job.claimed_at)
        return [self._copy(job) for job in stale[:limit]]

    async def list_jobs(
        self,
        status: JobStatus | None = None,
        job_type: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Job]:
        jobs = [
            job
            for job in self._jobs.values()
            if (status is None or job.status == status)
            and (job_type is None or job.type == job_type)
        ]
        jobs.sort(key=lambda job: job.created_at)
        return [self._copy(job) for job in jobs[offset : offset + limit]]

    async def count_by_status(self) -> dict[JobStatus, int]:
        counts: dict[JobStatus, int] = {}
        for job in self._jobs.values():
            counts[job.status] = counts.get(job.status, 0) + 1
        return counts

    async def delete_older_than(
        self, statuses: Iterable[JobStatus], cutoff: datetime
    ) -> int:
        targets = set(statuses)
        doomed = [
            job_id
            for job_id, job in self._jobs.items()
            if job.status in targets and job.updated_at < cutoff
        ]
        for job_id in doomed:
            del self._jobs[job_id]
        return len(doomed)
