"""
SQLAlchemy-backed job store.

Each operation runs in its own short session and commits before returning, so
the store carries no state between dispatcher passes. Conditional updates are
a single ``UPDATE ... WHERE id = :id AND version = :expected`` statement whose
rowcount tells whether this caller won.
"""

from collections.abc import AsyncIterator, Iterable, Mapping
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from jobqueue.config.logging import get_logger
from jobqueue.v1.core.exceptions import DuplicateKeyError, StoreUnavailableError
from jobqueue.v1.infra.jobs.models import Job, JobRecord, JobStatus
from jobqueue.v1.infra.jobs.store import ensure_json_compatible, validate_changes

logger = get_logger(__name__)

_DATETIME_FIELDS = ("scheduled_for", "claimed_at", "completed_at", "created_at", "updated_at")


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything we write is UTC
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def _column_values(changes: Mapping[str, Any]) -> dict[str, Any]:
    values = dict(changes)
    if isinstance(values.get("status"), JobStatus):
        values["status"] = values["status"].value
    return values


def _to_job(record: JobRecord) -> Job:
    job = Job(
        id=record.id,
        type=record.type,
        payload=record.payload,
        status=JobStatus(record.status),
        attempts=record.attempts,
        max_attempts=record.max_attempts,
        scheduled_for=record.scheduled_for,
        version=record.version,
        last_error=record.last_error,
        error_code=record.error_code,
        result=record.result,
        claimed_by=record.claimed_by,
        claimed_at=record.claimed_at,
        completed_at=record.completed_at,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )
    for name in _DATETIME_FIELDS:
        setattr(job, name, _as_utc(getattr(job, name)))
    return job


class SqlAlchemyJobStore:
    """``JobStore`` on top of an async SQLAlchemy session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self.session_factory() as session:
                yield session
        except (OperationalError, InterfaceError, OSError) as e:
            logger.error("Job store unavailable", error=str(e))
            raise StoreUnavailableError(details={"error": str(e)}) from e

    async def insert(self, job: Job) -> str:
        ensure_json_compatible({"payload": job.payload, "result": job.result})
        record = JobRecord(
            id=job.id,
            type=job.type,
            payload=job.payload,
            status=job.status.value,
            attempts=job.attempts,
            max_attempts=job.max_attempts,
            scheduled_for=job.scheduled_for,
            version=job.version,
            last_error=job.last_error,
            error_code=job.error_code,
            result=job.result,
            claimed_by=job.claimed_by,
            claimed_at=job.claimed_at,
            completed_at=job.completed_at,
            created_at=job.created_at,
            updated_at=job.updated_at,
        )
        async with self._session() as session:
            session.add(record)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise DuplicateKeyError(job.id) from e
        return job.id

    async def get(self, job_id: str) -> Job | None:
        async with self._session() as session:
            record = await session.get(JobRecord, job_id)
            return _to_job(record) if record else None

    async def conditional_update(
        self,
        job_id: str,
        expected_version: int,
        changes: Mapping[str, Any],
        *,
        expected_status: JobStatus | None = None,
    ) -> bool:
        validate_changes(changes)
        query = (
            update(JobRecord)
            .where(JobRecord.id == job_id, JobRecord.version == expected_version)
            .values(**_column_values(changes), version=JobRecord.version + 1)
            .execution_options(synchronize_session=False)
        )
        if expected_status is not None:
            query = query.where(JobRecord.status == expected_status.value)

        async with self._session() as session:
            result = await session.execute(query)
            await session.commit()
        return result.rowcount == 1

    async def query_due(self, now: datetime, limit: int) -> list[Job]:
        query = (
            select(JobRecord)
            .where(
                JobRecord.status == JobStatus.PENDING.value,
                JobRecord.scheduled_for <= now,
            )
            .order_by(JobRecord.scheduled_for, JobRecord.created_at)
            .limit(limit)
        )
        async with self._session() as session:
            result = await session.execute(query)
            return [_to_job(record) for record in result.scalars().all()]

    async def query_stale(self, cutoff: datetime, limit: int) -> list[Job]:
        query = (
            select(JobRecord)
            .where(
                JobRecord.status == JobStatus.RUNNING.value,
                JobRecord.claimed_at < cutoff,
            )
            .order_by(JobRecord.claimed_at)
            .limit(limit)
        )
        async with self._session() as session:
            result = await session.execute(query)
            return [_to_job(record) for record in result.scalars().all()]

    async def list_jobs(
        self,
        status: JobStatus | None = None,
        job_type: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Job]:
        query = select(JobRecord)
        if status is not None:
            query = query.where(JobRecord.status == status.value)
        if job_type is not None:
            query = query.where(JobRecord.type == job_type)
        query = query.order_by(JobRecord.created_at).offset(offset).limit(limit)

        async with self._session() as session:
            result = await session.execute(query)
            return [_to_job(record) for record in result.scalars().all()]

    async def count_by_status(self) -> dict[JobStatus, int]:
        async with self._session() as session:
            result = await session.execute(
                select(JobRecord.status, func.count(JobRecord.id)).group_by(
                    JobRecord.status
                )
            )
            return {JobStatus(status): count for status, count in result.all()}

    async def delete_older_than(
        self, statuses: Iterable[JobStatus], cutoff: datetime
    ) -> int:
        query = delete(JobRecord).where(
            JobRecord.status.in_([status.value for status in statuses]),
            JobRecord.updated_at < cutoff,
        )
        async with self._session() as session:
            result = await session.execute(query)
            await session.commit()
        return result.rowcount
