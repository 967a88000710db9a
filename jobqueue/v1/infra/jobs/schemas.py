"""
Job system Pydantic schemas.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from jobqueue.v1.infra.jobs.models import JobStatus


class JobEnqueueRequest(BaseModel):
    """Schema for enqueueing jobs via API."""

    type: str | None = Field(default=None, description="Job type")
    payload: Any = Field(default=None, description="Job payload, passed verbatim")
    delay: float | None = Field(
        default=None, description="Seconds before the job becomes due"
    )
    max_attempts: int | None = Field(
        default=None, description="Attempts before the job fails"
    )
    id: str | None = Field(default=None, description="Caller-chosen job id")


class JobEnqueueResponse(BaseModel):
    """Schema for job enqueue response."""

    job_id: str
    type: str
    status: JobStatus = JobStatus.PENDING


class JobResponse(BaseModel):
    """Schema for job API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    type: str
    payload: Any
    status: JobStatus
    attempts: int
    max_attempts: int
    scheduled_for: datetime
    version: int

    # Ownership
    claimed_by: str | None = None
    claimed_at: datetime | None = None

    # Results
    result: Any = None
    error_code: str | None = None
    last_error: str | None = None

    # Metadata
    completed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class JobListResponse(BaseModel):
    """Schema for job list API response."""

    jobs: list[JobResponse]
    limit: int
    offset: int


class JobStatsResponse(BaseModel):
    """Schema for job statistics."""

    by_status: dict[str, int]
    total: int
    queue_depth: int  # pending + running

    @classmethod
    def from_counts(cls, counts: dict[str, int]) -> "JobStatsResponse":
        return cls(
            by_status=counts,
            total=sum(counts.values()),
            queue_depth=counts.get(JobStatus.PENDING.value, 0)
            + counts.get(JobStatus.RUNNING.value, 0),
        )


class ProcessResultResponse(BaseModel):
    """Counters of one dispatcher pass."""

    processed: int
    failed: int
    retried: int
    dead: int
    claimed: int
    reclaimed: int
    dropped: int = 0


class CleanupRequest(BaseModel):
    """Schema for a manual cleanup sweep."""

    max_age_seconds: float | None = Field(
        default=None, description="Retention window, defaults to JOB_CLEANUP_AFTER_S"
    )


class CronRunResponse(BaseModel):
    """Summary of a triggered cron pass."""

    success: bool = True
    duration_ms: int
    processed: ProcessResultResponse
    cleaned: int
    stats_before: JobStatsResponse
    stats_after: JobStatsResponse
