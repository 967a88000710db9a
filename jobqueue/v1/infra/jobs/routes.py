"""
Job queue API endpoints.

The cron router is what an external scheduler hits to drive the queue; the
jobs router provides monitoring and management on top of the same service.
"""

import asyncio
import time
from typing import Any

from fastapi import APIRouter, Depends, Query

from jobqueue.config.logging import get_logger
from jobqueue.config.settings import Settings, SettingsDep
from jobqueue.infra.database import Database, DatabaseDep
from jobqueue.v1.core.exceptions import (
    NotFoundError,
    PassTimeoutError,
    create_success_response,
)
from jobqueue.v1.core.registries import job_registry
from jobqueue.v1.core.security import Principal, PrincipalDep
from jobqueue.v1.infra.jobs.models import JobStatus
from jobqueue.v1.infra.jobs.repository import SqlAlchemyJobStore
from jobqueue.v1.infra.jobs.schemas import (
    CleanupRequest,
    CronRunResponse,
    JobEnqueueRequest,
    JobEnqueueResponse,
    JobListResponse,
    JobResponse,
    JobStatsResponse,
    ProcessResultResponse,
)
from jobqueue.v1.infra.jobs.service import JobService

logger = get_logger(__name__)
cron_router = APIRouter(prefix="/cron", tags=["cron"])
router = APIRouter(prefix="/jobs", tags=["jobs"])


def get_job_service(
    database: Database = DatabaseDep, settings: Settings = SettingsDep
) -> JobService:
    """Dependency injection function for the job service."""
    return JobService(SqlAlchemyJobStore(database.SessionLocal), job_registry, settings)


# Convenience type alias for dependency injection
JobServiceDep = Depends(get_job_service)


@cron_router.get("/jobs", response_model=dict)
async def run_jobs(
    principal: Principal = PrincipalDep,
    job_service: JobService = JobServiceDep,
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Process due jobs and sweep old ones; meant to be called by a scheduler."""
    start = time.perf_counter()

    stats_before = await job_service.get_stats()

    pass_coro = job_service.process_pending(settings.job_batch_limit)
    try:
        if settings.job_pass_timeout_s is None:
            result = await pass_coro
        else:
            result = await asyncio.wait_for(pass_coro, settings.job_pass_timeout_s)
    except TimeoutError:
        logger.error("Job processing timed out", timeout_s=settings.job_pass_timeout_s)
        raise PassTimeoutError(settings.job_pass_timeout_s) from None

    cleaned = await job_service.cleanup(settings.job_cleanup_after_s)
    stats_after = await job_service.get_stats()
    duration_ms = int((time.perf_counter() - start) * 1000)

    logger.info(
        "Cron job processing completed",
        caller=principal.subject,
        duration_ms=duration_ms,
        cleaned=cleaned,
        **result.to_dict(),
    )

    response = CronRunResponse(
        duration_ms=duration_ms,
        processed=ProcessResultResponse(**result.to_dict()),
        cleaned=cleaned,
        stats_before=JobStatsResponse.from_counts(stats_before),
        stats_after=JobStatsResponse.from_counts(stats_after),
    )
    return create_success_response(data=response.model_dump(mode="json"))


@cron_router.post("/jobs", response_model=dict)
async def enqueue_job(
    job_request: JobEnqueueRequest,
    principal: Principal = PrincipalDep,
    job_service: JobService = JobServiceDep,
) -> dict[str, Any]:
    """Enqueue a new background job."""
    job_id = await job_service.enqueue(
        job_request.type,
        job_request.payload,
        delay=job_request.delay,
        max_attempts=job_request.max_attempts,
        job_id=job_request.id,
    )

    logger.info(
        "Job enqueued via API", job_id=job_id, type=job_request.type, caller=principal.subject
    )

    response = JobEnqueueResponse(job_id=job_id, type=job_request.type)
    return create_success_response(
        data=response.model_dump(mode="json"), message="Job enqueued"
    )


@router.get("/stats", response_model=dict)
async def get_job_stats(
    principal: Principal = PrincipalDep,
    job_service: JobService = JobServiceDep,
) -> dict[str, Any]:
    """Get job counts by status."""
    stats = await job_service.get_stats()
    return create_success_response(data=JobStatsResponse.from_counts(stats).model_dump())


@router.post("/cleanup", response_model=dict)
async def cleanup_jobs(
    request: CleanupRequest | None = None,
    principal: Principal = PrincipalDep,
    job_service: JobService = JobServiceDep,
) -> dict[str, Any]:
    """Delete completed and failed jobs older than the retention window."""
    max_age_seconds = request.max_age_seconds if request else None
    deleted_count = await job_service.cleanup(max_age_seconds)

    logger.info("Job cleanup via API", deleted_count=deleted_count, caller=principal.subject)

    return create_success_response(data={"deleted_count": deleted_count})


@router.get("", response_model=dict)
async def list_jobs(
    status: JobStatus | None = Query(default=None, description="Filter by status"),
    type: str | None = Query(default=None, description="Filter by job type"),
    limit: int = Query(default=50, ge=1, le=1000, description="Maximum results"),
    offset: int = Query(default=0, ge=0, description="Results offset"),
    principal: Principal = PrincipalDep,
    job_service: JobService = JobServiceDep,
) -> dict[str, Any]:
    """List jobs, oldest first, with filtering and pagination."""
    jobs = await job_service.list_jobs(
        status=status, job_type=type, limit=limit, offset=offset
    )

    response_data = JobListResponse(
        jobs=[JobResponse.model_validate(job) for job in jobs],
        limit=limit,
        offset=offset,
    )
    return create_success_response(data=response_data.model_dump(mode="json"))


@router.get("/{job_id}", response_model=dict)
async def get_job(
    job_id: str,
    principal: Principal = PrincipalDep,
    job_service: JobService = JobServiceDep,
) -> dict[str, Any]:
    """Get a specific job by ID."""
    job = await job_service.get_job(job_id)

    if not job:
        raise NotFoundError("Job not found", {"job_id": job_id})

    return create_success_response(
        data=JobResponse.model_validate(job).model_dump(mode="json")
    )


@router.post("/{job_id}/cancel", response_model=dict)
async def cancel_job(
    job_id: str,
    principal: Principal = PrincipalDep,
    job_service: JobService = JobServiceDep,
) -> dict[str, Any]:
    """Cancel a pending or running job."""
    success = await job_service.cancel_job(job_id)

    if not success:
        raise NotFoundError(
            "Job not found or not eligible for cancellation", {"job_id": job_id}
        )

    logger.info("Job cancelled via API", job_id=job_id, caller=principal.subject)

    return create_success_response(data={"success": True, "job_id": job_id})
