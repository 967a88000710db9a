import time
from datetime import UTC, datetime

from fastapi import APIRouter
from pydantic import BaseModel

from jobqueue.config.logging import get_logger
from jobqueue.config.settings import Settings, SettingsDep
from jobqueue.v1.core.exceptions import StoreUnavailableError, create_success_response
from jobqueue.v1.infra.jobs.models import JobStatus
from jobqueue.v1.infra.jobs.routes import JobServiceDep
from jobqueue.v1.infra.jobs.service import JobService

logger = get_logger(__name__)
router = APIRouter()


class StoreHealth(BaseModel):
    """Job store health status."""

    connected: bool
    response_time_ms: float | None = None
    error: str | None = None


class QueueHealth(BaseModel):
    """Queue depth as seen by the health check."""

    queue_depth: int = 0
    running: int = 0
    failed: int = 0


class HealthResponse(BaseModel):
    """Health response with job store and queue status."""

    ok: bool
    version: str
    environment: str
    timestamp: str
    store: StoreHealth
    queue: QueueHealth | None = None


@router.get("/healthz", response_model=dict)
async def health_check(
    settings: Settings = SettingsDep, job_service: JobService = JobServiceDep
):
    """Health check endpoint with job store and queue status."""
    start = time.perf_counter()
    queue_health = None

    try:
        stats = await job_service.get_stats()
    except StoreUnavailableError as e:
        logger.warning("Health check could not reach job store", error=e.message)
        store_health = StoreHealth(connected=False, error=e.message)
    else:
        store_health = StoreHealth(
            connected=True,
            response_time_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        queue_health = QueueHealth(
            queue_depth=stats[JobStatus.PENDING.value] + stats[JobStatus.RUNNING.value],
            running=stats[JobStatus.RUNNING.value],
            failed=stats[JobStatus.FAILED.value],
        )

    health = HealthResponse(
        ok=store_health.connected,
        version=settings.version,
        environment=settings.environment,
        timestamp=datetime.now(UTC).isoformat(),
        store=store_health,
        queue=queue_health,
    )
    return create_success_response(data=health.model_dump())
