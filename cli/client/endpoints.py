"""API Endpoint Wrappers - Type-safe API calls"""

from typing import Any

from ..utils.config_manager import config
from .base import APIClient, JobQueueError

__all__ = ["JobQueueClient", "JobQueueError"]


class JobQueueClient:
    """High-level client with typed endpoint methods"""

    def __init__(
        self,
        base_url: str | None = None,
        headers: dict[str, str] | None = None,
        token: str | None = None,
    ):
        # Use config values if not provided
        api_config = config.load_config().get("api", {})
        final_base_url = base_url or api_config.get("base_url", "http://localhost:8000")
        final_headers = dict(headers or api_config.get("headers") or {})

        token = token or api_config.get("token")
        if token:
            final_headers["Authorization"] = f"Bearer {token}"

        self.api = APIClient(
            base_url=final_base_url,
            timeout=int(api_config.get("timeout", 30)),
            headers=final_headers,
        )

    def __enter__(self):
        self.api.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.api.__exit__(exc_type, exc_val, exc_tb)

    # Health Check
    def health_check(self) -> dict[str, Any]:
        """Check API health status"""
        return self.api.get("/healthz")

    # Cron trigger
    def run_pass(self) -> dict[str, Any]:
        """Trigger one processing pass plus cleanup"""
        return self.api.get("/cron/jobs")

    def enqueue(
        self,
        type: str,
        payload: Any = None,
        delay: float | None = None,
        max_attempts: int | None = None,
    ) -> dict[str, Any]:
        """Enqueue a job"""
        data: dict[str, Any] = {"type": type, "payload": payload}
        if delay is not None:
            data["delay"] = delay
        if max_attempts is not None:
            data["max_attempts"] = max_attempts
        return self.api.post("/cron/jobs", data)

    # Jobs Endpoints
    def get_stats(self) -> dict[str, Any]:
        """Get job counts by status"""
        return self.api.get("/jobs/stats")

    def cleanup(self, max_age_seconds: float | None = None) -> dict[str, Any]:
        """Delete old completed and failed jobs"""
        return self.api.post("/jobs/cleanup", {"max_age_seconds": max_age_seconds})

    def list_jobs(
        self,
        status: str | None = None,
        type: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> dict[str, Any]:
        """List jobs with filters"""
        params: dict[str, Any] = {"limit": limit, "offset": offset}
        if status:
            params["status"] = status
        if type:
            params["type"] = type
        return self.api.get("/jobs", params)

    def get_job(self, job_id: str) -> dict[str, Any]:
        """Get specific job by ID"""
        return self.api.get(f"/jobs/{job_id}")

    def cancel_job(self, job_id: str) -> dict[str, Any]:
        """Cancel a pending or running job"""
        return self.api.post(f"/jobs/{job_id}/cancel")
