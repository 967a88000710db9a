from fastapi.testclient import TestClient

from jobqueue.v1.core.exceptions import StoreUnavailableError
from jobqueue.v1.infra.jobs.routes import get_job_service


def test_health_check_success(client: TestClient):
    """Test health check endpoint returns correct format."""
    client.post("/v1/cron/jobs", json={"type": "send-email"})

    response = client.get("/v1/healthz")

    assert response.status_code == 200

    data = response.json()
    assert data["ok"] is True

    health_data = data["data"]
    assert health_data["ok"] is True
    assert health_data["version"] == "1.0.0"
    assert health_data["environment"] == "development"
    assert health_data["store"]["connected"] is True
    assert health_data["queue"]["queue_depth"] == 1


def test_health_check_response_structure(client: TestClient):
    """Test health check response envelope structure."""
    response = client.get("/v1/healthz")

    data = response.json()

    # Check response envelope structure
    for key in ["ok", "data", "message", "request_id", "timestamp"]:
        assert key in data

    # Check that request ID is present in headers
    assert "X-Request-ID" in response.headers


def test_health_check_store_down(app, client: TestClient):
    class DownService:
        async def get_stats(self):
            raise StoreUnavailableError("connection refused")

    app.dependency_overrides[get_job_service] = lambda: DownService()

    data = client.get("/v1/healthz").json()["data"]

    assert data["ok"] is False
    assert data["store"] == {
        "connected": False,
        "response_time_ms": None,
        "error": "connection refused",
    }
    assert data["queue"] is None
