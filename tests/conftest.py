import asyncio
import os
from collections.abc import AsyncGenerator, Generator
from datetime import UTC, datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from jobqueue.config.settings import Settings, get_settings
from jobqueue.infra.database import Base
from jobqueue.main import create_app
from jobqueue.v1.core.registries import JobRegistry
from jobqueue.v1.infra.jobs.models import Job, JobRecord
from jobqueue.v1.infra.jobs.repository import SqlAlchemyJobStore
from jobqueue.v1.infra.jobs.routes import get_job_service
from jobqueue.v1.infra.jobs.service import JobService
from jobqueue.v1.infra.jobs.store import InMemoryJobStore

START = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


def make_job(
    job_id: str, *, offset_s: float = 0, created_offset_s: float = 0, **kwargs
) -> Job:
    """A pending job due ``offset_s`` seconds after START."""
    created = START + timedelta(seconds=created_offset_s)
    return Job(
        id=job_id,
        type=kwargs.pop("type", "send-email"),
        payload=kwargs.pop("payload", {"to": f"{job_id}@example.com"}),
        scheduled_for=START + timedelta(seconds=offset_s),
        created_at=created,
        updated_at=created,
        **kwargs,
    )


class FakeClock:
    """Manually advanced clock; every component under test reads time from it."""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, **kwargs) -> datetime:
        self.now += timedelta(seconds=seconds, **kwargs)
        return self.now


class YieldingJobStore(InMemoryJobStore):
    """In-memory store that yields to the event loop before every operation,
    so concurrent passes interleave their reads and conditional updates."""

    async def query_due(self, now, limit):
        await asyncio.sleep(0)
        return await super().query_due(now, limit)

    async def conditional_update(self, job_id, expected_version, changes, **kwargs):
        await asyncio.sleep(0)
        return await super().conditional_update(
            job_id, expected_version, changes, **kwargs
        )


class Recorder:
    """Job handler that records payloads and optionally fails."""

    def __init__(self, result=None, error: Exception | None = None):
        self.result = result
        self.error = error
        self.calls: list = []

    async def handle(self, payload):
        self.calls.append(payload)
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def test_settings() -> Settings:
    """Settings with stale reclaim disabled; tests that need it turn it on."""
    return Settings(
        environment="development",
        job_stale_after_s=None,
        job_concurrency=5,
        _env_file=None,
    )


@pytest.fixture
def registry() -> JobRegistry:
    return JobRegistry()


@pytest.fixture
def memory_store() -> InMemoryJobStore:
    return InMemoryJobStore()


@pytest.fixture
def job_service(memory_store, registry, test_settings, clock) -> JobService:
    return JobService(memory_store, registry, test_settings, clock)


async def _sql_store(tmp_path) -> AsyncGenerator[SqlAlchemyJobStore, None]:
    database_url = os.getenv("DATABASE_URL")
    if not (database_url and "postgresql" in database_url):
        database_url = f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}"

    engine = create_async_engine(database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield SqlAlchemyJobStore(async_sessionmaker(engine, expire_on_commit=False))

    async with engine.begin() as conn:
        await conn.execute(delete(JobRecord))
    await engine.dispose()


@pytest.fixture
async def sql_store(tmp_path) -> AsyncGenerator[SqlAlchemyJobStore, None]:
    async for store in _sql_store(tmp_path):
        yield store


@pytest.fixture(params=["memory", "sqlalchemy"])
async def job_store(request, tmp_path):
    """Runs a test against both store implementations."""
    if request.param == "memory":
        yield InMemoryJobStore()
        return
    async for store in _sql_store(tmp_path):
        yield store


@pytest.fixture
def app(job_service, test_settings):
    """FastAPI application wired to an in-memory job service."""
    app = create_app(test_settings)

    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_job_service] = lambda: job_service

    yield app

    # Clean up
    app.dependency_overrides.clear()


@pytest.fixture
def client(app) -> Generator[TestClient, None, None]:
    """Create a test client."""
    with TestClient(app) as test_client:
        yield test_client
