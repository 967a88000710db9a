import threading

import pytest

from jobqueue.v1.core.registries import JobRegistry
from jobqueue.v1.infra.jobs.handlers import FunctionHandler, MaintenanceCleanupHandler
from jobqueue.v1.infra.jobs.models import JobStatus, JobType
from jobqueue.v1.infra.jobs.registry_init import register_job_handlers

from tests.conftest import make_job


class TestFunctionHandler:
    @pytest.mark.asyncio
    async def test_async_function(self):
        async def double(payload):
            return payload["n"] * 2

        assert await FunctionHandler(double).handle({"n": 21}) == 42

    @pytest.mark.asyncio
    async def test_sync_function_runs_off_the_event_loop(self):
        main_thread = threading.get_ident()

        def which_thread(payload):
            return threading.get_ident()

        assert await FunctionHandler(which_thread).handle(None) != main_thread

    @pytest.mark.asyncio
    async def test_exceptions_propagate(self):
        def explode(payload):
            raise RuntimeError("nope")

        with pytest.raises(RuntimeError, match="nope"):
            await FunctionHandler(explode).handle({})

    def test_rejects_non_callable(self):
        with pytest.raises(TypeError, match="must be callable"):
            FunctionHandler("not a function")


class TestMaintenanceCleanupHandler:
    async def _old_completed_job(self, store, job_id="done"):
        await store.insert(make_job(job_id))
        await store.conditional_update(job_id, 0, {"status": JobStatus.COMPLETED})

    @pytest.mark.asyncio
    async def test_cleanup_deletes_old_jobs(self, memory_store, test_settings):
        await self._old_completed_job(memory_store)
        handler = MaintenanceCleanupHandler(memory_store, test_settings)

        result = await handler.handle({"max_age_seconds": 0})

        assert result == {
            "status": "completed",
            "tasks_processed": ["cleanup_jobs"],
            "dry_run": False,
            "results": {"cleanup_jobs": {"status": "completed", "deleted_count": 1}},
        }
        assert await memory_store.get("done") is None

    @pytest.mark.asyncio
    async def test_dry_run_deletes_nothing(self, memory_store, test_settings):
        await self._old_completed_job(memory_store)
        handler = MaintenanceCleanupHandler(memory_store, test_settings)

        result = await handler.handle({"dry_run": True, "max_age_seconds": 0})

        assert result["dry_run"] is True
        assert result["results"]["cleanup_jobs"]["status"] == "dry_run"
        assert await memory_store.get("done") is not None

    @pytest.mark.asyncio
    async def test_unknown_task_fails_before_any_work(self, memory_store, test_settings):
        await self._old_completed_job(memory_store)
        handler = MaintenanceCleanupHandler(memory_store, test_settings)

        with pytest.raises(ValueError, match="Unknown maintenance tasks: vacuum"):
            await handler.handle({"tasks": ["cleanup_jobs", "vacuum"], "max_age_seconds": 0})
        assert await memory_store.get("done") is not None

    @pytest.mark.asyncio
    async def test_empty_payload_uses_defaults(self, memory_store, test_settings):
        handler = MaintenanceCleanupHandler(memory_store, test_settings)

        result = await handler.handle(None)

        assert result["tasks_processed"] == ["cleanup_jobs"]
        assert result["results"]["cleanup_jobs"]["deleted_count"] == 0


def test_register_job_handlers(memory_store, test_settings):
    registry = JobRegistry()
    register_job_handlers(registry, memory_store, test_settings)

    assert JobType.CLEANUP_OLD_DATA.value in registry
    assert isinstance(
        registry.get(JobType.CLEANUP_OLD_DATA.value), MaintenanceCleanupHandler
    )


def test_register_job_handlers_skips_frozen_registry(memory_store, test_settings):
    registry = JobRegistry()
    registry.freeze()

    register_job_handlers(registry, memory_store, test_settings)

    assert registry.list() == []
