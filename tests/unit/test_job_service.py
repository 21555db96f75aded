"""
Unit tests for the job service.
"""

import pytest

from jobengine.constants import JobStatus
from jobengine.errors import JobTypeNotFoundError
from jobengine.service import HandlerRegistry, JobContext, JobService
from jobengine.types.job import JobMessage, RunningJob


@pytest.fixture
def handlers() -> HandlerRegistry:
    registry = HandlerRegistry()

    @registry.job("Import")
    async def run_import(context: JobContext) -> bool:
        await context.info("imported")
        return True

    @registry.job("export")
    async def run_export(context: JobContext) -> bool:
        return True

    return registry


async def run_to_completion(service: JobService, job_type: str) -> str:
    job_id = await service.start_async_job(job_type)
    await service.shutdown(wait=True)
    return job_id


class TestJobService:
    """Tests for JobService."""

    async def test_start_unknown_job_type(self, service: JobService):
        with pytest.raises(JobTypeNotFoundError):
            await service.start_async_job("nonexistent")

    async def test_start_async_job(self, service: JobService):
        """Test a started job runs in the background and is stopped afterwards."""
        job_id = await run_to_completion(service, "import")

        job = await service.find_job(job_id)
        assert job.job_type == "Import"
        assert job.is_stopped
        assert job.status == JobStatus.OK
        assert [m.message for m in job.messages] == ["imported"]
        assert await service.find_status(job_id) == JobStatus.OK
        assert await service.running_jobs() == []

    async def test_find_jobs(self, service: JobService, clock):
        import_id = await run_to_completion(service, "import")
        clock.advance(1)
        export_id = await run_to_completion(service, "export")

        assert [job.job_id for job in await service.find_jobs()] == [export_id, import_id]
        assert [job.job_id for job in await service.find_jobs("Import")] == [import_id]
        assert [job.job_id for job in await service.find_jobs(count=1)] == [export_id]
        assert {job.job_id for job in await service.find_jobs_distinct()} == {import_id, export_id}
        assert all(job.messages == [] for job in await service.find_all_jobs_without_messages())

    async def test_delete_jobs_keeps_running(self, service: JobService, lifecycle):
        """Test deleting jobs only removes stopped ones."""
        stopped_id = await run_to_completion(service, "import")
        running = await lifecycle.start_job(service.handlers.get("export").definition())

        deleted = await service.delete_jobs()

        assert deleted == 1
        assert await service.find_job(stopped_id) is None
        assert await service.find_job(running.job_id) is not None

    async def test_delete_jobs_by_type(self, service: JobService):
        import_id = await run_to_completion(service, "import")
        export_id = await run_to_completion(service, "export")

        assert await service.delete_jobs("Import") == 1
        assert await service.find_job(import_id) is None
        assert await service.find_job(export_id) is not None

    async def test_keep_last_jobs(self, service: JobService, clock):
        """Test only the newest jobs of each type survive."""
        import_ids = []
        for _ in range(3):
            import_ids.append(await run_to_completion(service, "import"))
            clock.advance(1)
        export_id = await run_to_completion(service, "export")

        deleted = await service.keep_last_jobs(1)

        assert deleted == 2
        remaining = {job.job_id for job in await service.find_jobs(count=10)}
        assert remaining == {import_ids[-1], export_id}

    async def test_disable_and_enable_job_type(self, service: JobService):
        await service.disable_job_type("export", "maintenance")

        assert await service.find_disabled_job_types() == {"export": "maintenance"}
        assert await service.start_async_job("export") is None

        await service.enable_job_type("export")

        assert await service.find_disabled_job_types() == {}
        assert await run_to_completion(service, "export") is not None

    async def test_running_jobs(self, service: JobService, lifecycle):
        running = await lifecycle.start_job(service.handlers.get("export").definition())

        assert await service.running_jobs() == [RunningJob(job_id=running.job_id, job_type="export")]
        assert await service.start_async_job("export") is None

    async def test_delegates_messages(self, service: JobService, lifecycle, clock):
        running = await lifecycle.start_job(service.handlers.get("export").definition())

        await service.append_message(running.job_id, JobMessage.error("boom", clock.now))
        await service.kill_job(running.job_id)

        job = await service.find_job(running.job_id)
        assert job.status == JobStatus.DEAD
        assert [m.message for m in job.messages][0] == "boom"
