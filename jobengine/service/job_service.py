"""
Public API of the job engine.

Ties the handler registry, the lifecycle engine and the runner together:
jobs are started by type and executed in the background; callers query,
stop, kill and clean up jobs and administer job types through this service.
"""

import logging

from jobengine.constants import DEFAULT_FIND_JOBS_COUNT, JobStatus
from jobengine.observability.metrics import MetricsCollector, get_metrics
from jobengine.service.handlers import HandlerRegistry
from jobengine.service.lifecycle import JobLifecycle
from jobengine.service.runner import JobExecutor, JobRunner, metered
from jobengine.types.job import JobInfo, JobMessage, RunningJob

logger = logging.getLogger(__name__)


class JobService:
    """Starts, stops, kills, queries and cleans up jobs."""

    def __init__(
        self,
        lifecycle: JobLifecycle,
        handlers: HandlerRegistry,
        runner: JobRunner,
        executor: JobExecutor,
        metrics: MetricsCollector | None = None,
    ):
        self.lifecycle = lifecycle
        self.handlers = handlers
        self.runner = runner
        self.executor = executor
        self._metrics = metrics or get_metrics()

        logger.info(
            f"Found {len(handlers)} job handlers",
            extra={"job_types": handlers.job_types()},
        )

    async def start_async_job(self, job_type: str) -> str | None:
        """
        Start a job in the background.

        Args:
            job_type: The job type, matched case-insensitively.

        Returns:
            Id of the started job, or None if the job type is disabled or
            blocked by a running job.

        Raises:
            JobTypeNotFoundError: If no handler is registered for the job type.
        """
        runnable = self.handlers.get(job_type)
        job = await self.lifecycle.start_job(runnable.definition())
        if job is None:
            return None

        job_runnable = metered(runnable, self._metrics)
        self.executor.submit(job.job_id, lambda: self.runner.run(job.job_id, job_runnable))
        return job.job_id

    async def stop_job(self, job_id: str, status: JobStatus | None = None) -> None:
        """Stop a job and release its run-lock."""
        await self.lifecycle.stop_job(job_id, status)

    async def kill_job(self, job_id: str) -> None:
        """Stop a job as DEAD."""
        await self.lifecycle.kill_job(job_id)

    async def kill_jobs_dead_since(self, seconds: int) -> list[str]:
        """Kill jobs without updates for the given number of seconds and sweep leaked locks."""
        return await self.lifecycle.kill_jobs_dead_since(seconds)

    async def append_message(self, job_id: str, message: JobMessage) -> None:
        await self.lifecycle.append_message(job_id, message)

    async def keep_alive(self, job_id: str) -> None:
        await self.lifecycle.keep_alive(job_id)

    async def mark_skipped(self, job_id: str) -> None:
        await self.lifecycle.mark_skipped(job_id)

    async def mark_restarted(self, job_id: str) -> None:
        await self.lifecycle.mark_restarted(job_id)

    async def find_job(self, job_id: str) -> JobInfo | None:
        async with self.lifecycle.unit_of_work() as (repo, _):
            return await repo.find_one(job_id)

    async def find_status(self, job_id: str) -> JobStatus | None:
        async with self.lifecycle.unit_of_work() as (repo, _):
            return await repo.find_status(job_id)

    async def find_jobs(
        self,
        job_type: str | None = None,
        count: int = DEFAULT_FIND_JOBS_COUNT,
    ) -> list[JobInfo]:
        """
        Find the latest jobs, optionally restricted to one job type.

        Args:
            job_type: If given, only jobs of this type are returned.
            count: Maximum number of jobs to return.

        Returns:
            The jobs, newest first.
        """
        async with self.lifecycle.unit_of_work() as (repo, _):
            if job_type is not None:
                return await repo.find_latest_by(job_type, count)
            return await repo.find_latest(count)

    async def find_jobs_distinct(self) -> list[JobInfo]:
        """Find the latest job of every job type."""
        async with self.lifecycle.unit_of_work() as (repo, _):
            return await repo.find_latest_jobs_distinct()

    async def find_all_jobs_without_messages(self) -> list[JobInfo]:
        async with self.lifecycle.unit_of_work() as (repo, _):
            return await repo.find_all_without_messages()

    async def delete_jobs(self, job_type: str | None = None) -> int:
        """
        Delete stopped jobs; running jobs are kept.

        Args:
            job_type: If given, only jobs of this type are deleted.

        Returns:
            Number of deleted jobs.
        """
        async with self.lifecycle.unit_of_work() as (repo, _):
            jobs = await (repo.find_by_type(job_type) if job_type is not None else repo.find_all())
            deleted = 0
            for job in jobs:
                if job.is_stopped and await repo.remove_if_stopped(job.job_id):
                    deleted += 1

        logger.info("Deleted stopped jobs", extra={"job_type": job_type, "deleted": deleted})
        return deleted

    async def keep_last_jobs(self, count: int) -> int:
        """
        Delete stopped jobs except the newest ``count`` jobs of every job type.

        Returns:
            Number of deleted jobs.
        """
        async with self.lifecycle.unit_of_work() as (repo, _):
            jobs = await repo.find_all_without_messages()

        seen: dict[str, int] = {}
        outdated = []
        for job in jobs:
            seen[job.job_type] = seen.get(job.job_type, 0) + 1
            if seen[job.job_type] > count and job.is_stopped:
                outdated.append(job.job_id)

        deleted = 0
        async with self.lifecycle.unit_of_work() as (repo, _):
            for job_id in outdated:
                if await repo.remove_if_stopped(job_id):
                    deleted += 1

        if deleted:
            logger.info("Removed old jobs", extra={"kept_per_type": count, "deleted": deleted})
        return deleted

    async def disable_job_type(self, job_type: str, comment: str = "") -> None:
        """Refuse starts of a job type until it is enabled again."""
        async with self.lifecycle.unit_of_work() as (_, run_locks):
            await run_locks.disable(job_type, comment)

    async def enable_job_type(self, job_type: str) -> None:
        async with self.lifecycle.unit_of_work() as (_, run_locks):
            await run_locks.enable(job_type)

    async def find_disabled_job_types(self) -> dict[str, str]:
        """Get the disabled job types and their disable comments."""
        async with self.lifecycle.unit_of_work() as (_, run_locks):
            return await run_locks.disabled_types()

    async def running_jobs(self) -> list[RunningJob]:
        """Get the job types currently holding a run-lock."""
        async with self.lifecycle.unit_of_work() as (_, run_locks):
            return await run_locks.running_jobs()

    async def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work and wait for (or cancel) running jobs."""
        await self.executor.shutdown(wait=wait)

