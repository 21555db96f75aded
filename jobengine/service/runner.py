"""
Job execution.

The runner executes a job's handler on the shared worker pool, keeps the job
alive while the handler runs, restarts failed handlers as often as their
definition allows and stops the job when the handler is done.

Stopping or killing a job never cancels its handler: a handler still running
when its job is declared dead runs to completion.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from contextlib import suppress
from dataclasses import dataclass

from jobengine.config import get_settings
from jobengine.constants import SPAN_EXECUTE_JOB
from jobengine.observability.logging import job_log_context
from jobengine.observability.metrics import MetricsCollector
from jobengine.observability.tracing import get_tracer
from jobengine.service.events import JobEventBus
from jobengine.service.handlers import JobRunnable
from jobengine.service.lifecycle import JobLifecycle
from jobengine.types.events import JobEvent
from jobengine.types.job import JobDefinition, JobMessage

logger = logging.getLogger(__name__)


@dataclass
class JobContext:
    """
    Context passed to job handlers during execution.
    Identifies the job and lets the handler report progress.
    """

    job_id: str
    job_type: str
    lifecycle: JobLifecycle

    async def keep_alive(self) -> None:
        """Tell the engine the job is still alive."""
        await self.lifecycle.keep_alive(self.job_id)

    async def info(self, message: str) -> None:
        await self.lifecycle.append_message(self.job_id, JobMessage.info(message, self.lifecycle.now()))

    async def warn(self, message: str) -> None:
        await self.lifecycle.append_message(self.job_id, JobMessage.warning(message, self.lifecycle.now()))

    async def error(self, message: str) -> None:
        """Log an error; the job's status becomes ERROR."""
        await self.lifecycle.append_message(self.job_id, JobMessage.error(message, self.lifecycle.now()))


class MeteredJobRunnable:
    """
    Records the wall-clock runtime of every execution as a gauge.

    Results and exceptions of the wrapped handler pass through unchanged.
    """

    def __init__(self, delegate: JobRunnable, metrics: MetricsCollector):
        self._delegate = delegate
        self._metrics = metrics

    def definition(self) -> JobDefinition:
        return self._delegate.definition()

    async def execute(self, context: JobContext) -> bool:
        started = time.monotonic()
        try:
            return await self._delegate.execute(context)
        finally:
            self._metrics.record_job_runtime(
                self._delegate.definition().job_type,
                time.monotonic() - started,
            )


def metered(runnable: JobRunnable, metrics: MetricsCollector) -> MeteredJobRunnable:
    """Wrap a handler so its runtime is recorded."""
    return MeteredJobRunnable(runnable, metrics)


class JobExecutor:
    """
    Bounded pool executing jobs as asyncio tasks.

    At most ``max_workers`` jobs execute at the same time; further jobs wait
    for a free slot.
    """

    def __init__(self, max_workers: int | None = None):
        self.max_workers = max_workers or get_settings().worker_pool_size
        self._semaphore = asyncio.Semaphore(self.max_workers)
        self._tasks: dict[str, asyncio.Task] = {}

    @property
    def active_jobs(self) -> list[str]:
        """Ids of jobs submitted and not finished yet."""
        return list(self._tasks)

    def submit(self, job_id: str, job: Callable[[], Awaitable[None]]) -> asyncio.Task:
        """
        Schedule a job for execution without waiting for it.

        Args:
            job_id: The job id the task belongs to.
            job: Factory of the coroutine to run.

        Returns:
            The task executing the job.
        """
        task = asyncio.create_task(self._run(job_id, job), name=f"job-{job_id}")
        self._tasks[job_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(job_id, None))
        return task

    async def _run(self, job_id: str, job: Callable[[], Awaitable[None]]) -> None:
        async with self._semaphore:
            try:
                await job()
            except Exception:
                logger.exception("Exception executing job", extra={"job_id": job_id})

    async def shutdown(self, wait: bool = True) -> None:
        """
        Stop the pool.

        Args:
            wait: Wait for running jobs to complete; cancel them otherwise.
        """
        tasks = list(self._tasks.values())
        if not tasks:
            return

        if wait:
            logger.info(f"Waiting for {len(tasks)} jobs to complete")
        else:
            for task in tasks:
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


class JobRunner:
    """
    Runs one job from start to stop.

    Features:
    - Heartbeat keeping the job alive while the handler runs
    - Restart of failed handlers per the job definition
    - Started/stopped events on the event bus
    """

    def __init__(
        self,
        lifecycle: JobLifecycle,
        event_bus: JobEventBus,
        keep_alive_interval: float | None = None,
    ):
        """
        Initialize the runner.

        Args:
            lifecycle: The lifecycle engine owning the job records.
            event_bus: Receives job.started and job.stopped events.
            keep_alive_interval: Seconds between keep-alive updates.
        """
        self._lifecycle = lifecycle
        self._event_bus = event_bus
        self.keep_alive_interval = keep_alive_interval or get_settings().keep_alive_interval_seconds

    async def run(self, job_id: str, runnable: JobRunnable) -> None:
        """
        Execute a started job and stop it afterwards.

        Args:
            job_id: Id of the job created by JobLifecycle.start_job.
            runnable: The handler to execute.
        """
        definition = runnable.definition()
        context = JobContext(job_id=job_id, job_type=definition.job_type, lifecycle=self._lifecycle)
        started = time.monotonic()

        with job_log_context(job_id, definition.job_type):
            # Jobs waiting for a pool slot send no keep-alives and may have been
            # killed meanwhile; their run-lock may already belong to another job.
            async with self._lifecycle.unit_of_work() as (repo, _):
                job = await repo.find_one(job_id)
            if job is None or job.is_stopped:
                logger.warning("Job stopped before execution, not running it", extra={"job_id": job_id})
                return

            await self._event_bus.publish(
                JobEvent.job_started(job_id, definition.job_type, self._lifecycle.hostname, self._lifecycle.now())
            )
            heartbeat = asyncio.create_task(self._keep_alive_loop(job_id))
            try:
                await self._execute_with_restarts(runnable, definition, context)
            finally:
                heartbeat.cancel()
                with suppress(asyncio.CancelledError):
                    await heartbeat

                job = await self._lifecycle.stop_job(job_id)
                await self._event_bus.publish(
                    JobEvent.job_stopped(
                        job_id,
                        definition.job_type,
                        job.status if job else None,
                        time.monotonic() - started,
                        self._lifecycle.now(),
                    )
                )

    async def _execute_with_restarts(
        self,
        runnable: JobRunnable,
        definition: JobDefinition,
        context: JobContext,
    ) -> None:
        restarts = definition.restarts
        while True:
            try:
                with get_tracer().start_as_current_span(SPAN_EXECUTE_JOB) as span:
                    span.set_attribute("job_id", context.job_id)
                    span.set_attribute("job_type", definition.job_type)
                    executed = await runnable.execute(context)
            except Exception as e:
                logger.exception("Job handler failed", extra={"job_id": context.job_id})
                await context.error(
                    f"Fatal error in job {definition.job_type} ({context.job_id}): {type(e).__name__}: {e}"
                )
            else:
                if not executed:
                    logger.info("Job skipped", extra={"job_id": context.job_id})
                    await self._lifecycle.mark_skipped(context.job_id)
                return

            if restarts <= 0:
                return
            restarts -= 1
            await self._lifecycle.mark_restarted(context.job_id)
            if definition.retry_delay_seconds:
                await asyncio.sleep(definition.retry_delay_seconds)

    async def _keep_alive_loop(self, job_id: str) -> None:
        """Periodically refresh last_updated so the reaper leaves the job alone."""
        while True:
            await asyncio.sleep(self.keep_alive_interval)
            try:
                await self._lifecycle.keep_alive(job_id)
                logger.debug("Kept job alive", extra={"job_id": job_id})
            except Exception:
                logger.exception("Error in keep-alive loop", extra={"job_id": job_id})
