"""
Job lifecycle engine.

Creates job records under a run-lock, applies status transitions, appends
messages and detects dead jobs. Every operation is one unit of work against
the job store; all cross-instance exclusion is delegated to the conditional
updates of the run-lock registry.
"""

import logging
import os
import uuid
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from jobengine.clock import Clock, utcnow
from jobengine.config import get_settings
from jobengine.constants import (
    MESSAGE_JOB_DEAD,
    MESSAGE_JOB_RESTARTED,
    MESSAGE_JOB_SKIPPED,
    SPAN_KILL_DEAD_JOBS,
    SPAN_START_JOB,
    JobStatus,
    MessageLevel,
)
from jobengine.db.connection import get_session_context
from jobengine.db.repository import JobRepository
from jobengine.db.run_locks import RunLockRegistry
from jobengine.errors import JobBlockedError
from jobengine.observability.metrics import MetricsCollector, get_metrics
from jobengine.observability.tracing import get_tracer
from jobengine.service.events import JobEventBus
from jobengine.types.events import JobEvent
from jobengine.types.job import JobDefinition, JobInfo, JobMessage

logger = logging.getLogger(__name__)


def _new_job_id() -> str:
    return str(uuid.uuid4())


class JobLifecycle:
    """
    Lifecycle of job records and their run-locks.

    Status transitions:
    - start: record created with status OK while the run-lock is acquired
    - error message: OK -> ERROR
    - mark_skipped / mark_restarted: -> SKIPPED / -> OK
    - kill: -> DEAD, stopped
    - stop: stopped, status kept or overridden

    Nothing changes the status of a stopped job. Operations on unknown job
    ids are no-ops.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        clock: Clock = utcnow,
        hostname: str | None = None,
        id_factory: Callable[[], str] = _new_job_id,
        metrics: MetricsCollector | None = None,
        event_bus: JobEventBus | None = None,
        run_lock_max_attempts: int | None = None,
    ):
        """
        Initialize the lifecycle engine.

        Args:
            session_factory: Factory for the sessions of each unit of work.
            clock: Source of the current time.
            hostname: Host stamped on new jobs. Defaults to the configured
                hostname or the node name.
            id_factory: Generator of job ids.
            metrics: Metrics collector. Defaults to the global collector.
            event_bus: Receives job.dead events.
            run_lock_max_attempts: Compare-and-set attempts on the run-lock document.
        """
        settings = get_settings()

        self._session_factory = session_factory
        self._clock = clock
        self.hostname = hostname or settings.hostname or os.uname().nodename
        self._id_factory = id_factory
        self._metrics = metrics or get_metrics()
        self._event_bus = event_bus or JobEventBus()
        self._run_lock_max_attempts = run_lock_max_attempts or settings.run_lock_max_attempts

    def now(self) -> datetime:
        """Current time of the engine's clock."""
        return self._clock()

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncGenerator[tuple[JobRepository, RunLockRegistry]]:
        """One transaction over the job records and the run-lock registry."""
        async with get_session_context(self._session_factory) as session:
            yield (
                JobRepository(session),
                RunLockRegistry(session, max_attempts=self._run_lock_max_attempts),
            )

    async def start_job(self, definition: JobDefinition) -> JobInfo | None:
        """
        Create a running job of the given type if its run-lock is free.

        The lock and the job record are written in the same transaction, so
        a lock entry never exists without its job record.

        Args:
            definition: Definition of the job type to start.

        Returns:
            The new job, or None if the job type is disabled, already running
            or blocked by a running job type.
        """
        job = JobInfo.new(
            job_id=self._id_factory(),
            job_type=definition.job_type,
            now=self.now(),
            hostname=self.hostname,
        )

        with get_tracer().start_as_current_span(SPAN_START_JOB) as span:
            span.set_attribute("job_type", job.job_type)
            span.set_attribute("job_id", job.job_id)
            try:
                async with self.unit_of_work() as (repo, run_locks):
                    result = await run_locks.try_acquire(
                        job.job_type,
                        job.job_id,
                        definition.run_lock_blockers,
                    )
                    if not result.acquired:
                        raise JobBlockedError(job.job_type, result)
                    await repo.create(job)
            except JobBlockedError as e:
                span.set_attribute("blocked", e.result.value)
                logger.info(str(e), extra={"job_type": e.job_type, "reason": e.result.value})
                self._metrics.record_job_blocked(e.job_type, e.result.value)
                return None

        logger.info("Started job", extra={"job_id": job.job_id, "job_type": job.job_type})
        self._metrics.record_job_started(job.job_type)
        return job

    async def stop_job(self, job_id: str, status: JobStatus | None = None) -> JobInfo | None:
        """
        Stop a job and release its run-lock.

        The lock is only released while it is held by this job, so a late
        stop never frees the lock of a newer job of the same type.

        Args:
            job_id: The job id.
            status: Final status; the current status is kept if None.

        Returns:
            The job after stopping, or None if it does not exist.
        """
        job, _ = await self._stop(job_id, status)
        return job

    async def _stop(self, job_id: str, status: JobStatus | None) -> tuple[JobInfo | None, bool]:
        async with self.unit_of_work() as (repo, run_locks):
            job = await repo.find_one(job_id)
            if job is None:
                logger.debug("Stop of unknown job ignored", extra={"job_id": job_id})
                return None, False

            await run_locks.release(job.job_type, job_id)
            stopped = await repo.mark_stopped(job_id, self.now(), status)
            job = await repo.find_one(job_id)

        if stopped and job is not None:
            logger.info(
                "Stopped job",
                extra={"job_id": job_id, "job_type": job.job_type, "status": job.status.value},
            )
            self._metrics.record_job_stopped(job.job_type, job.status.value)
        return job, stopped

    async def kill_job(self, job_id: str) -> JobInfo | None:
        """
        Stop a job as DEAD and note that it stopped receiving updates.

        Returns:
            The job after killing, or None if it does not exist.
        """
        job, stopped = await self._stop(job_id, JobStatus.DEAD)
        if job is None or not stopped:
            return job

        await self.append_message(job_id, JobMessage.warning(MESSAGE_JOB_DEAD, self.now()))
        logger.warning("Killed dead job", extra={"job_id": job_id, "job_type": job.job_type})
        self._metrics.record_job_killed(job.job_type)
        await self._event_bus.publish(JobEvent.job_dead(job_id, job.job_type, self.now()))
        return job

    async def append_message(self, job_id: str, message: JobMessage) -> None:
        """
        Append a message to a job.

        An ERROR message also switches a running job to ERROR and refreshes
        last_updated, in the same transaction as the append.
        """
        async with self.unit_of_work() as (repo, _):
            appended = await repo.append_message(job_id, message)
            if appended and message.level == MessageLevel.ERROR:
                await repo.set_job_status(job_id, JobStatus.ERROR)
                await repo.set_last_update(job_id, max(self.now(), message.timestamp))

        if not appended:
            logger.debug("Message for unknown job ignored", extra={"job_id": job_id})

    async def keep_alive(self, job_id: str) -> None:
        """Refresh last_updated of a job."""
        async with self.unit_of_work() as (repo, _):
            await repo.set_last_update(job_id, self.now())

    async def mark_skipped(self, job_id: str) -> None:
        """Note that the job had nothing to do and set its status to SKIPPED."""
        await self._mark(job_id, JobMessage.info(MESSAGE_JOB_SKIPPED, self.now()), JobStatus.SKIPPED)

    async def mark_restarted(self, job_id: str) -> None:
        """Note that the job is restarted and set its status back to OK."""
        await self._mark(job_id, JobMessage.warning(MESSAGE_JOB_RESTARTED, self.now()), JobStatus.OK)

    async def _mark(self, job_id: str, message: JobMessage, status: JobStatus) -> None:
        async with self.unit_of_work() as (repo, _):
            if not await repo.append_message(job_id, message):
                return
            await repo.set_last_update(job_id, message.timestamp)
            await repo.set_job_status(job_id, status)

    async def kill_jobs_dead_since(self, seconds: int) -> list[str]:
        """
        Kill every running job without an update for the given number of seconds.

        Afterwards, run-locks left behind by stopped or missing jobs are released.

        Args:
            seconds: Age of the last update after which a job is dead.

        Returns:
            Ids of the killed jobs.
        """
        cutoff = self.now() - timedelta(seconds=seconds)

        with get_tracer().start_as_current_span(SPAN_KILL_DEAD_JOBS) as span:
            span.set_attribute("cutoff", cutoff.isoformat())
            logger.info("Looking for dead jobs", extra={"cutoff": cutoff.isoformat()})

            async with self.unit_of_work() as (repo, _):
                dead_jobs = await repo.find_running_without_update_since(cutoff)

            killed = []
            for dead_job in dead_jobs:
                killed_job = await self.kill_job(dead_job.job_id)
                if killed_job is not None and killed_job.status == JobStatus.DEAD:
                    killed.append(dead_job.job_id)

            await self.clear_run_locks()
            span.set_attribute("killed", len(killed))

        return killed

    async def clear_run_locks(self) -> list[str]:
        """
        Release run-locks whose job is stopped or no longer exists.

        Only the entry still held by the checked job is released, so a lock
        acquired concurrently by a new job survives the sweep.

        Returns:
            Job types whose lock was released.
        """
        async with self.unit_of_work() as (_, run_locks):
            running = await run_locks.running_jobs()

        cleared = []
        for running_job in running:
            async with self.unit_of_work() as (repo, run_locks):
                job = await repo.find_one(running_job.job_id)
                if job is not None and not job.is_stopped:
                    continue
                released = await run_locks.release(running_job.job_type, running_job.job_id)

            if released:
                cleared.append(running_job.job_type)
                self._metrics.record_run_lock_cleared(running_job.job_type)
                logger.error(
                    "Cleared run lock of job type",
                    extra={
                        "job_type": running_job.job_type,
                        "job_id": running_job.job_id,
                        "reason": "job stopped" if job is not None else "job does not exist",
                    },
                )
        return cleared
