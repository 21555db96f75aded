"""
Dead job reaper.

The reaper runs periodically to kill jobs that stopped sending keep-alives,
release run-locks left behind by stopped or vanished jobs and drop old job
records. A job whose host crashed is therefore detected within
``dead_job_threshold_seconds`` plus one reaper interval.
"""

import asyncio
import logging
import signal

from jobengine.config import get_settings
from jobengine.db import close_db, get_engine, init_db
from jobengine.observability.logging import setup_logging
from jobengine.observability.tracing import instrument_sqlalchemy, setup_tracing
from jobengine.service import HandlerRegistry, JobService, build_job_service

logger = logging.getLogger(__name__)


class Reaper:
    """
    Periodic maintenance of the job store.

    Each run:
    1. Kills running jobs without updates for ``dead_after_seconds``
    2. Releases run-locks of stopped or missing jobs
    3. Keeps the newest ``keep_last_jobs`` records per job type (0 disables)
    """

    def __init__(
        self,
        service: JobService,
        interval_seconds: int | None = None,
        dead_after_seconds: int | None = None,
        keep_last_jobs: int | None = None,
    ):
        settings = get_settings()
        self.service = service
        self.interval = settings.reaper_interval_seconds if interval_seconds is None else interval_seconds
        self.dead_after = (
            settings.dead_job_threshold_seconds if dead_after_seconds is None else dead_after_seconds
        )
        self.keep_last_jobs = (
            settings.cleanup_keep_last_jobs if keep_last_jobs is None else keep_last_jobs
        )
        self._running = False
        self._stopped = asyncio.Event()

    async def start(self) -> None:
        """Start the reaper loop."""
        logger.info(
            f"Reaper starting with interval {self.interval}s",
            extra={"dead_after_seconds": self.dead_after},
        )
        self._running = True
        self._stopped.clear()

        while self._running:
            try:
                await self.run_once()
            except Exception as e:
                logger.exception(f"Error in reaper loop: {e}")

            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self.interval)
            except TimeoutError:
                pass

        logger.info("Reaper stopped")

    async def stop(self) -> None:
        """Stop the reaper after the current run."""
        logger.info("Reaper stopping")
        self._running = False
        self._stopped.set()

    async def run_once(self) -> list[str]:
        """
        Run the reaper once (for testing or cron-style execution).

        Returns:
            Ids of the jobs killed in this run.
        """
        killed = await self.service.kill_jobs_dead_since(self.dead_after)
        if killed:
            logger.warning(f"Killed {len(killed)} dead jobs", extra={"job_ids": killed})

        if self.keep_last_jobs > 0:
            await self.service.keep_last_jobs(self.keep_last_jobs)
        return killed


async def run_async(handlers: HandlerRegistry | None = None) -> None:
    """Run the reaper asynchronously."""
    settings = get_settings()
    setup_logging()
    session_factory = await init_db()

    if settings.otel_exporter_otlp_endpoint:
        instrument_sqlalchemy(get_engine())
    setup_tracing()

    service = build_job_service(handlers or HandlerRegistry(), session_factory, settings=settings)
    reaper = Reaper(service)

    # Handle shutdown signals
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda: asyncio.create_task(reaper.stop()))

    try:
        await reaper.start()
    finally:
        await service.shutdown()
        await close_db()


def run() -> None:
    """Run the reaper."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
