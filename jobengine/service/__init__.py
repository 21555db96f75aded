"""
Service module.
Contains the lifecycle engine, handler registry, runner and the job service.
"""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from jobengine.clock import Clock, utcnow
from jobengine.config import Settings, get_settings
from jobengine.observability.metrics import MetricsCollector, get_metrics
from jobengine.service.events import JobEventBus
from jobengine.service.handlers import FunctionJob, HandlerRegistry, JobRunnable
from jobengine.service.job_service import JobService
from jobengine.service.lifecycle import JobLifecycle
from jobengine.service.runner import JobContext, JobExecutor, JobRunner, metered


def build_job_service(
    handlers: HandlerRegistry,
    session_factory: async_sessionmaker[AsyncSession],
    *,
    settings: Settings | None = None,
    metrics: MetricsCollector | None = None,
    event_bus: JobEventBus | None = None,
    clock: Clock = utcnow,
) -> JobService:
    """
    Wire a job service from its parts.

    Args:
        handlers: Handlers of the job types the service can start.
        session_factory: Factory for the sessions of the job store.
        settings: Settings to use instead of the environment.
        metrics: Metrics collector. Defaults to the global collector.
        event_bus: Bus receiving job events. A new bus is created if None.
        clock: Source of the current time.
    """
    settings = settings or get_settings()
    metrics = metrics or get_metrics()
    event_bus = event_bus or JobEventBus()

    lifecycle = JobLifecycle(
        session_factory,
        clock=clock,
        hostname=settings.hostname,
        metrics=metrics,
        event_bus=event_bus,
        run_lock_max_attempts=settings.run_lock_max_attempts,
    )
    return JobService(
        lifecycle=lifecycle,
        handlers=handlers,
        runner=JobRunner(lifecycle, event_bus, settings.keep_alive_interval_seconds),
        executor=JobExecutor(settings.worker_pool_size),
        metrics=metrics,
    )


__all__ = [
    "build_job_service",
    "FunctionJob",
    "HandlerRegistry",
    "JobContext",
    "JobEventBus",
    "JobExecutor",
    "JobLifecycle",
    "JobRunnable",
    "JobRunner",
    "JobService",
    "metered",
]
