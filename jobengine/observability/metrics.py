"""
Prometheus metrics collection.
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    generate_latest,
)

from jobengine.constants import (
    METRIC_JOB_RUNTIME,
    METRIC_JOBS_BLOCKED,
    METRIC_JOBS_KILLED,
    METRIC_JOBS_STARTED,
    METRIC_JOBS_STOPPED,
    METRIC_RUN_LOCKS_CLEARED,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the job engine.

    Collects metrics for:
    - Job starts, refused starts and stops
    - Jobs declared dead by the reaper
    - Run-locks released by the consistency sweep
    - Runtime of the last execution per job type
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.jobs_started = Counter(
            METRIC_JOBS_STARTED,
            "Total number of jobs started",
            ["job_type"],
            registry=self._registry,
        )

        self.jobs_blocked = Counter(
            METRIC_JOBS_BLOCKED,
            "Total number of job starts refused by the run lock",
            ["job_type", "reason"],
            registry=self._registry,
        )

        self.jobs_stopped = Counter(
            METRIC_JOBS_STOPPED,
            "Total number of jobs stopped",
            ["job_type", "status"],
            registry=self._registry,
        )

        self.jobs_killed = Counter(
            METRIC_JOBS_KILLED,
            "Total number of jobs declared dead",
            ["job_type"],
            registry=self._registry,
        )

        self.run_locks_cleared = Counter(
            METRIC_RUN_LOCKS_CLEARED,
            "Total number of leaked run locks released",
            ["job_type"],
            registry=self._registry,
        )

        self.job_runtime = Gauge(
            METRIC_JOB_RUNTIME,
            "Wall-clock duration of the last job execution in seconds",
            ["job_type"],
            registry=self._registry,
        )

    def record_job_started(self, job_type: str) -> None:
        """Record a job start."""
        self.jobs_started.labels(job_type=job_type).inc()

    def record_job_blocked(self, job_type: str, reason: str) -> None:
        """Record a refused job start."""
        self.jobs_blocked.labels(job_type=job_type, reason=reason).inc()

    def record_job_stopped(self, job_type: str, status: str) -> None:
        """Record a job stop."""
        self.jobs_stopped.labels(job_type=job_type, status=status).inc()

    def record_job_killed(self, job_type: str) -> None:
        """Record a job declared dead."""
        self.jobs_killed.labels(job_type=job_type).inc()

    def record_run_lock_cleared(self, job_type: str) -> None:
        """Record a leaked run lock released by the sweep."""
        self.run_locks_cleared.labels(job_type=job_type).inc()

    def record_job_runtime(self, job_type: str, duration_seconds: float) -> None:
        """Record the runtime of a job execution."""
        self.job_runtime.labels(job_type=job_type.lower()).set(duration_seconds)

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self._registry)

    def get_content_type(self) -> str:
        """Get the content type for metrics response."""
        return CONTENT_TYPE_LATEST


def setup_metrics() -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the metrics collector instance, creating it on first use.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics
