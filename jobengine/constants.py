"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class JobStatus(StrEnum):
    """
    Job lifecycle states.

    State transitions:
    - OK -> ERROR (error message appended)
    - OK -> SKIPPED (handler reported nothing to do)
    - SKIPPED -> OK (job restarted)
    - OK/ERROR/SKIPPED -> DEAD (no keep-alive within the threshold)

    A job is terminal once its stopped timestamp is set, whatever its status.
    """

    OK = "OK"
    ERROR = "ERROR"
    DEAD = "DEAD"
    SKIPPED = "SKIPPED"


class MessageLevel(StrEnum):
    """Severity of a job message."""

    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class RunLockResult(StrEnum):
    """Outcome of a run-lock acquisition attempt."""

    ACQUIRED = "acquired"
    DISABLED = "disabled"
    ALREADY_RUNNING = "already_running"
    BLOCKED = "blocked"

    @property
    def acquired(self) -> bool:
        return self is RunLockResult.ACQUIRED


# Singleton documents of the job_meta table
RUNNING_JOBS_DOCUMENT = "RUNNING_JOBS"
DISABLED_JOBS_DOCUMENT = "DISABLED_JOBS"

# Allowed characters of job type names
JOB_TYPE_PATTERN = r"^[a-zA-Z0-9\-_]+$"

# Default values
DEFAULT_FIND_JOBS_COUNT = 10

# Job messages written by the engine
MESSAGE_JOB_DEAD = "Job didn't receive updates for a while, considering it dead"
MESSAGE_JOB_SKIPPED = "Skipped job .."
MESSAGE_JOB_RESTARTED = "Restarting job .."

# Metrics names
METRIC_JOBS_STARTED = "jobs_started_total"
METRIC_JOBS_BLOCKED = "jobs_blocked_total"
METRIC_JOBS_STOPPED = "jobs_stopped_total"
METRIC_JOBS_KILLED = "jobs_killed_total"
METRIC_RUN_LOCKS_CLEARED = "run_locks_cleared_total"
METRIC_JOB_RUNTIME = "job_runtime_seconds"

# Trace span names
SPAN_START_JOB = "start_job"
SPAN_EXECUTE_JOB = "execute_job"
SPAN_KILL_DEAD_JOBS = "kill_dead_jobs"

# Event types
EVENT_JOB_STARTED = "job.started"
EVENT_JOB_STOPPED = "job.stopped"
EVENT_JOB_DEAD = "job.dead"
