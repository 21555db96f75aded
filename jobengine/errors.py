"""
Exceptions raised by the job engine.
"""

from jobengine.constants import RunLockResult


class JobEngineError(Exception):
    """Base class for job engine errors."""


class JobTypeNotFoundError(JobEngineError):
    """No handler is registered for the requested job type."""

    def __init__(self, job_type: str):
        super().__init__(f"No job handler registered for job type '{job_type}'")
        self.job_type = job_type


class JobBlockedError(JobEngineError):
    """
    The run-lock for a job type could not be acquired.

    Never escapes ``start_job``; callers are told that no job was started.
    """

    def __init__(self, job_type: str, result: RunLockResult):
        super().__init__(f"Job '{job_type}' not started: {result.value}")
        self.job_type = job_type
        self.result = result


class StorageError(JobEngineError):
    """The job store failed to read or write."""
