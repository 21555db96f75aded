"""
Job-related type definitions.
"""

import re
from dataclasses import dataclass
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from jobengine.constants import JOB_TYPE_PATTERN, JobStatus, MessageLevel

_JOB_TYPE_RE = re.compile(JOB_TYPE_PATTERN)


class JobMessage(BaseModel):
    """A single log line of a job."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    level: MessageLevel
    timestamp: datetime
    message: str

    @classmethod
    def info(cls, message: str, timestamp: datetime) -> "JobMessage":
        return cls(level=MessageLevel.INFO, message=message, timestamp=timestamp)

    @classmethod
    def warning(cls, message: str, timestamp: datetime) -> "JobMessage":
        return cls(level=MessageLevel.WARNING, message=message, timestamp=timestamp)

    @classmethod
    def error(cls, message: str, timestamp: datetime) -> "JobMessage":
        return cls(level=MessageLevel.ERROR, message=message, timestamp=timestamp)


class JobInfo(BaseModel):
    """
    State of one job execution.

    Read from the repository as a snapshot; changes go through the
    lifecycle engine, never through this object.
    """

    model_config = ConfigDict(frozen=True, from_attributes=True)

    job_id: str
    job_type: str
    started: datetime
    last_updated: datetime
    stopped: datetime | None = None
    status: JobStatus = JobStatus.OK
    hostname: str
    messages: list[JobMessage] = Field(default_factory=list)

    @property
    def is_stopped(self) -> bool:
        """Check if the job reached a terminal state."""
        return self.stopped is not None

    @classmethod
    def new(
        cls,
        job_id: str,
        job_type: str,
        now: datetime,
        hostname: str,
    ) -> "JobInfo":
        """Create the record of a job that is about to start."""
        return cls(
            job_id=job_id,
            job_type=job_type,
            started=now,
            last_updated=now,
            status=JobStatus.OK,
            hostname=hostname,
        )


class JobDefinition(BaseModel):
    """
    Static description of a job type.

    ``blocking_types`` lists the job types that must not be running when this
    type starts. The type itself is always implied.
    """

    model_config = ConfigDict(frozen=True)

    job_type: str
    job_name: str = ""
    description: str = ""
    blocking_types: frozenset[str] = frozenset()
    restarts: int = Field(default=0, ge=0)
    retry_delay_seconds: float = Field(default=0.0, ge=0.0)

    @field_validator("job_type")
    @classmethod
    def _validate_job_type(cls, value: str) -> str:
        if not _JOB_TYPE_RE.match(value):
            raise ValueError(f"Invalid job type '{value}': only letters, digits, '-' and '_' are allowed")
        return value

    @property
    def run_lock_blockers(self) -> frozenset[str]:
        """All job types whose run-lock prevents this type from starting."""
        return self.blocking_types | {self.job_type}


@dataclass(frozen=True)
class RunningJob:
    """An entry of the run-lock registry."""

    job_id: str
    job_type: str
