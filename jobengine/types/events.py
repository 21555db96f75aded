"""
Event type definitions for job notifications.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel

from jobengine.constants import (
    EVENT_JOB_DEAD,
    EVENT_JOB_STARTED,
    EVENT_JOB_STOPPED,
    JobStatus,
)


class JobEvent(BaseModel):
    """
    Event emitted when a job starts, stops or is declared dead.
    Delivered to the listeners of the event bus.
    """

    event_type: str
    job_id: str
    job_type: str
    timestamp: datetime
    status: JobStatus | None = None
    data: dict[str, Any] | None = None

    @classmethod
    def job_started(cls, job_id: str, job_type: str, hostname: str, timestamp: datetime) -> "JobEvent":
        """Create a job started event."""
        return cls(
            event_type=EVENT_JOB_STARTED,
            job_id=job_id,
            job_type=job_type,
            timestamp=timestamp,
            status=JobStatus.OK,
            data={"hostname": hostname},
        )

    @classmethod
    def job_stopped(
        cls,
        job_id: str,
        job_type: str,
        status: JobStatus | None,
        duration_seconds: float,
        timestamp: datetime,
    ) -> "JobEvent":
        """Create a job stopped event."""
        return cls(
            event_type=EVENT_JOB_STOPPED,
            job_id=job_id,
            job_type=job_type,
            timestamp=timestamp,
            status=status,
            data={"duration_seconds": duration_seconds},
        )

    @classmethod
    def job_dead(cls, job_id: str, job_type: str, timestamp: datetime) -> "JobEvent":
        """Create a job declared dead event."""
        return cls(
            event_type=EVENT_JOB_DEAD,
            job_id=job_id,
            job_type=job_type,
            timestamp=timestamp,
            status=JobStatus.DEAD,
        )
