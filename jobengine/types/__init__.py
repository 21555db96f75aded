"""
Type definitions for the job engine.
"""

from jobengine.types.events import JobEvent
from jobengine.types.job import (
    JobDefinition,
    JobInfo,
    JobMessage,
    RunningJob,
)

__all__ = [
    "JobDefinition",
    "JobInfo",
    "JobMessage",
    "RunningJob",
    "JobEvent",
]
