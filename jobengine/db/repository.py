"""
Job repository for database operations.
Implements the data access patterns for job records and their messages.
"""

import logging
from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from jobengine.constants import JobStatus
from jobengine.db.models import JobInfoRecord, JobMessageRecord
from jobengine.types.job import JobInfo, JobMessage

logger = logging.getLogger(__name__)


class JobRepository:
    """
    Repository for job records.

    Single-field changes are conditional UPDATE statements so concurrent
    writers of the same job never overwrite each other's fields:
    - status changes only apply to jobs that are not stopped
    - last_updated never moves backwards
    - messages are rows, appended in call order
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize the repository with a database session.

        Args:
            session: The async database session.
        """
        self._session = session

    async def create(self, job: JobInfo) -> JobInfo:
        """
        Insert a new job record together with its messages.

        Args:
            job: The job to persist.

        Returns:
            The persisted job.
        """
        record = JobInfoRecord(
            job_id=job.job_id,
            job_type=job.job_type,
            started=job.started,
            last_updated=job.last_updated,
            stopped=job.stopped,
            status=job.status,
            hostname=job.hostname,
            messages=[
                JobMessageRecord(level=m.level, timestamp=m.timestamp, message=m.message)
                for m in job.messages
            ],
        )
        self._session.add(record)
        await self._session.flush()

        logger.debug("Created job record", extra={"job_id": job.job_id, "job_type": job.job_type})
        return job

    async def find_one(self, job_id: str) -> JobInfo | None:
        """
        Get a job by ID.

        Args:
            job_id: The job id.

        Returns:
            The JobInfo or None if not found.
        """
        stmt = (
            select(JobInfoRecord)
            .where(JobInfoRecord.job_id == job_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        record = result.scalar_one_or_none()
        return _to_job_info(record) if record is not None else None

    async def find_status(self, job_id: str) -> JobStatus | None:
        """Get only the status of a job."""
        stmt = select(JobInfoRecord.status).where(JobInfoRecord.job_id == job_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_latest(self, max_count: int) -> list[JobInfo]:
        """Get the most recently started jobs of any type."""
        stmt = select(JobInfoRecord).order_by(JobInfoRecord.started.desc()).limit(max_count)
        return await self._find(stmt)

    async def find_latest_by(self, job_type: str, max_count: int) -> list[JobInfo]:
        """Get the most recently started jobs of one type."""
        stmt = (
            select(JobInfoRecord)
            .where(JobInfoRecord.job_type == job_type)
            .order_by(JobInfoRecord.started.desc())
            .limit(max_count)
        )
        return await self._find(stmt)

    async def find_by_type(self, job_type: str) -> list[JobInfo]:
        """Get all jobs of one type, newest first."""
        stmt = (
            select(JobInfoRecord)
            .where(JobInfoRecord.job_type == job_type)
            .order_by(JobInfoRecord.started.desc())
        )
        return await self._find(stmt)

    async def find_all(self) -> list[JobInfo]:
        """Get all jobs, newest first."""
        stmt = select(JobInfoRecord).order_by(JobInfoRecord.started.desc())
        return await self._find(stmt)

    async def find_all_without_messages(self) -> list[JobInfo]:
        """Get all jobs, newest first, without loading their messages."""
        stmt = select(
            JobInfoRecord.job_id,
            JobInfoRecord.job_type,
            JobInfoRecord.started,
            JobInfoRecord.last_updated,
            JobInfoRecord.stopped,
            JobInfoRecord.status,
            JobInfoRecord.hostname,
        ).order_by(JobInfoRecord.started.desc())
        result = await self._session.execute(stmt)
        return [JobInfo.model_validate(row._asdict()) for row in result.all()]

    async def find_latest_jobs_distinct(self) -> list[JobInfo]:
        """
        Get the latest job of every job type.

        Returns:
            One job per type, ordered by type.
        """
        latest = (
            select(
                JobInfoRecord.job_type,
                func.max(JobInfoRecord.started).label("latest_started"),
            )
            .group_by(JobInfoRecord.job_type)
            .subquery()
        )
        stmt = (
            select(JobInfoRecord)
            .join(
                latest,
                and_(
                    JobInfoRecord.job_type == latest.c.job_type,
                    JobInfoRecord.started == latest.c.latest_started,
                ),
            )
            .order_by(JobInfoRecord.job_type)
        )
        jobs = await self._find(stmt)

        # Two jobs of one type started at the same instant: keep one
        distinct: dict[str, JobInfo] = {}
        for job in jobs:
            distinct.setdefault(job.job_type, job)
        return list(distinct.values())

    async def find_running_without_update_since(self, cutoff: datetime) -> list[JobInfo]:
        """
        Get jobs that are not stopped and were last updated before the cutoff.

        Args:
            cutoff: Jobs with last_updated strictly before this are returned.

        Returns:
            The stale running jobs.
        """
        stmt = select(JobInfoRecord).where(
            and_(
                JobInfoRecord.stopped.is_(None),
                JobInfoRecord.last_updated < cutoff,
            )
        )
        return await self._find(stmt)

    async def append_message(self, job_id: str, message: JobMessage) -> bool:
        """
        Append a message to a job.

        Args:
            job_id: The job id.
            message: The message to append.

        Returns:
            True if the job exists and the message was appended.
        """
        exists = await self._session.scalar(
            select(JobInfoRecord.job_id).where(JobInfoRecord.job_id == job_id)
        )
        if exists is None:
            return False

        self._session.add(
            JobMessageRecord(
                job_id=job_id,
                level=message.level,
                timestamp=message.timestamp,
                message=message.message,
            )
        )
        await self._session.flush()
        return True

    async def set_job_status(self, job_id: str, status: JobStatus) -> bool:
        """
        Set the status of a job that is not stopped.

        Returns:
            True if the status was changed.
        """
        stmt = (
            update(JobInfoRecord)
            .where(
                and_(
                    JobInfoRecord.job_id == job_id,
                    JobInfoRecord.stopped.is_(None),
                )
            )
            .values(status=status)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount > 0

    async def set_last_update(self, job_id: str, last_updated: datetime) -> bool:
        """
        Move last_updated forward to the given timestamp.

        Returns:
            True if the timestamp was changed.
        """
        stmt = (
            update(JobInfoRecord)
            .where(
                and_(
                    JobInfoRecord.job_id == job_id,
                    JobInfoRecord.last_updated <= last_updated,
                )
            )
            .values(last_updated=last_updated)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount > 0

    async def mark_stopped(
        self,
        job_id: str,
        stopped: datetime,
        status: JobStatus | None = None,
    ) -> bool:
        """
        Stop a running job.

        Args:
            job_id: The job id.
            stopped: Stop timestamp, also written to last_updated.
            status: Optional final status; the current status is kept otherwise.

        Returns:
            True if the job was running and is now stopped.
        """
        values: dict = {"stopped": stopped, "last_updated": stopped}
        if status is not None:
            values["status"] = status

        stmt = (
            update(JobInfoRecord)
            .where(
                and_(
                    JobInfoRecord.job_id == job_id,
                    JobInfoRecord.stopped.is_(None),
                )
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount > 0

    async def remove_if_stopped(self, job_id: str) -> bool:
        """
        Delete a job and its messages if it is stopped.

        Returns:
            True if the job was deleted.
        """
        stmt = (
            delete(JobInfoRecord)
            .where(
                and_(
                    JobInfoRecord.job_id == job_id,
                    JobInfoRecord.stopped.is_not(None),
                )
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            return False

        # Backends without enforced foreign keys keep the messages otherwise
        await self._session.execute(
            delete(JobMessageRecord)
            .where(JobMessageRecord.job_id == job_id)
            .execution_options(synchronize_session=False)
        )
        logger.debug("Removed stopped job", extra={"job_id": job_id})
        return True

    async def _find(self, stmt) -> list[JobInfo]:
        result = await self._session.execute(stmt.execution_options(populate_existing=True))
        records: Sequence[JobInfoRecord] = result.scalars().all()
        return [_to_job_info(record) for record in records]


def _to_job_info(record: JobInfoRecord) -> JobInfo:
    return JobInfo.model_validate(record, from_attributes=True)
