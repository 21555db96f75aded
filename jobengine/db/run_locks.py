"""
Run-lock registry.

Job types are locked through the RUNNING_JOBS document of the job_meta table,
a single row mapping job type to running job id. Administratively disabled
job types live in the DISABLED_JOBS document.

Every write is a compare-and-set on the document version: the new content is
computed from what was read and only written if nobody changed the document
in between. Acquisition additionally requires the DISABLED_JOBS version to be
unchanged, so check-disabled, check-blocking and write form one conditional
UPDATE statement.
"""

import logging

from sqlalchemy import and_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from jobengine.config import get_settings
from jobengine.constants import (
    DISABLED_JOBS_DOCUMENT,
    RUNNING_JOBS_DOCUMENT,
    RunLockResult,
)
from jobengine.db.models import JobMetaDocument
from jobengine.errors import StorageError
from jobengine.types.job import RunningJob

logger = logging.getLogger(__name__)


class RunLockRegistry:
    """
    Registry of run-locks and disabled job types.

    Safe under concurrent callers across processes: all mutual exclusion is
    carried by the conditional UPDATE, no in-process lock is involved.
    """

    def __init__(self, session: AsyncSession, max_attempts: int | None = None):
        """
        Initialize the registry with a database session.

        Args:
            session: The async database session.
            max_attempts: Compare-and-set attempts before giving up under contention.
        """
        self._session = session
        self._max_attempts = max_attempts or get_settings().run_lock_max_attempts

    async def try_acquire(
        self,
        job_type: str,
        job_id: str,
        blocking_types: frozenset[str] | set[str] = frozenset(),
    ) -> RunLockResult:
        """
        Lock a job type for a job if it is neither disabled nor blocked.

        Args:
            job_type: The job type to lock.
            job_id: The job that will hold the lock.
            blocking_types: Job types that must not be running. The job type
                itself always blocks.

        Returns:
            ACQUIRED, or the reason the lock was not acquired.

        Raises:
            StorageError: If concurrent writers kept winning for max_attempts rounds.
        """
        blockers = set(blocking_types) | {job_type}

        for _ in range(self._max_attempts):
            running, running_version = await self._load(RUNNING_JOBS_DOCUMENT)
            disabled, disabled_version = await self._load(DISABLED_JOBS_DOCUMENT)

            if job_type in disabled:
                return RunLockResult.DISABLED
            if job_type in running:
                return RunLockResult.ALREADY_RUNNING
            if blockers & running.keys():
                return RunLockResult.BLOCKED

            disabled_doc = aliased(JobMetaDocument)
            disabled_unchanged = (
                select(disabled_doc.version)
                .where(disabled_doc.id == DISABLED_JOBS_DOCUMENT)
                .scalar_subquery()
                == disabled_version
            )
            stmt = (
                update(JobMetaDocument)
                .where(
                    and_(
                        JobMetaDocument.id == RUNNING_JOBS_DOCUMENT,
                        JobMetaDocument.version == running_version,
                        disabled_unchanged,
                    )
                )
                .values(data={**running, job_type: job_id}, version=running_version + 1)
                .execution_options(synchronize_session=False)
            )
            result = await self._session.execute(stmt)
            if result.rowcount > 0:
                logger.debug("Acquired run lock", extra={"job_type": job_type, "job_id": job_id})
                return RunLockResult.ACQUIRED

            logger.debug("Run lock document changed concurrently, retrying", extra={"job_type": job_type})

        raise StorageError(f"Could not acquire run lock for '{job_type}': too much contention")

    async def release(self, job_type: str, job_id: str | None = None) -> bool:
        """
        Release the run-lock of a job type.

        Releasing a job type that is not locked is a no-op.

        Args:
            job_type: The job type to unlock.
            job_id: If given, only release the lock while it is held by this job.

        Returns:
            True if a lock entry was removed.
        """
        for _ in range(self._max_attempts):
            running, version = await self._load(RUNNING_JOBS_DOCUMENT)
            holder = running.get(job_type)
            if holder is None or (job_id is not None and holder != job_id):
                return False

            remaining = {k: v for k, v in running.items() if k != job_type}
            if await self._compare_and_set(RUNNING_JOBS_DOCUMENT, version, remaining):
                logger.debug("Released run lock", extra={"job_type": job_type, "job_id": holder})
                return True

        raise StorageError(f"Could not release run lock for '{job_type}': too much contention")

    async def snapshot(self) -> dict[str, str]:
        """Get the current mapping of job type to running job id."""
        running, _ = await self._load(RUNNING_JOBS_DOCUMENT)
        return running

    async def running_jobs(self) -> list[RunningJob]:
        """Get the entries of the run-lock registry."""
        running = await self.snapshot()
        return [RunningJob(job_id=job_id, job_type=job_type) for job_type, job_id in sorted(running.items())]

    async def disable(self, job_type: str, comment: str = "") -> None:
        """Disable a job type; starts of this type are refused until enabled."""
        await self._modify(DISABLED_JOBS_DOCUMENT, lambda data: {**data, job_type: comment})
        logger.info("Disabled job type", extra={"job_type": job_type, "comment": comment})

    async def enable(self, job_type: str) -> None:
        """Enable a previously disabled job type."""
        await self._modify(
            DISABLED_JOBS_DOCUMENT,
            lambda data: {k: v for k, v in data.items() if k != job_type},
        )
        logger.info("Enabled job type", extra={"job_type": job_type})

    async def disabled_types(self) -> dict[str, str]:
        """Get the disabled job types and their comments."""
        disabled, _ = await self._load(DISABLED_JOBS_DOCUMENT)
        return disabled

    async def _modify(self, document_id: str, change) -> None:
        for _ in range(self._max_attempts):
            data, version = await self._load(document_id)
            if await self._compare_and_set(document_id, version, change(data)):
                return
        raise StorageError(f"Could not update '{document_id}': too much contention")

    async def _compare_and_set(self, document_id: str, version: int, data: dict) -> bool:
        stmt = (
            update(JobMetaDocument)
            .where(
                and_(
                    JobMetaDocument.id == document_id,
                    JobMetaDocument.version == version,
                )
            )
            .values(data=data, version=version + 1)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount > 0

    async def _load(self, document_id: str) -> tuple[dict, int]:
        stmt = select(JobMetaDocument.data, JobMetaDocument.version).where(JobMetaDocument.id == document_id)
        row = (await self._session.execute(stmt)).one_or_none()
        if row is None:
            await self._create_document(document_id)
            row = (await self._session.execute(stmt)).one()
        return dict(row.data or {}), row.version

    async def _create_document(self, document_id: str) -> None:
        """Insert an empty document unless another instance already did."""
        dialect = self._session.get_bind().dialect.name
        if dialect == "postgresql":
            insert = postgresql.insert
        elif dialect == "sqlite":
            insert = sqlite.insert
        else:
            raise StorageError(f"Unsupported database dialect '{dialect}'")

        stmt = (
            insert(JobMetaDocument)
            .values(id=document_id, data={}, version=0)
            .on_conflict_do_nothing(index_elements=[JobMetaDocument.id])
        )
        await self._session.execute(stmt)
        logger.info("Created job meta document", extra={"document": document_id})
