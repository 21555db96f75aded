"""
Unit tests for the job repository.
"""

from datetime import UTC, datetime, timedelta

import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from jobengine.constants import JobStatus, MessageLevel
from jobengine.db.models import JobMessageRecord
from jobengine.db.repository import JobRepository
from jobengine.types.job import JobInfo, JobMessage

BASE_TIME = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


def make_job(job_id: str, job_type: str = "import", started: datetime = BASE_TIME) -> JobInfo:
    return JobInfo.new(job_id=job_id, job_type=job_type, now=started, hostname="test-host")


async def read_job(session_factory, job_id: str) -> JobInfo | None:
    """Read a job through a fresh session."""
    async with session_factory() as session:
        return await JobRepository(session).find_one(job_id)


class TestJobRepository:
    """Tests for JobRepository."""

    @pytest_asyncio.fixture
    async def repo(self, db_session: AsyncSession) -> JobRepository:
        """Create a repository instance."""
        return JobRepository(db_session)

    async def test_create_and_find_one(self, repo: JobRepository, db_session: AsyncSession, session_factory):
        """Test a created job is read back unchanged."""
        await repo.create(make_job("job-1"))
        await db_session.commit()

        job = await read_job(session_factory, "job-1")

        assert job is not None
        assert job.job_type == "import"
        assert job.started == BASE_TIME
        assert job.last_updated == BASE_TIME
        assert job.stopped is None
        assert job.status == JobStatus.OK
        assert job.hostname == "test-host"
        assert job.messages == []

    async def test_find_one_not_found(self, repo: JobRepository):
        assert await repo.find_one("missing") is None
        assert await repo.find_status("missing") is None

    async def test_messages_keep_append_order(self, repo: JobRepository, db_session: AsyncSession, session_factory):
        """Test messages are returned in the order they were appended."""
        await repo.create(make_job("job-1"))
        # Later timestamp first: order follows appends, not timestamps
        await repo.append_message("job-1", JobMessage.info("first", BASE_TIME + timedelta(seconds=5)))
        await repo.append_message("job-1", JobMessage.warning("second", BASE_TIME))
        await db_session.commit()

        job = await read_job(session_factory, "job-1")

        assert [m.message for m in job.messages] == ["first", "second"]
        assert [m.level for m in job.messages] == [MessageLevel.INFO, MessageLevel.WARNING]

    async def test_append_message_unknown_job(self, repo: JobRepository):
        appended = await repo.append_message("missing", JobMessage.info("hello", BASE_TIME))
        assert appended is False

    async def test_set_job_status_ignores_stopped_job(self, repo: JobRepository, db_session: AsyncSession):
        """Test status changes never apply to stopped jobs."""
        await repo.create(make_job("job-1"))
        await repo.mark_stopped("job-1", BASE_TIME + timedelta(seconds=1))

        changed = await repo.set_job_status("job-1", JobStatus.ERROR)
        await db_session.commit()

        assert changed is False
        assert await repo.find_status("job-1") == JobStatus.OK

    async def test_set_last_update_never_moves_backwards(self, repo: JobRepository, db_session: AsyncSession):
        await repo.create(make_job("job-1"))
        later = BASE_TIME + timedelta(seconds=30)

        assert await repo.set_last_update("job-1", later) is True
        assert await repo.set_last_update("job-1", BASE_TIME + timedelta(seconds=10)) is False
        await db_session.commit()

        job = await repo.find_one("job-1")
        assert job.last_updated == later

    async def test_mark_stopped_only_once(self, repo: JobRepository, db_session: AsyncSession):
        """Test a stopped job keeps its first stop timestamp and status."""
        await repo.create(make_job("job-1"))
        first_stop = BASE_TIME + timedelta(seconds=1)

        assert await repo.mark_stopped("job-1", first_stop, JobStatus.DEAD) is True
        assert await repo.mark_stopped("job-1", first_stop + timedelta(seconds=1), JobStatus.OK) is False
        await db_session.commit()

        job = await repo.find_one("job-1")
        assert job.stopped == first_stop
        assert job.last_updated == first_stop
        assert job.status == JobStatus.DEAD

    async def test_mark_stopped_keeps_status_by_default(self, repo: JobRepository, db_session: AsyncSession):
        await repo.create(make_job("job-1"))
        await repo.set_job_status("job-1", JobStatus.ERROR)
        await repo.mark_stopped("job-1", BASE_TIME + timedelta(seconds=1))
        await db_session.commit()

        assert await repo.find_status("job-1") == JobStatus.ERROR

    async def test_find_running_without_update_since(self, repo: JobRepository, db_session: AsyncSession):
        """Test only running jobs last updated before the cutoff are found."""
        await repo.create(make_job("stale", "a", BASE_TIME))
        await repo.create(make_job("fresh", "b", BASE_TIME + timedelta(seconds=120)))
        await repo.create(make_job("stopped", "c", BASE_TIME))
        await repo.mark_stopped("stopped", BASE_TIME)
        await db_session.commit()

        jobs = await repo.find_running_without_update_since(BASE_TIME + timedelta(seconds=60))

        assert [job.job_id for job in jobs] == ["stale"]

    async def test_find_latest_by_type(self, repo: JobRepository, db_session: AsyncSession):
        for i in range(3):
            await repo.create(make_job(f"import-{i}", "import", BASE_TIME + timedelta(minutes=i)))
        await repo.create(make_job("export-0", "export", BASE_TIME + timedelta(minutes=10)))
        await db_session.commit()

        latest_imports = await repo.find_latest_by("import", 2)
        latest = await repo.find_latest(2)

        assert [job.job_id for job in latest_imports] == ["import-2", "import-1"]
        assert [job.job_id for job in latest] == ["export-0", "import-2"]

    async def test_find_latest_jobs_distinct(self, repo: JobRepository, db_session: AsyncSession):
        """Test one job per type, the most recently started one, is returned."""
        await repo.create(make_job("import-old", "import", BASE_TIME))
        await repo.create(make_job("import-new", "import", BASE_TIME + timedelta(minutes=5)))
        await repo.create(make_job("export-only", "export", BASE_TIME + timedelta(minutes=1)))
        await db_session.commit()

        jobs = await repo.find_latest_jobs_distinct()

        assert {job.job_type: job.job_id for job in jobs} == {
            "export": "export-only",
            "import": "import-new",
        }

    async def test_find_all_without_messages(self, repo: JobRepository, db_session: AsyncSession):
        await repo.create(make_job("job-1"))
        await repo.append_message("job-1", JobMessage.info("hello", BASE_TIME))
        await db_session.commit()

        jobs = await repo.find_all_without_messages()

        assert len(jobs) == 1
        assert jobs[0].messages == []

    async def test_remove_if_stopped(self, repo: JobRepository, db_session: AsyncSession, session_factory):
        """Test running jobs are kept and stopped jobs are deleted with their messages."""
        await repo.create(make_job("running", "a"))
        await repo.create(make_job("stopped", "b"))
        await repo.append_message("stopped", JobMessage.info("bye", BASE_TIME))
        await repo.mark_stopped("stopped", BASE_TIME + timedelta(seconds=1))
        await db_session.commit()

        assert await repo.remove_if_stopped("running") is False
        assert await repo.remove_if_stopped("stopped") is True
        await db_session.commit()

        async with session_factory() as session:
            remaining_messages = await session.scalar(select(func.count()).select_from(JobMessageRecord))
        assert await read_job(session_factory, "running") is not None
        assert await read_job(session_factory, "stopped") is None
        assert remaining_messages == 0
