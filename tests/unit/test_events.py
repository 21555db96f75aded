"""
Unit tests for job events and the event bus.
"""

from datetime import UTC, datetime

from jobengine.constants import EVENT_JOB_DEAD, EVENT_JOB_STARTED, EVENT_JOB_STOPPED, JobStatus
from jobengine.service.events import JobEventBus
from jobengine.types.events import JobEvent

EVENT_TIME = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


class TestJobEvent:
    """Tests for JobEvent factories."""

    def test_job_started(self):
        event = JobEvent.job_started("job-1", "import", "host-a", EVENT_TIME)

        assert event.event_type == EVENT_JOB_STARTED
        assert event.status == JobStatus.OK
        assert event.data == {"hostname": "host-a"}
        assert event.timestamp == EVENT_TIME

    def test_job_stopped(self):
        event = JobEvent.job_stopped("job-1", "import", JobStatus.ERROR, 1.5, EVENT_TIME)

        assert event.event_type == EVENT_JOB_STOPPED
        assert event.status == JobStatus.ERROR
        assert event.data == {"duration_seconds": 1.5}

    def test_job_dead(self):
        event = JobEvent.job_dead("job-1", "import", EVENT_TIME)

        assert event.event_type == EVENT_JOB_DEAD
        assert event.status == JobStatus.DEAD


class TestJobEventBus:
    """Tests for JobEventBus."""

    async def test_sync_and_async_listeners(self):
        bus = JobEventBus()
        received = []

        async def async_listener(event: JobEvent) -> None:
            received.append(("async", event.job_id))

        bus.subscribe(lambda event: received.append(("sync", event.job_id)))
        bus.subscribe(async_listener)

        await bus.publish(JobEvent.job_dead("job-1", "import", EVENT_TIME))

        assert received == [("sync", "job-1"), ("async", "job-1")]

    async def test_failing_listener_is_skipped(self):
        """Test a failing listener neither stops delivery nor raises."""
        bus = JobEventBus()
        received = []

        def failing(event: JobEvent) -> None:
            raise RuntimeError("listener down")

        bus.subscribe(failing)
        bus.subscribe(received.append)

        await bus.publish(JobEvent.job_dead("job-1", "import", EVENT_TIME))

        assert len(received) == 1

    async def test_unsubscribe(self):
        bus = JobEventBus()
        received = []
        bus.subscribe(received.append)

        bus.unsubscribe(received.append)
        bus.unsubscribe(received.append)
        await bus.publish(JobEvent.job_dead("job-1", "import", EVENT_TIME))

        assert received == []
