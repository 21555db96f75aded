"""
Pytest configuration and shared fixtures.
"""

import os
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
import pytest_asyncio
from prometheus_client import CollectorRegistry
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from jobengine.config import Settings
from jobengine.db import Base, create_session_factory
from jobengine.observability.metrics import MetricsCollector
from jobengine.service import HandlerRegistry, JobEventBus, JobLifecycle, JobService, build_job_service
from jobengine.types.events import JobEvent

# Test database URL; a file-backed SQLite database per test unless set
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")

TEST_HOSTNAME = "test-host"


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    """Get the test database URL."""
    return TEST_DATABASE_URL or f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}"


@pytest_asyncio.fixture
async def async_engine(database_url: str) -> AsyncGenerator[AsyncEngine]:
    """Create an async database engine with a fresh schema."""
    engine = create_async_engine(database_url, echo=False, poolclass=NullPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(async_engine)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession]:
    """Create a database session for tests."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 1, 1, 12, 0, tzinfo=UTC))


@pytest.fixture
def metrics_registry() -> CollectorRegistry:
    return CollectorRegistry()


@pytest.fixture
def metrics(metrics_registry: CollectorRegistry) -> MetricsCollector:
    """Metrics collector with its own registry."""
    return MetricsCollector(registry=metrics_registry)


@pytest.fixture
def events() -> list[JobEvent]:
    return []


@pytest.fixture
def event_bus(events: list[JobEvent]) -> JobEventBus:
    """Event bus recording every published event."""
    bus = JobEventBus()
    bus.subscribe(events.append)
    return bus


@pytest.fixture
def test_settings(database_url: str) -> Settings:
    """Create test settings."""
    return Settings(
        database_url=database_url,
        hostname=TEST_HOSTNAME,
        worker_pool_size=4,
        keep_alive_interval_seconds=0.05,
        run_lock_max_attempts=10,
        log_level="DEBUG",
        log_format="console",
    )


@pytest.fixture
def lifecycle(session_factory, clock, metrics, event_bus) -> JobLifecycle:
    return JobLifecycle(
        session_factory,
        clock=clock,
        hostname=TEST_HOSTNAME,
        metrics=metrics,
        event_bus=event_bus,
    )


@pytest.fixture
def handlers() -> HandlerRegistry:
    return HandlerRegistry()


@pytest_asyncio.fixture
async def service(
    handlers,
    session_factory,
    test_settings,
    metrics,
    event_bus,
    clock,
) -> AsyncGenerator[JobService]:
    """Job service over the test database; leftover jobs are cancelled on teardown."""
    job_service = build_job_service(
        handlers,
        session_factory,
        settings=test_settings,
        metrics=metrics,
        event_bus=event_bus,
        clock=clock,
    )
    yield job_service
    await job_service.shutdown(wait=False)
