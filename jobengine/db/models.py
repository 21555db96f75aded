"""
SQLAlchemy database models.
Defines the job records, their messages and the job meta documents.
"""

from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from jobengine.constants import JobStatus, MessageLevel


class UTCDateTime(TypeDecorator):
    """
    Stores naive UTC timestamps and hands out timezone-aware UTC datetimes.

    Keeps comparisons consistent on backends without timezone support.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(UTC).replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value


JSONDocument = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class JobInfoRecord(Base):
    """
    One row per job execution.

    The stopped timestamp is the terminal marker: a row without it is a
    running job, a row with it may be deleted by cleanup.
    """

    __tablename__ = "job_info"

    job_id: Mapped[str] = mapped_column(
        "id",
        String(64),
        primary_key=True,
    )
    job_type: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
    )
    started: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        index=True,
    )
    last_updated: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
    )
    stopped: Mapped[datetime | None] = mapped_column(
        UTCDateTime,
        nullable=True,
    )
    status: Mapped[JobStatus] = mapped_column(
        Enum(JobStatus, name="job_status", create_constraint=True, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=JobStatus.OK,
    )
    hostname: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    messages: Mapped[list["JobMessageRecord"]] = relationship(
        back_populates="job",
        order_by="JobMessageRecord.id",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        # Index for the dead job query
        Index("ix_job_info_running_last_updated", "stopped", "last_updated"),
    )

    def __repr__(self) -> str:
        return (
            f"JobInfoRecord(id={self.job_id}, type={self.job_type}, "
            f"status={self.status}, stopped={self.stopped})"
        )


class JobMessageRecord(Base):
    """A message appended to a job; the autoincrement id is the append order."""

    __tablename__ = "job_messages"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )
    job_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("job_info.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    level: Mapped[MessageLevel] = mapped_column(
        Enum(MessageLevel, name="message_level", create_constraint=True, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    timestamp: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
    )
    message: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )

    job: Mapped[JobInfoRecord] = relationship(back_populates="messages")


class JobMetaDocument(Base):
    """
    Singleton documents shared by all engine instances.

    RUNNING_JOBS maps job type to running job id, DISABLED_JOBS maps job type
    to the disable comment. Every write bumps ``version``; writers only
    succeed when the version they read is still current.
    """

    __tablename__ = "job_meta"

    id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
    )
    data: Mapped[dict] = mapped_column(
        JSONDocument,
        nullable=False,
        default=dict,
    )
    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    def __repr__(self) -> str:
        return f"JobMetaDocument(id={self.id}, version={self.version}, data={self.data})"
