"""Initial schema with job_info, job_messages and job_meta tables

Revision ID: 001
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        DO $$ BEGIN
            CREATE TYPE job_status AS ENUM ('OK', 'ERROR', 'DEAD', 'SKIPPED');
        EXCEPTION
            WHEN duplicate_object THEN null;
        END $$;
    """)

    op.execute("""
        DO $$ BEGIN
            CREATE TYPE message_level AS ENUM ('INFO', 'WARNING', 'ERROR');
        EXCEPTION
            WHEN duplicate_object THEN null;
        END $$;
    """)

    op.create_table(
        "job_info",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("job_type", sa.String(255), nullable=False),
        sa.Column("started", sa.DateTime, nullable=False),
        sa.Column("last_updated", sa.DateTime, nullable=False),
        sa.Column("stopped", sa.DateTime, nullable=True),
        sa.Column(
            "status",
            postgresql.ENUM("OK", "ERROR", "DEAD", "SKIPPED", name="job_status", create_type=False),
            nullable=False,
            server_default="OK",
        ),
        sa.Column("hostname", sa.String(255), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_index("ix_job_info_job_type", "job_info", ["job_type"])
    op.create_index("ix_job_info_started", "job_info", ["started"])
    op.create_index("ix_job_info_running_last_updated", "job_info", ["stopped", "last_updated"])

    op.create_table(
        "job_messages",
        sa.Column("id", sa.Integer, autoincrement=True, nullable=False),
        sa.Column("job_id", sa.String(64), nullable=False),
        sa.Column(
            "level",
            postgresql.ENUM("INFO", "WARNING", "ERROR", name="message_level", create_type=False),
            nullable=False,
        ),
        sa.Column("timestamp", sa.DateTime, nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["job_id"], ["job_info.id"], ondelete="CASCADE"),
    )

    op.create_index("ix_job_messages_job_id", "job_messages", ["job_id"])

    # Singleton documents holding the run-locks and the disabled job types
    op.create_table(
        "job_meta",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("data", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column("version", sa.Integer, nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.execute("""
        INSERT INTO job_meta (id, data, version)
        VALUES ('RUNNING_JOBS', '{}', 0), ('DISABLED_JOBS', '{}', 0)
        ON CONFLICT (id) DO NOTHING
    """)

    # Partial index for the dead job query
    op.execute("""
        CREATE INDEX ix_job_info_running
        ON job_info (last_updated)
        WHERE stopped IS NULL
    """)


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS ix_job_info_running")
    op.drop_table("job_meta")
    op.drop_index("ix_job_messages_job_id")
    op.drop_table("job_messages")
    op.drop_index("ix_job_info_running_last_updated")
    op.drop_index("ix_job_info_started")
    op.drop_index("ix_job_info_job_type")
    op.drop_table("job_info")

    op.execute("DROP TYPE IF EXISTS message_level")
    op.execute("DROP TYPE IF EXISTS job_status")
