"""create jobs table

Revision ID: 3b6f0c9e2a41
Revises:
Create Date: 2026-10-19 09:12:40.118204

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3b6f0c9e2a41"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "jobs",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column("type", sa.Text, nullable=False, comment="Job type identifier"),
        sa.Column(
            "payload",
            sa.JSON,
            nullable=True,
            comment="Handler input, passed through verbatim",
        ),
        sa.Column(
            "status",
            sa.Text,
            nullable=False,
            server_default="pending",
            comment="Job status: pending|running|completed|failed|cancelled",
        ),
        sa.Column(
            "attempts",
            sa.Integer,
            nullable=False,
            server_default="0",
            comment="Executions so far",
        ),
        sa.Column(
            "max_attempts",
            sa.Integer,
            nullable=False,
            server_default="3",
            comment="Attempts before the job fails",
        ),
        sa.Column(
            "scheduled_for",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            comment="Earliest time to run job",
        ),
        sa.Column(
            "version",
            sa.Integer,
            nullable=False,
            server_default="0",
            comment="Optimistic concurrency token",
        ),
        # Outcome
        sa.Column("last_error", sa.Text, nullable=True, comment="Last error message"),
        sa.Column(
            "error_code", sa.Text, nullable=True, comment="Structured error identifier"
        ),
        sa.Column("result", sa.JSON, nullable=True, comment="Handler result"),
        # Ownership while running
        sa.Column(
            "claimed_by",
            sa.Text,
            nullable=True,
            comment="Dispatcher pass that owns the running job",
        ),
        sa.Column(
            "claimed_at",
            sa.TIMESTAMP(timezone=True),
            nullable=True,
            comment="When the job was claimed",
        ),
        sa.Column(
            "completed_at",
            sa.TIMESTAMP(timezone=True),
            nullable=True,
            comment="When the job became terminal",
        ),
        # Timestamps
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        # Constraints
        sa.CheckConstraint(
            "status IN ('pending', 'running', 'completed', 'failed', 'cancelled')",
            name="jobs_status_check",
        ),
        sa.CheckConstraint("attempts >= 0", name="jobs_attempts_check"),
        sa.CheckConstraint("max_attempts >= 1", name="jobs_max_attempts_check"),
    )

    # Claim scans pending jobs by due time; reclaim and cleanup scan by status + time
    op.create_index(
        "ix_jobs_status_scheduled_for",
        "jobs",
        ["status", "scheduled_for", "created_at"],
    )
    op.create_index("ix_jobs_status_claimed_at", "jobs", ["status", "claimed_at"])
    op.create_index("ix_jobs_status_updated_at", "jobs", ["status", "updated_at"])
    op.create_index("ix_jobs_type", "jobs", ["type"])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("ix_jobs_type", table_name="jobs")
    op.drop_index("ix_jobs_status_updated_at", table_name="jobs")
    op.drop_index("ix_jobs_status_claimed_at", table_name="jobs")
    op.drop_index("ix_jobs_status_scheduled_for", table_name="jobs")
    op.drop_table("jobs")
