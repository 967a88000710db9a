"""
Job domain record and its database table.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, TIMESTAMP, CheckConstraint, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from jobqueue.infra.database import Base

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(UTC)


class JobStatus(str, Enum):
    """Job status enumeration."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
)

# Statuses the retention sweep removes unless configured otherwise
SWEEPABLE_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED)


class JobType(str, Enum):
    """Common job types used by the application."""

    SEND_EMAIL = "send-email"
    SEND_NOTIFICATION = "send-notification"
    GENERATE_REPORT = "generate-report"
    CLEANUP_OLD_DATA = "cleanup-old-data"
    SYNC_EXTERNAL = "sync-external"
    AUDIT_LOG_BACKUP = "audit-log-backup"
    CACHE_WARMUP = "cache-warmup"


@dataclass
class Job:
    """
    A unit of background work as seen by the queue.

    Stores hand out copies: mutating a ``Job`` never changes stored state,
    every change goes through ``JobStore.conditional_update``.
    """

    id: str
    type: str
    payload: Any
    scheduled_for: datetime
    created_at: datetime
    updated_at: datetime
    status: JobStatus = JobStatus.PENDING
    attempts: int = 0
    max_attempts: int = 3
    version: int = 0
    last_error: str | None = None
    error_code: str | None = None
    result: Any = None
    claimed_by: str | None = None
    claimed_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_due(self, now: datetime) -> bool:
        return self.status == JobStatus.PENDING and self.scheduled_for <= now


class JobRecord(Base):
    """Persistent row backing a ``Job``."""

    __tablename__ = "jobs"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    type: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Job type identifier"
    )
    payload: Mapped[Any] = mapped_column(
        JSON, nullable=True, comment="Handler input, passed through verbatim"
    )
    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=JobStatus.PENDING.value,
        comment="Job status: pending|running|completed|failed|cancelled",
    )
    attempts: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, comment="Executions so far"
    )
    max_attempts: Mapped[int] = mapped_column(
        Integer, nullable=False, default=3, comment="Attempts before the job fails"
    )
    scheduled_for: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, comment="Earliest time to run job"
    )
    version: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, comment="Optimistic concurrency token"
    )

    # Outcome
    last_error: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Last error message"
    )
    error_code: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Structured error identifier"
    )
    result: Mapped[Any] = mapped_column(JSON, nullable=True, comment="Handler result")

    # Ownership while running
    claimed_by: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Dispatcher pass that owns the running job"
    )
    claimed_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True, comment="When the job was claimed"
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True, comment="When the job became terminal"
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'running', 'completed', 'failed', 'cancelled')",
            name="jobs_status_check",
        ),
        CheckConstraint("attempts >= 0", name="jobs_attempts_check"),
        CheckConstraint("max_attempts >= 1", name="jobs_max_attempts_check"),
        Index("ix_jobs_status_scheduled_for", "status", "scheduled_for", "created_at"),
        Index("ix_jobs_status_claimed_at", "status", "claimed_at"),
        Index("ix_jobs_status_updated_at", "status", "updated_at"),
        Index("ix_jobs_type", "type"),
    )
