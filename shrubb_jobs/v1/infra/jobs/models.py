"""
Job queue models.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, TIMESTAMP, CheckConstraint, Index, Integer, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from shrubb_jobs.infra.database import Base


class JobStatus(str, Enum):
    """Job status enumeration."""

    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


ACTIVE_STATUSES = (JobStatus.QUEUED.value, JobStatus.RUNNING.value)


class JobType(str, Enum):
    """Job types with a registered handler."""

    PLANNER = "planner"
    VISUALIZER = "visualizer"
    CLASSIFIER = "classifier"
    CHAT_RESPONSE = "chat_response"
    PROVISION_PHONE = "provision_phone"
    SEND_PROPOSAL_NUDGE = "send_proposal_nudge"


class Job(Base):
    """
    A unit of deferred work.

    Workers coordinate only through ``locked_by``/``locked_at``: a claim sets
    both and increments ``attempts``; every requeue or terminal transition
    clears them.
    """

    __tablename__ = "jobs"

    # Core fields
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    owner_id: Mapped[UUID] = mapped_column(
        Uuid, nullable=False, comment="Initiating user"
    )
    tenant_id: Mapped[UUID | None] = mapped_column(
        Uuid, nullable=True, comment="Billing company, resolved lazily"
    )
    type: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Job type identifier"
    )
    payload: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
        comment="Job-specific parameters",
    )

    # Job state
    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=JobStatus.QUEUED.value,
        comment="Job status: queued|running|succeeded|failed",
    )
    attempts: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, comment="Number of claims made"
    )

    # Worker coordination
    locked_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True, comment="When job was locked by worker"
    )
    locked_by: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Worker ID that locked the job"
    )

    # Outcome
    result: Mapped[dict[str, Any] | None] = mapped_column(
        JSON, nullable=True, comment="Handler result, set on success"
    )
    error: Mapped[dict[str, Any] | None] = mapped_column(
        JSON, nullable=True, comment="Last failure {code, message, attempt}"
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
        default=lambda: datetime.now(UTC),
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
        default=lambda: datetime.now(UTC),
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('queued', 'running', 'succeeded', 'failed')",
            name="jobs_status_check",
        ),
        CheckConstraint("attempts >= 0", name="jobs_attempts_check"),
        Index("ix_jobs_status_created_at", "status", "created_at"),
        Index("ix_jobs_type_status", "type", "status"),
    )

    def is_exhausted(self, max_attempts: int) -> bool:
        """True once the attempt budget is spent."""
        return self.attempts >= max_attempts
