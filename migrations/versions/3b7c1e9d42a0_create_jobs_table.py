"""create jobs table

Revision ID: 3b7c1e9d42a0
Revises:
Create Date: 2026-03-02 10:14:27.518203

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3b7c1e9d42a0"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "jobs",
        sa.Column("id", sa.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "owner_id", sa.UUID(as_uuid=True), nullable=False, comment="Initiating user"
        ),
        sa.Column(
            "tenant_id",
            sa.UUID(as_uuid=True),
            nullable=True,
            comment="Billing company, resolved lazily",
        ),
        sa.Column("type", sa.Text, nullable=False, comment="Job type identifier"),
        sa.Column(
            "payload",
            sa.JSON,
            nullable=False,
            server_default=sa.text("'{}'"),
            comment="Job-specific parameters",
        ),
        sa.Column(
            "status",
            sa.Text,
            nullable=False,
            server_default="queued",
            comment="Job status: queued|running|succeeded|failed",
        ),
        sa.Column(
            "attempts",
            sa.Integer,
            nullable=False,
            server_default="0",
            comment="Number of claims made",
        ),
        # Worker coordination fields
        sa.Column(
            "locked_at",
            sa.TIMESTAMP(timezone=True),
            nullable=True,
            comment="When job was locked by worker",
        ),
        sa.Column(
            "locked_by", sa.Text, nullable=True, comment="Worker ID that locked the job"
        ),
        # Outcome
        sa.Column(
            "result", sa.JSON, nullable=True, comment="Handler result, set on success"
        ),
        sa.Column(
            "error",
            sa.JSON,
            nullable=True,
            comment="Last failure {code, message, attempt}",
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
            "status IN ('queued', 'running', 'succeeded', 'failed')",
            name="jobs_status_check",
        ),
        sa.CheckConstraint("attempts >= 0", name="jobs_attempts_check"),
    )

    # Claim query scans by status in creation order
    op.create_index("ix_jobs_status_created_at", "jobs", ["status", "created_at"])
    # Active-job lookups by the nudge scheduler
    op.create_index("ix_jobs_type_status", "jobs", ["type", "status"])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("ix_jobs_type_status", table_name="jobs")
    op.drop_index("ix_jobs_status_created_at", table_name="jobs")
    op.drop_table("jobs")
