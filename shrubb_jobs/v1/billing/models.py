"""
Billing tables read and incremented by the worker.
"""

from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import TIMESTAMP, Float, Integer, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from shrubb_jobs.infra.database import Base


class Entitlement(Base):
    """Plan allowance for a company (or a legacy single user)."""

    __tablename__ = "entitlements"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    company_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    tier: Mapped[str] = mapped_column(Text, nullable=False, default="trial")
    spending_cap_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    spending_used_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        default=lambda: datetime.now(UTC),
    )


class UsageLedgerEntry(Base):
    """Immutable record of one billable provider call."""

    __tablename__ = "usage_ledger"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    company_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    project_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    message_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    job_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    run_type: Mapped[str] = mapped_column(Text, nullable=False)
    tokens_in: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tokens_out: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    image_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    estimated_cost_usd: Mapped[float] = mapped_column(Float, nullable=False)
    provider: Mapped[str] = mapped_column(Text, nullable=False)
    model: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        default=lambda: datetime.now(UTC),
    )
