"""
Usage ledger writes.
"""

from uuid import UUID

from pydantic import BaseModel, Field

from shrubb_jobs.config.logging import get_logger
from shrubb_jobs.infra.database import STORE_ERRORS
from shrubb_jobs.v1.billing.models import UsageLedgerEntry

logger = get_logger(__name__)


class UsageEntry(BaseModel):
    """One billable provider call."""

    user_id: UUID
    company_id: UUID | None = None
    project_id: UUID | None = None
    message_id: UUID | None = None
    job_id: UUID | None = None
    run_type: str = Field(..., description="planner|render|classify|chat")
    tokens_in: int = 0
    tokens_out: int = 0
    image_count: int = 0
    estimated_cost_usd: float
    provider: str = "openai"
    model: str | None = None


class UsageTracker:
    """Append-only writer for ``usage_ledger``."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def track_usage(self, entry: UsageEntry) -> None:
        """
        Insert a ledger row in its own transaction.

        The ledger is reporting, not billing truth: a failed insert is logged
        and the handler carries on.
        """
        try:
            async with self.session_factory() as session:
                session.add(UsageLedgerEntry(**entry.model_dump()))
                await session.commit()
        except STORE_ERRORS as e:
            logger.error(
                "Failed to track usage",
                run_type=entry.run_type,
                company_id=str(entry.company_id) if entry.company_id else None,
                error=str(e),
            )
