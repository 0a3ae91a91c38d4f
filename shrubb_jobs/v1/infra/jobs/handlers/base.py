"""
Shared bookkeeping for handlers that pay for provider calls.
"""

from uuid import UUID

from shrubb_jobs.config.settings import Settings
from shrubb_jobs.v1.billing.pricing import cost_to_cents
from shrubb_jobs.v1.billing.spend_guard import SpendGuard
from shrubb_jobs.v1.billing.usage import UsageEntry, UsageTracker
from shrubb_jobs.v1.clients.ai import AIClient


class BillableHandler:
    """
    Base for handlers that call OpenAI.

    Subclasses gate each call with ``spend_guard.require_within_cap`` using an
    estimate, then call ``charge`` with the realised cost once the provider
    has answered.
    """

    def __init__(
        self,
        settings: Settings,
        ai: AIClient,
        spend_guard: SpendGuard,
        usage_tracker: UsageTracker,
    ):
        self.settings = settings
        self.ai = ai
        self.spend_guard = spend_guard
        self.usage_tracker = usage_tracker

    async def charge(
        self,
        ctx,
        run_type: str,
        model: str,
        cost_usd: float,
        tokens_in: int = 0,
        tokens_out: int = 0,
        image_count: int = 0,
        project_id: UUID | None = None,
        message_id: UUID | None = None,
    ) -> None:
        """Write a usage ledger row and add the cost to the tenant's spend."""
        await self.usage_tracker.track_usage(
            UsageEntry(
                user_id=ctx.owner_id,
                company_id=ctx.tenant_id,
                project_id=project_id,
                message_id=message_id,
                job_id=ctx.job_id,
                run_type=run_type,
                tokens_in=tokens_in,
                tokens_out=tokens_out,
                image_count=image_count,
                estimated_cost_usd=cost_usd,
                model=model,
            )
        )
        await self.spend_guard.increment_spending(ctx.tenant_id, cost_to_cents(cost_usd))
