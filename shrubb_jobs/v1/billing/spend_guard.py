"""
Per-tenant spending cap enforcement for billable AI calls.
"""

from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from shrubb_jobs.config.logging import get_logger
from shrubb_jobs.infra.database import STORE_ERRORS
from shrubb_jobs.v1.billing.models import Entitlement
from shrubb_jobs.v1.core.exceptions import SpendingCapExceededError

logger = get_logger(__name__)


def _scope_filter(scope_id: UUID):
    # Company entitlements are the norm; user-scoped rows predate companies
    return or_(Entitlement.company_id == scope_id, Entitlement.user_id == scope_id)


class SpendGuard:
    """
    Gate for billable operations.

    Handlers call ``check_spending_cap`` with an estimate before paying for a
    provider call and ``increment_spending`` with the realised cost after it
    succeeds. Both run in their own session so a handler rollback never
    discards recorded spend.
    """

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def check_spending_cap(
        self, scope_id: UUID, additional_cost_cents: int
    ) -> bool:
        """
        Return True when ``used + additional_cost_cents`` stays within the cap.

        A scope without an entitlement row has no budget. Store errors fail
        open: the call is allowed and the error is logged.
        """
        try:
            async with self.session_factory() as session:
                row = await self._load_entitlement(session, scope_id)
        except STORE_ERRORS as e:
            logger.error(
                "Spending cap check failed, allowing call",
                scope_id=str(scope_id),
                additional_cost_cents=additional_cost_cents,
                error=str(e),
            )
            return True

        if row is None:
            used, cap = 0, 0
        else:
            used, cap = row.spending_used_cents, row.spending_cap_cents

        within_cap = used + additional_cost_cents <= cap
        if not within_cap:
            logger.warning(
                "Spending cap would be exceeded",
                scope_id=str(scope_id),
                used_cents=used,
                cap_cents=cap,
                additional_cost_cents=additional_cost_cents,
            )
        return within_cap

    async def require_within_cap(
        self, scope_id: UUID, additional_cost_cents: int
    ) -> None:
        """Raise ``SpendingCapExceededError`` unless the estimate fits."""
        if not await self.check_spending_cap(scope_id, additional_cost_cents):
            raise SpendingCapExceededError(
                details={
                    "scope_id": str(scope_id),
                    "estimated_cost_cents": additional_cost_cents,
                }
            )

    async def increment_spending(self, scope_id: UUID, cost_cents: int) -> None:
        """
        Atomically add realised spend to the scope's running total.

        The provider has already been paid when this runs, so a store error is
        logged instead of raised: failing the job here would only make the
        retry pay a second time.
        """
        if cost_cents <= 0:
            return

        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    update(Entitlement)
                    .where(_scope_filter(scope_id))
                    .values(
                        spending_used_cents=Entitlement.spending_used_cents
                        + cost_cents
                    )
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
        except STORE_ERRORS as e:
            logger.error(
                "Failed to record spending",
                scope_id=str(scope_id),
                cost_cents=cost_cents,
                error=str(e),
            )
            return

        if result.rowcount == 0:
            logger.warning(
                "No entitlement to record spending against",
                scope_id=str(scope_id),
                cost_cents=cost_cents,
            )

    async def _load_entitlement(
        self, session: AsyncSession, scope_id: UUID
    ) -> Entitlement | None:
        result = await session.execute(
            select(Entitlement)
            .where(_scope_filter(scope_id))
            .order_by(Entitlement.company_id.is_(None))
            .limit(1)
        )
        return result.scalar_one_or_none()
