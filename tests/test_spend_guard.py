import asyncio
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from shrubb_jobs.v1.billing.models import Entitlement, UsageLedgerEntry
from shrubb_jobs.v1.billing.spend_guard import SpendGuard
from shrubb_jobs.v1.billing.usage import UsageEntry, UsageTracker
from shrubb_jobs.v1.core.exceptions import SpendingCapExceededError


# A pooled connection that died, and a database that refuses new connections
STORE_OUTAGES = [
    OperationalError("SELECT 1", {}, Exception("connection refused")),
    ConnectionRefusedError(111, "Connect call failed"),
]


class BrokenSessionFactory:
    """Session factory whose sessions fail on entry, like a dead database."""

    def __init__(self, error: Exception = STORE_OUTAGES[0]):
        self.error = error

    def __call__(self):
        return self

    async def __aenter__(self):
        raise self.error

    async def __aexit__(self, *exc_info):
        return False


class TestCheckSpendingCap:
    """Gate is false iff used + cost exceeds the cap."""

    @pytest.mark.asyncio
    async def test_within_cap(self, factory, spend_guard):
        company_id = uuid4()
        await factory.entitlement(company_id=company_id, cap_cents=500, used_cents=100)

        assert await spend_guard.check_spending_cap(company_id, 399)

    @pytest.mark.asyncio
    async def test_exactly_at_cap_is_allowed(self, factory, spend_guard):
        company_id = uuid4()
        await factory.entitlement(company_id=company_id, cap_cents=500, used_cents=100)

        assert await spend_guard.check_spending_cap(company_id, 400)

    @pytest.mark.asyncio
    async def test_over_cap(self, factory, spend_guard):
        company_id = uuid4()
        await factory.entitlement(company_id=company_id, cap_cents=500, used_cents=100)

        assert not await spend_guard.check_spending_cap(company_id, 401)

    @pytest.mark.asyncio
    async def test_user_scoped_entitlement(self, factory, spend_guard):
        user_id = uuid4()
        await factory.entitlement(user_id=user_id, cap_cents=50)

        assert await spend_guard.check_spending_cap(user_id, 50)
        assert not await spend_guard.check_spending_cap(user_id, 51)

    @pytest.mark.asyncio
    async def test_missing_entitlement_has_no_budget(self, spend_guard):
        assert not await spend_guard.check_spending_cap(uuid4(), 1)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", STORE_OUTAGES)
    async def test_store_error_fails_open(self, error):
        guard = SpendGuard(BrokenSessionFactory(error))

        assert await guard.check_spending_cap(uuid4(), 10_000)

    @pytest.mark.asyncio
    async def test_require_within_cap_raises(self, factory, spend_guard):
        company_id = uuid4()
        await factory.entitlement(company_id=company_id, cap_cents=10, used_cents=10)

        with pytest.raises(SpendingCapExceededError, match="Spending cap exceeded"):
            await spend_guard.require_within_cap(company_id, 1)


class TestIncrementSpending:
    @pytest.mark.asyncio
    async def test_increments_accumulate(self, factory, spend_guard):
        company_id = uuid4()
        entitlement = await factory.entitlement(company_id=company_id, used_cents=5)

        await spend_guard.increment_spending(company_id, 7)
        await spend_guard.increment_spending(company_id, 3)

        reloaded = await factory.reload(Entitlement, entitlement.id)
        assert reloaded.spending_used_cents == 15

    @pytest.mark.asyncio
    async def test_concurrent_increments_are_not_lost(self, factory, spend_guard):
        company_id = uuid4()
        entitlement = await factory.entitlement(company_id=company_id)

        await asyncio.gather(
            *(spend_guard.increment_spending(company_id, 2) for _ in range(5))
        )

        reloaded = await factory.reload(Entitlement, entitlement.id)
        assert reloaded.spending_used_cents == 10

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", STORE_OUTAGES)
    async def test_store_error_is_logged_not_raised(self, error):
        guard = SpendGuard(BrokenSessionFactory(error))

        await guard.increment_spending(uuid4(), 25)

    @pytest.mark.asyncio
    async def test_zero_cost_is_skipped(self, factory, spend_guard):
        company_id = uuid4()
        entitlement = await factory.entitlement(company_id=company_id, used_cents=3)

        await spend_guard.increment_spending(company_id, 0)

        reloaded = await factory.reload(Entitlement, entitlement.id)
        assert reloaded.spending_used_cents == 3


class TestUsageTracker:
    @pytest.mark.asyncio
    async def test_track_usage_inserts_ledger_row(self, db_session, usage_tracker):
        user_id, company_id = uuid4(), uuid4()
        await usage_tracker.track_usage(
            UsageEntry(
                user_id=user_id,
                company_id=company_id,
                run_type="planner",
                tokens_in=1200,
                tokens_out=800,
                estimated_cost_usd=0.018,
                model="gpt-4o",
            )
        )

        rows = (await db_session.execute(UsageLedgerEntry.__table__.select())).all()
        assert len(rows) == 1
        assert rows[0].run_type == "planner"
        assert rows[0].tokens_in == 1200

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", STORE_OUTAGES)
    async def test_track_usage_swallows_store_errors(self, error):
        tracker = UsageTracker(BrokenSessionFactory(error))

        await tracker.track_usage(
            UsageEntry(user_id=uuid4(), run_type="chat", estimated_cost_usd=0.01)
        )
