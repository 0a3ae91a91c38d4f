from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest

from shrubb_jobs.v1.core.exceptions import TenantResolutionError
from shrubb_jobs.v1.core.registries import JobRegistry
from shrubb_jobs.v1.infra.jobs.models import Job, JobStatus
from shrubb_jobs.v1.infra.jobs.schemas import PlannerPayload
from shrubb_jobs.v1.infra.jobs.tenancy import resolve_tenant_id
from shrubb_jobs.v1.infra.jobs.worker import JobWorker


class RecordingPlanner:
    payload_model = PlannerPayload

    def __init__(self):
        self.contexts = []

    async def handle(self, session, ctx, payload):
        self.contexts.append(ctx)
        return {}


class TestResolveTenantId:
    """Resolution order: job, payload project, owner membership."""

    @pytest.mark.asyncio
    async def test_job_tenant_wins(self, factory, db_session, company_setup):
        own_tenant = uuid4()
        job = await factory.job(
            payload={"project_id": str(company_setup["project"].id)},
            owner_id=company_setup["owner"].user_id,
            tenant_id=own_tenant,
        )

        assert await resolve_tenant_id(db_session, job) == own_tenant

    @pytest.mark.asyncio
    async def test_payload_project_company(self, factory, db_session, company_setup):
        job = await factory.job(
            payload={"project_id": str(company_setup["project"].id)},
            owner_id=uuid4(),
        )

        assert await resolve_tenant_id(db_session, job) == company_setup["company"].id

    @pytest.mark.asyncio
    async def test_earliest_membership(self, factory, db_session):
        user_id = uuid4()
        first = await factory.company("First Co")
        second = await factory.company("Second Co")
        now = datetime.now(UTC)
        await factory.member(second.id, user_id, created_at=now - timedelta(days=1))
        await factory.member(first.id, user_id, created_at=now - timedelta(days=30))

        job = await factory.job(type="provision_phone", owner_id=user_id)

        assert await resolve_tenant_id(db_session, job) == first.id

    @pytest.mark.asyncio
    async def test_project_without_company_falls_back_to_membership(
        self, factory, db_session
    ):
        company = await factory.company()
        member = await factory.member(company.id)
        orphan_project = await factory.project(None, user_id=member.user_id)

        job = await factory.job(
            payload={"project_id": str(orphan_project.id)}, owner_id=member.user_id
        )

        assert await resolve_tenant_id(db_session, job) == company.id

    @pytest.mark.asyncio
    async def test_unresolvable_raises(self, factory, db_session):
        job = await factory.job(payload={"project_id": str(uuid4())}, owner_id=uuid4())

        with pytest.raises(TenantResolutionError):
            await resolve_tenant_id(db_session, job)


class TestWorkerTenancy:
    """Tenant resolution as part of processing a claimed job."""

    @pytest.mark.asyncio
    async def test_resolved_tenant_is_written_back(
        self, settings, database, store, factory, company_setup
    ):
        planner = RecordingPlanner()
        registry = JobRegistry()
        registry.register("planner", planner)
        worker = JobWorker(settings, database, registry, store)

        job = await factory.job(
            payload={
                "project_id": str(company_setup["project"].id),
                "design_run_id": str(uuid4()),
            },
            owner_id=company_setup["owner"].user_id,
        )

        await worker.poll_once()

        reloaded = await factory.reload(Job, job.id)
        assert reloaded.tenant_id == company_setup["company"].id
        assert reloaded.status == JobStatus.SUCCEEDED.value
        assert planner.contexts[0].tenant_id == company_setup["company"].id
        assert planner.contexts[0].owner_id == company_setup["owner"].user_id
        assert planner.contexts[0].attempt == 1

    @pytest.mark.asyncio
    async def test_unresolved_tenant_is_retried(self, settings, database, store, factory):
        planner = RecordingPlanner()
        registry = JobRegistry()
        registry.register("planner", planner)
        worker = JobWorker(settings, database, registry, store)

        job = await factory.job(
            payload={"project_id": str(uuid4()), "design_run_id": str(uuid4())},
            owner_id=uuid4(),
        )

        await worker.poll_once()

        reloaded = await factory.reload(Job, job.id)
        assert reloaded.status == JobStatus.QUEUED.value
        assert reloaded.tenant_id is None
        assert reloaded.error["code"] == "TENANT_UNRESOLVED"
        assert planner.contexts == []
