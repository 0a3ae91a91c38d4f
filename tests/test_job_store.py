from uuid import uuid4

import pytest

from shrubb_jobs.v1.infra.jobs.models import Job, JobStatus, JobType
from shrubb_jobs.v1.infra.jobs.schemas import JobCreate


class TestUpdateJob:
    """Ownership-guarded writes."""

    @pytest.mark.asyncio
    async def test_owner_guard_matches_current_lock(self, factory, db_session, store):
        job = await factory.job(
            status=JobStatus.RUNNING.value, attempts=1, locked_by="worker-a"
        )

        assert await store.update_job(
            db_session, job.id, {"status": JobStatus.SUCCEEDED.value}, owned_by="worker-a"
        )
        assert (await factory.reload(Job, job.id)).status == JobStatus.SUCCEEDED.value

    @pytest.mark.asyncio
    async def test_owner_guard_rejects_other_worker(self, factory, db_session, store):
        job = await factory.job(
            status=JobStatus.RUNNING.value, attempts=1, locked_by="worker-a"
        )

        updated = await store.update_job(
            db_session, job.id, {"status": JobStatus.FAILED.value}, owned_by="worker-b"
        )

        assert updated is False
        assert (await factory.reload(Job, job.id)).status == JobStatus.RUNNING.value

    @pytest.mark.asyncio
    async def test_owner_guard_rejects_terminal_job(self, factory, db_session, store):
        job = await factory.job(
            status=JobStatus.SUCCEEDED.value, attempts=1, locked_by="worker-a"
        )

        assert not await store.update_job(
            db_session, job.id, {"status": JobStatus.QUEUED.value}, owned_by="worker-a"
        )


class TestLookups:
    @pytest.mark.asyncio
    async def test_insert_job_starts_queued(self, db_session, store):
        owner_id = uuid4()
        job = await store.insert_job(
            db_session,
            JobCreate(type=JobType.PROVISION_PHONE, owner_id=owner_id, payload={}),
        )

        assert job.status == JobStatus.QUEUED.value
        assert job.attempts == 0
        assert job.owner_id == owner_id
        assert job.tenant_id is None
        assert job.locked_by is None

    @pytest.mark.asyncio
    async def test_get_job_scopes_by_tenant_and_owner(self, factory, db_session, store):
        tenant_id, owner_id = uuid4(), uuid4()
        job = await factory.job(tenant_id=tenant_id, owner_id=owner_id)

        assert (await store.get_job(db_session, job.id, tenant_id=tenant_id)).id == job.id
        assert await store.get_job(db_session, job.id, tenant_id=uuid4()) is None
        assert (await store.get_job(db_session, job.id, owner_id=owner_id)).id == job.id
        assert await store.get_job(db_session, job.id, owner_id=uuid4()) is None

    @pytest.mark.asyncio
    async def test_has_active_job_matches_payload_key(self, factory, db_session, store):
        nudge_id = uuid4()
        await factory.job(
            type=JobType.SEND_PROPOSAL_NUDGE.value,
            payload={"nudge_id": str(nudge_id), "proposal_id": str(uuid4())},
        )

        assert await store.has_active_job(
            db_session, JobType.SEND_PROPOSAL_NUDGE.value, "nudge_id", nudge_id
        )
        assert not await store.has_active_job(
            db_session, JobType.SEND_PROPOSAL_NUDGE.value, "nudge_id", uuid4()
        )

    @pytest.mark.asyncio
    async def test_has_active_job_ignores_terminal_jobs(self, factory, db_session, store):
        nudge_id = uuid4()
        await factory.job(
            type=JobType.SEND_PROPOSAL_NUDGE.value,
            payload={"nudge_id": str(nudge_id)},
            status=JobStatus.FAILED.value,
            attempts=3,
        )

        assert not await store.has_active_job(
            db_session, JobType.SEND_PROPOSAL_NUDGE.value, "nudge_id", nudge_id
        )
