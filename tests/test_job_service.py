from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest
from sqlalchemy import select

from shrubb_jobs.v1.core.exceptions import InvalidPayloadError
from shrubb_jobs.v1.infra.jobs.models import Job, JobStatus, JobType
from shrubb_jobs.v1.infra.jobs.schemas import JobCreate


class TestEnqueue:
    @pytest.mark.asyncio
    async def test_enqueue_validates_payload(self, db_session, job_service):
        with pytest.raises(InvalidPayloadError, match="Invalid payload for visualizer"):
            await job_service.enqueue_job(
                db_session,
                JobCreate(type=JobType.VISUALIZER, owner_id=uuid4(), payload={}),
            )

        result = await db_session.execute(select(Job))
        assert result.scalars().all() == []

    @pytest.mark.asyncio
    async def test_enqueue_inserts_queued_job(self, db_session, job_service):
        tenant_id = uuid4()
        job = await job_service.enqueue_job(
            db_session,
            JobCreate(
                type=JobType.PROVISION_PHONE,
                owner_id=uuid4(),
                tenant_id=tenant_id,
                payload={"area_code": "512"},
            ),
        )

        assert job.status == JobStatus.QUEUED.value
        assert job.tenant_id == tenant_id
        assert job.payload == {"area_code": "512"}

    @pytest.mark.asyncio
    async def test_follow_on_swallows_invalid_payload(self, db_session, job_service):
        job = await job_service.enqueue_follow_on(
            db_session,
            JobCreate(type=JobType.CHAT_RESPONSE, owner_id=uuid4(), payload={}),
        )

        assert job is None
        result = await db_session.execute(select(Job))
        assert result.scalars().all() == []


class TestStats:
    @pytest.mark.asyncio
    async def test_stats_count_by_status_and_type(self, factory, db_session, job_service):
        await factory.job(type="planner")
        await factory.job(type="planner", status=JobStatus.SUCCEEDED.value, attempts=1)
        await factory.job(type="classifier", status=JobStatus.FAILED.value, attempts=3)
        await factory.job(
            type="visualizer",
            status=JobStatus.RUNNING.value,
            attempts=1,
            locked_by="worker-gone",
            locked_at=datetime.now(UTC) - timedelta(hours=1),
        )

        stats = await job_service.get_job_stats(db_session)

        assert stats.total_jobs == 4
        assert stats.by_status == {
            "queued": 1,
            "succeeded": 1,
            "failed": 1,
            "running": 1,
        }
        assert stats.by_type == {"planner": 2, "classifier": 1, "visualizer": 1}
        assert stats.queue_depth == 2
        assert stats.stale_running == 1
