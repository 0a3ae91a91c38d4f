"""
Persistence operations on the shared job table.
"""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from shrubb_jobs.v1.infra.jobs.models import ACTIVE_STATUSES, Job, JobStatus
from shrubb_jobs.v1.infra.jobs.schemas import JobCreate


def _eligible(model, stale_cutoff: datetime):
    """Queued jobs, plus running jobs whose lock has outlived the timeout."""
    return or_(
        model.status == JobStatus.QUEUED.value,
        and_(
            model.status == JobStatus.RUNNING.value,
            model.locked_at < stale_cutoff,
        ),
    )


class JobStore:
    """
    Job table operations.

    Every method commits its own unit of work; callers never hold a job row
    lock across a handler call.
    """

    async def claim_next_eligible_job(
        self,
        session: AsyncSession,
        worker_id: str,
        stale_cutoff: datetime,
    ) -> Job | None:
        """
        Atomically claim the oldest eligible job for ``worker_id``.

        Selection and the status change happen in one UPDATE statement. On
        Postgres the inner SELECT takes the row with FOR UPDATE SKIP LOCKED so
        concurrent pollers move on to the next row instead of blocking; the
        outer WHERE re-checks eligibility so a row that changed state between
        snapshot and update is never claimed twice.
        """
        now = datetime.now(UTC)
        candidate = aliased(Job, name="candidate")

        next_id = (
            select(candidate.id)
            .where(_eligible(candidate, stale_cutoff))
            .order_by(candidate.created_at, candidate.id)
            .limit(1)
            .with_for_update(skip_locked=True)
            .scalar_subquery()
        )

        result = await session.execute(
            update(Job)
            .where(Job.id == next_id, _eligible(Job, stale_cutoff))
            .values(
                status=JobStatus.RUNNING.value,
                locked_at=now,
                locked_by=worker_id,
                attempts=Job.attempts + 1,
                updated_at=now,
            )
            .returning(Job)
            .execution_options(synchronize_session=False)
        )
        job = result.scalar_one_or_none()
        await session.commit()
        return job

    async def update_job(
        self,
        session: AsyncSession,
        job_id: UUID,
        fields: dict[str, Any],
        owned_by: str | None = None,
    ) -> bool:
        """
        Apply ``fields`` to a job.

        With ``owned_by`` the write only lands while that worker still holds
        the lock, so a worker whose lock went stale cannot overwrite the
        outcome of the worker that reclaimed the job.

        Returns:
            True if a row was updated
        """
        stmt = update(Job).where(Job.id == job_id)
        if owned_by is not None:
            stmt = stmt.where(
                Job.locked_by == owned_by, Job.status == JobStatus.RUNNING.value
            )

        result = await session.execute(
            stmt.values(**fields, updated_at=datetime.now(UTC)).execution_options(
                synchronize_session=False
            )
        )
        await session.commit()
        return result.rowcount == 1

    async def insert_job(self, session: AsyncSession, job_create: JobCreate) -> Job:
        """Insert a new ``queued`` job and return it."""
        job = Job(
            owner_id=job_create.owner_id,
            tenant_id=job_create.tenant_id,
            type=job_create.type.value,
            payload=job_create.payload,
            status=JobStatus.QUEUED.value,
            attempts=0,
        )
        session.add(job)
        await session.commit()
        await session.refresh(job)
        return job

    async def get_job(
        self,
        session: AsyncSession,
        job_id: UUID,
        tenant_id: UUID | None = None,
        owner_id: UUID | None = None,
    ) -> Job | None:
        """Get job by ID with optional tenant or owner scoping."""
        query = select(Job).where(Job.id == job_id)
        if tenant_id:
            query = query.where(Job.tenant_id == tenant_id)
        if owner_id:
            query = query.where(Job.owner_id == owner_id)

        result = await session.execute(query)
        return result.scalar_one_or_none()

    async def has_active_job(
        self,
        session: AsyncSession,
        job_type: str,
        payload_key: str,
        value: Any,
    ) -> bool:
        """Check for a queued or running job of ``job_type`` whose payload
        has ``payload_key == value``."""
        result = await session.execute(
            select(func.count(Job.id)).where(
                Job.type == job_type,
                Job.status.in_(ACTIVE_STATUSES),
                Job.payload[payload_key].as_string() == str(value),
            )
        )
        return (result.scalar() or 0) > 0
