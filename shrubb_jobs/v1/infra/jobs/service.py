"""
Job service for enqueueing and inspecting background jobs.
"""

from datetime import UTC, datetime, timedelta

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from shrubb_jobs.config.logging import get_logger
from shrubb_jobs.config.settings import Settings
from shrubb_jobs.infra.database import STORE_ERRORS
from shrubb_jobs.v1.core.exceptions import ShrubbJobsException
from shrubb_jobs.v1.infra.jobs.models import Job, JobStatus
from shrubb_jobs.v1.infra.jobs.schemas import JobCreate, JobStatsResponse, parse_payload
from shrubb_jobs.v1.infra.jobs.store import JobStore

logger = get_logger(__name__)


class JobService:
    """Service for producers of background jobs."""

    def __init__(self, settings: Settings, store: JobStore | None = None):
        self.settings = settings
        self.store = store or JobStore()

    async def enqueue_job(self, session: AsyncSession, job_create: JobCreate) -> Job:
        """
        Validate and insert a new job.

        The payload is checked against its type's schema here as well as at
        dispatch, so producers learn about a malformed payload immediately.

        Raises:
            InvalidPayloadError: payload does not match the job type's schema
        """
        parse_payload(job_create.type.value, job_create.payload)

        job = await self.store.insert_job(session, job_create)

        logger.info(
            "Job enqueued",
            job_id=str(job.id),
            type=job.type,
            owner_id=str(job.owner_id),
            tenant_id=str(job.tenant_id) if job.tenant_id else None,
        )
        return job

    async def enqueue_follow_on(
        self, session: AsyncSession, job_create: JobCreate
    ) -> Job | None:
        """
        Best-effort enqueue of a follow-on job from inside a handler.

        Never raises: the parent job's result does not depend on the
        follow-on, and a failure here is not retried. The caller's session is
        left usable.
        """
        try:
            return await self.enqueue_job(session, job_create)
        except STORE_ERRORS as e:
            await session.rollback()
            logger.error(
                "Failed to enqueue follow-on job",
                type=job_create.type.value,
                error=str(e),
            )
        except ShrubbJobsException as e:
            logger.error(
                "Rejected follow-on job payload",
                type=job_create.type.value,
                error=str(e),
            )
        return None

    async def get_job_stats(self, session: AsyncSession) -> JobStatsResponse:
        """Get job statistics across all tenants."""
        status_result = await session.execute(
            select(Job.status, func.count(Job.id)).group_by(Job.status)
        )
        by_status = dict(status_result.all())

        type_result = await session.execute(
            select(Job.type, func.count(Job.id)).group_by(Job.type)
        )
        by_type = dict(type_result.all())

        cutoff = datetime.now(UTC) - timedelta(seconds=self.settings.job_lock_timeout_s)
        stale_result = await session.execute(
            select(func.count(Job.id)).where(
                and_(
                    Job.status == JobStatus.RUNNING.value,
                    Job.locked_at < cutoff,
                )
            )
        )

        queue_depth = by_status.get(JobStatus.QUEUED.value, 0) + by_status.get(
            JobStatus.RUNNING.value, 0
        )

        return JobStatsResponse(
            total_jobs=sum(by_status.values()),
            by_status=by_status,
            by_type=by_type,
            queue_depth=queue_depth,
            stale_running=stale_result.scalar() or 0,
        )
