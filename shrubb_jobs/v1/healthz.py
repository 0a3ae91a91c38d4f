from datetime import UTC, datetime, timedelta

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from shrubb_jobs.config.logging import get_logger
from shrubb_jobs.config.settings import Settings, SettingsDep
from shrubb_jobs.infra.database import STORE_ERRORS, get_session
from shrubb_jobs.v1.core.exceptions import create_success_response
from shrubb_jobs.v1.infra.jobs.models import ACTIVE_STATUSES, Job, JobStatus

logger = get_logger(__name__)
router = APIRouter()


class DatabaseHealth(BaseModel):
    """Database health status."""

    connected: bool
    response_time_ms: float | None = None
    error: str | None = None


class WorkerHealth(BaseModel):
    """Worker health status derived from the job table."""

    active_workers: int
    stale_jobs_count: int = 0
    queue_depth: int = 0


@router.get("/healthz", response_model=dict)
async def health_check(
    settings: Settings = SettingsDep, session: AsyncSession = Depends(get_session)
):
    """Health check endpoint with database and worker status."""

    timestamp = datetime.now(UTC).isoformat()

    db_health = await _check_database_health(session)

    worker_health = None
    if db_health.connected:
        try:
            worker_health = await _check_worker_health(session, settings)
        except STORE_ERRORS as e:
            # Queue stats are informational; only connectivity decides ok
            logger.warning("Worker health check failed", error=str(e))

    health_data = {
        "ok": db_health.connected,
        "version": settings.version,
        "environment": settings.environment,
        "timestamp": timestamp,
        "database": db_health.model_dump(),
        "worker": worker_health.model_dump() if worker_health else None,
    }

    return create_success_response(data=health_data)


async def _check_database_health(session: AsyncSession) -> DatabaseHealth:
    """Check database connectivity and response time."""
    start_time = datetime.now(UTC)

    try:
        await session.execute(text("SELECT 1"))

        response_time_ms = (datetime.now(UTC) - start_time).total_seconds() * 1000
        return DatabaseHealth(
            connected=True, response_time_ms=round(response_time_ms, 2)
        )

    except STORE_ERRORS as e:
        await session.rollback()
        return DatabaseHealth(connected=False, error=str(e))


async def _check_worker_health(
    session: AsyncSession, settings: Settings
) -> WorkerHealth:
    """Count workers holding fresh locks, stale locks and queue depth."""
    stale_cutoff = datetime.now(UTC) - timedelta(seconds=settings.job_lock_timeout_s)

    active_workers_result = await session.execute(
        select(func.count(func.distinct(Job.locked_by))).where(
            Job.status == JobStatus.RUNNING.value, Job.locked_at >= stale_cutoff
        )
    )

    stale_jobs_result = await session.execute(
        select(func.count(Job.id)).where(
            Job.status == JobStatus.RUNNING.value, Job.locked_at < stale_cutoff
        )
    )

    queue_depth_result = await session.execute(
        select(func.count(Job.id)).where(Job.status.in_(ACTIVE_STATUSES))
    )

    return WorkerHealth(
        active_workers=active_workers_result.scalar() or 0,
        stale_jobs_count=stale_jobs_result.scalar() or 0,
        queue_depth=queue_depth_result.scalar() or 0,
    )
