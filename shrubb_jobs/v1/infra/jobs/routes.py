"""
Job API endpoints.

Producer and monitoring surface for the job queue; handlers only ever run
inside worker processes.
"""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from shrubb_jobs.config.logging import get_logger
from shrubb_jobs.config.settings import Settings, SettingsDep
from shrubb_jobs.infra.database import get_session
from shrubb_jobs.v1.core.exceptions import (
    NotFoundError,
    UnknownJobTypeError,
    create_success_response,
)
from shrubb_jobs.v1.core.security import Caller, CallerDep
from shrubb_jobs.v1.infra.jobs.models import JobType
from shrubb_jobs.v1.infra.jobs.schemas import (
    JobCreate,
    JobEnqueueRequest,
    JobEnqueueResponse,
    JobResponse,
)
from shrubb_jobs.v1.infra.jobs.service import JobService

logger = get_logger(__name__)
router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.post("", response_model=dict, status_code=status.HTTP_201_CREATED)
async def enqueue_job(
    job_request: JobEnqueueRequest,
    caller: Caller = CallerDep,
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Enqueue a new background job."""
    try:
        job_type = JobType(job_request.type)
    except ValueError:
        raise UnknownJobTypeError(job_request.type)

    job_service = JobService(settings)
    job = await job_service.enqueue_job(
        session,
        JobCreate(
            type=job_type,
            owner_id=caller.user_id,
            tenant_id=caller.tenant_id,
            payload=job_request.payload,
        ),
    )

    logger.info(
        "Job enqueued via API",
        job_id=str(job.id),
        type=job.type,
        owner_id=str(caller.user_id),
    )

    response = JobEnqueueResponse(job_id=job.id, type=job.type, status=job.status)
    return create_success_response(data=response.model_dump(mode="json"))


@router.get("/stats", response_model=dict)
async def get_job_stats(
    caller: Caller = CallerDep,
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Get queue statistics."""
    job_service = JobService(settings)
    stats = await job_service.get_job_stats(session)

    return create_success_response(data=stats.model_dump())


@router.get("/{job_id}", response_model=dict)
async def get_job(
    job_id: UUID,
    caller: Caller = CallerDep,
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Get a specific job by ID, scoped to the caller's tenant or ownership."""
    job_service = JobService(settings)
    if caller.tenant_id:
        job = await job_service.store.get_job(session, job_id, tenant_id=caller.tenant_id)
    else:
        job = await job_service.store.get_job(session, job_id, owner_id=caller.user_id)

    if not job:
        raise NotFoundError("Job not found", details={"job_id": str(job_id)})

    job_data = JobResponse.model_validate(job)
    return create_success_response(data=job_data.model_dump(mode="json"))
