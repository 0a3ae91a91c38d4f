"""
Tenant attribution for claimed jobs.
"""

from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shrubb_jobs.config.logging import get_logger
from shrubb_jobs.v1.core.exceptions import TenantResolutionError
from shrubb_jobs.v1.domain.models import CompanyMember, Project
from shrubb_jobs.v1.infra.jobs.models import Job

logger = get_logger(__name__)


def _payload_uuid(payload: dict[str, Any] | None, key: str) -> UUID | None:
    value = (payload or {}).get(key)
    if not value:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        return None


async def resolve_tenant_id(session: AsyncSession, job: Job) -> UUID:
    """
    Work out which company a job is billed to.

    Resolution order:
    1. the job's own ``tenant_id``
    2. the company owning the payload's ``project_id``
    3. the owner's earliest company membership

    Raises:
        TenantResolutionError: none of the above yields a company
    """
    if job.tenant_id is not None:
        return job.tenant_id

    project_id = _payload_uuid(job.payload, "project_id")
    if project_id is not None:
        result = await session.execute(
            select(Project.company_id).where(Project.id == project_id)
        )
        company_id = result.scalar_one_or_none()
        if company_id is not None:
            logger.debug(
                "Tenant resolved from project",
                project_id=str(project_id),
                tenant_id=str(company_id),
            )
            return company_id

    result = await session.execute(
        select(CompanyMember.company_id)
        .where(CompanyMember.user_id == job.owner_id)
        .order_by(CompanyMember.created_at, CompanyMember.id)
        .limit(1)
    )
    company_id = result.scalar_one_or_none()
    if company_id is not None:
        logger.debug(
            "Tenant resolved from membership",
            owner_id=str(job.owner_id),
            tenant_id=str(company_id),
        )
        return company_id

    raise TenantResolutionError(
        f"Could not resolve tenant for job {job.id}",
        details={"owner_id": str(job.owner_id)},
    )
