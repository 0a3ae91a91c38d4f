from dataclasses import dataclass
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status


@dataclass
class Caller:
    """Internal service calling the ops API on behalf of a user."""

    user_id: UUID
    tenant_id: UUID | None = None


def _parse_uuid(value: str, header: str) -> UUID:
    try:
        return UUID(value)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{header} header must be a UUID",
        )


async def get_caller(
    x_user_id: str | None = Header(None, alias="X-User-ID"),
    x_tenant_id: str | None = Header(None, alias="X-Tenant-ID"),
) -> Caller:
    """
    Dependency injection function to get the calling identity.

    The ops API sits behind the web app, which has already authenticated the
    user; the headers are trusted as-is.
    """
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-User-ID header is required",
        )

    return Caller(
        user_id=_parse_uuid(x_user_id, "X-User-ID"),
        tenant_id=_parse_uuid(x_tenant_id, "X-Tenant-ID") if x_tenant_id else None,
    )


# Convenience type alias for dependency injection
CallerDep = Depends(get_caller)
