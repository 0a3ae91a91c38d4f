import uuid
from datetime import UTC, datetime
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from shrubb_jobs.config.logging import add_request_context, get_logger

logger = get_logger(__name__)


class ShrubbJobsException(Exception):
    """Base exception for the job queue.

    ``code`` is the structured identifier stored in a job's ``error`` column
    when the exception ends an attempt.
    """

    code = "PROCESSING_ERROR"

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class UnknownJobTypeError(ShrubbJobsException):
    """Raised when no handler is registered for a job type."""

    code = "UNKNOWN_JOB_TYPE"

    def __init__(self, job_type: str):
        super().__init__(
            f"Unknown job type: {job_type}",
            status.HTTP_400_BAD_REQUEST,
            {"type": job_type},
        )


class InvalidPayloadError(ShrubbJobsException):
    """Raised when a job payload does not match its type's schema."""

    code = "INVALID_PAYLOAD"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, status.HTTP_422_UNPROCESSABLE_ENTITY, details)


class TenantResolutionError(ShrubbJobsException):
    """Raised when a job cannot be attributed to any tenant."""

    code = "TENANT_UNRESOLVED"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, status.HTTP_422_UNPROCESSABLE_ENTITY, details)


class SpendingCapExceededError(ShrubbJobsException):
    """Raised by billable handlers when the estimate would exceed the cap."""

    code = "SPENDING_CAP_EXCEEDED"

    def __init__(
        self,
        message: str = "Spending cap exceeded. Please upgrade your plan or add funds.",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, status.HTTP_402_PAYMENT_REQUIRED, details)


class ProviderError(ShrubbJobsException):
    """Raised when an external provider call fails."""

    code = "PROVIDER_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, status.HTTP_502_BAD_GATEWAY, details)


class LockExpiredError(ShrubbJobsException):
    """Raised when a stale job is reclaimed after its last allowed attempt."""

    code = "LOCK_EXPIRED"

    def __init__(self, attempts: int):
        super().__init__(
            f"Lock expired after {attempts - 1} attempts",
            status.HTTP_409_CONFLICT,
            {"attempts": attempts},
        )


class NotFoundError(ShrubbJobsException):
    """Raised when a resource is not found."""

    code = "NOT_FOUND"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, status.HTTP_404_NOT_FOUND, details)


def error_code_for(exc: BaseException) -> str:
    """Structured code recorded on a job for a failed attempt."""
    if isinstance(exc, ShrubbJobsException):
        return exc.code
    return ShrubbJobsException.code


def create_error_response(
    status_code: int,
    message: str,
    details: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> dict[str, Any]:
    """Create standardized error response envelope."""
    return {
        "ok": False,
        "error": {
            "message": message,
            "code": status_code,
            "details": details or {},
        },
        "request_id": request_id,
        "timestamp": datetime.now(UTC).isoformat(),
    }


def create_success_response(
    data: Any, message: str | None = None, request_id: str | None = None
) -> dict[str, Any]:
    """Create standardized success response envelope."""
    return {
        "ok": True,
        "data": data,
        "message": message,
        "request_id": request_id,
        "timestamp": datetime.now(UTC).isoformat(),
    }


async def shrubb_jobs_exception_handler(
    request: Request, exc: ShrubbJobsException
) -> JSONResponse:
    """Handle job queue specific exceptions."""
    request_id = getattr(request.state, "request_id", str(uuid.uuid4()))

    logger.error(
        "Application exception",
        exception=exc.__class__.__name__,
        message=exc.message,
        status_code=exc.status_code,
        details=exc.details,
        request_id=request_id,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(
            status_code=exc.status_code,
            message=exc.message,
            details=exc.details,
            request_id=request_id,
        ),
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle FastAPI HTTP exceptions."""
    request_id = getattr(request.state, "request_id", str(uuid.uuid4()))

    logger.warning(
        "HTTP exception",
        status_code=exc.status_code,
        detail=exc.detail,
        request_id=request_id,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(
            status_code=exc.status_code,
            message=str(exc.detail),
            request_id=request_id,
        ),
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    request_id = getattr(request.state, "request_id", str(uuid.uuid4()))

    logger.error(
        "Unhandled exception",
        exception=exc.__class__.__name__,
        message=str(exc),
        request_id=request_id,
        exc_info=True,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=create_error_response(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            message="Internal server error",
            request_id=request_id,
        ),
    )


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Middleware to add request context and correlation IDs."""

    async def dispatch(self, request: Request, call_next):
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        add_request_context(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        return response
