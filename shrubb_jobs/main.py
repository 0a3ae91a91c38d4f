from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from shrubb_jobs.config.logging import get_logger, setup_logging
from shrubb_jobs.config.settings import Settings, settings as default_settings
from shrubb_jobs.infra.database import close_database
from shrubb_jobs.v1.core.exceptions import (
    RequestContextMiddleware,
    ShrubbJobsException,
    general_exception_handler,
    http_exception_handler,
    shrubb_jobs_exception_handler,
)
from shrubb_jobs.v1.healthz import router as health_router
from shrubb_jobs.v1.infra.jobs.routes import router as jobs_router

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info("Ops API started", version=app.version)
    yield
    await close_database()


def create_app(settings: Settings | None = None) -> FastAPI:
    """
    Create the ops FastAPI application.

    The app only enqueues and inspects jobs; handlers run in worker
    processes started with ``shrubb-worker``.
    """
    settings = settings or default_settings
    setup_logging(settings)

    app = FastAPI(
        title=settings.app_name,
        description="Background job queue for the Shrubb platform",
        version=settings.version,
        debug=settings.debug,
        lifespan=lifespan,
        # Docs only in debug; all endpoints live under /v1/
        openapi_url="/v1/openapi.json" if settings.debug else None,
        docs_url="/v1/docs" if settings.debug else None,
        redoc_url=None,
    )

    app.add_middleware(RequestContextMiddleware)

    # The web app calls this API server-side; CORS only matters for local tooling
    if settings.debug:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["GET", "POST"],
            allow_headers=["*"],
        )

    app.add_exception_handler(ShrubbJobsException, shrubb_jobs_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(health_router, prefix="/v1", tags=["health"])
    app.include_router(jobs_router, prefix="/v1")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "shrubb_jobs.main:app",
        host=default_settings.host,
        port=default_settings.port,
        reload=default_settings.debug,
    )
