"""
Worker process entry point.

Usage:
    python -m shrubb_jobs.run_worker
"""

import asyncio
import signal

from shrubb_jobs.config.logging import get_logger, setup_logging
from shrubb_jobs.config.settings import Settings, get_settings
from shrubb_jobs.infra.database import Database
from shrubb_jobs.v1.clients.ai import AIClient
from shrubb_jobs.v1.clients.twilio import TwilioClient
from shrubb_jobs.v1.infra.jobs.registry_init import build_job_registry
from shrubb_jobs.v1.infra.jobs.service import JobService
from shrubb_jobs.v1.infra.jobs.worker import JobWorker
from shrubb_jobs.v1.nudges.scheduler import NudgeScheduler

logger = get_logger(__name__)


async def run_worker(settings: Settings) -> None:
    database = Database(settings)
    ai = AIClient(settings)
    twilio = TwilioClient(settings)
    job_service = JobService(settings)

    registry = build_job_registry(settings, database, ai, twilio, job_service)
    # Freeze outside development so handlers cannot be swapped at runtime
    if settings.environment != "development":
        registry.freeze()

    worker = JobWorker(
        settings,
        database,
        registry,
        store=job_service.store,
        nudge_scheduler=NudgeScheduler(settings, database, job_service),
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, worker.stop)

    try:
        await worker.run()
    finally:
        await ai.close()
        await twilio.close()
        await database.close()


def main() -> None:
    settings = get_settings()
    setup_logging(settings)
    logger.info(
        "Worker process starting",
        worker_id=settings.worker_id,
        environment=settings.environment,
    )
    asyncio.run(run_worker(settings))


if __name__ == "__main__":
    main()
