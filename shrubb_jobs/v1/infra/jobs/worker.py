"""
Postgres-backed job worker.

Each process runs one loop that claims a single job at a time, dispatches
it to its registered handler and records the outcome. Any number of worker
processes may poll the same table; the atomic claim keeps them from ever
running the same job concurrently.
"""

import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any
from uuid import UUID

from shrubb_jobs.config.logging import bind_job_context, clear_job_context, get_logger
from shrubb_jobs.config.settings import Settings
from shrubb_jobs.infra.database import STORE_ERRORS, Database
from shrubb_jobs.v1.core.exceptions import (
    LockExpiredError,
    UnknownJobTypeError,
    error_code_for,
)
from shrubb_jobs.v1.core.registries import JobRegistry
from shrubb_jobs.v1.infra.jobs.models import Job, JobStatus
from shrubb_jobs.v1.infra.jobs.schemas import parse_payload
from shrubb_jobs.v1.infra.jobs.store import JobStore
from shrubb_jobs.v1.infra.jobs.tenancy import resolve_tenant_id

if TYPE_CHECKING:
    from shrubb_jobs.v1.nudges.scheduler import NudgeScheduler

logger = get_logger(__name__)

_JOB_CONTEXT_KEYS = ("worker_id", "job_id", "job_type")


@dataclass(frozen=True)
class JobContext:
    """Attribution handed to a handler alongside its payload."""

    job_id: UUID
    job_type: str
    owner_id: UUID
    tenant_id: UUID
    attempt: int


class JobWorker:
    """
    Single-job-at-a-time worker.

    Features:
    - Atomic claim of the oldest queued or stale job
    - Immediate retries until the attempt budget is spent
    - Unknown job types failed on first claim
    - Completion writes guarded by lock ownership
    - Optional nudge scheduler ticked from the same loop
    """

    def __init__(
        self,
        settings: Settings,
        database: Database,
        registry: JobRegistry,
        store: JobStore | None = None,
        nudge_scheduler: "NudgeScheduler | None" = None,
    ):
        self.settings = settings
        self.database = database
        self.registry = registry
        self.store = store or JobStore()
        self.nudge_scheduler = nudge_scheduler
        self.worker_id = settings.worker_id
        self.running = False
        self._stop_event = asyncio.Event()

    async def run(self) -> None:
        """Poll until ``stop()`` is called."""
        if self.running:
            raise RuntimeError("Worker is already running")

        self.running = True
        self._stop_event.clear()
        logger.info(
            "Starting job worker",
            worker_id=self.worker_id,
            poll_interval_ms=self.settings.job_poll_interval_ms,
            max_attempts=self.settings.job_max_attempts,
            lock_timeout_s=self.settings.job_lock_timeout_s,
            handlers=self.registry.list(),
        )

        try:
            while self.running:
                try:
                    await self.run_once()
                except Exception:
                    logger.exception("Error in worker loop", worker_id=self.worker_id)

                try:
                    await asyncio.wait_for(
                        self._stop_event.wait(), timeout=self.settings.poll_interval_s
                    )
                except TimeoutError:
                    pass
        finally:
            self.running = False
            logger.info("Job worker stopped", worker_id=self.worker_id)

    def stop(self) -> None:
        """Ask the loop to exit once the current job has been resolved."""
        logger.info("Stopping job worker", worker_id=self.worker_id)
        self.running = False
        self._stop_event.set()

    async def run_once(self) -> Job | None:
        """One loop tick: nudge scan when due, then at most one job."""
        if self.nudge_scheduler is not None:
            await self.nudge_scheduler.run_if_due()
        return await self.poll_once()

    async def poll_once(self) -> Job | None:
        """
        Claim and process at most one job.

        Returns:
            The job as claimed, or None when nothing was eligible or the
            claim itself failed
        """
        cutoff = datetime.now(UTC) - timedelta(seconds=self.settings.job_lock_timeout_s)

        try:
            async with self.database.session() as session:
                job = await self.store.claim_next_eligible_job(
                    session, self.worker_id, cutoff
                )
        except STORE_ERRORS as e:
            logger.error("Failed to claim job", worker_id=self.worker_id, error=str(e))
            return None

        if job is None:
            return None

        bind_job_context(worker_id=self.worker_id, job_id=str(job.id), job_type=job.type)
        try:
            await self._process_job(job)
        except STORE_ERRORS as e:
            logger.error("Failed to record job outcome", error=str(e))
        finally:
            clear_job_context(*_JOB_CONTEXT_KEYS)

        return job

    async def _process_job(self, job: Job) -> None:
        logger.info("Processing job started", attempt=job.attempts)

        if not self.registry.has(job.type):
            await self._record_failure(job, UnknownJobTypeError(job.type), terminal=True)
            return

        # Claim increments attempts, so a stale reclaim can exceed the budget
        if job.attempts > self.settings.job_max_attempts:
            await self._record_failure(job, LockExpiredError(job.attempts), terminal=True)
            return

        handler = self.registry.get(job.type)

        try:
            payload = parse_payload(job.type, job.payload, handler.payload_model)

            async with self.database.session() as session:
                tenant_id = await resolve_tenant_id(session, job)
                if job.tenant_id is None:
                    if not await self.store.update_job(
                        session, job.id, {"tenant_id": tenant_id}, owned_by=self.worker_id
                    ):
                        logger.warning("Lost lock before running handler")
                        return
                    job.tenant_id = tenant_id

                ctx = JobContext(
                    job_id=job.id,
                    job_type=job.type,
                    owner_id=job.owner_id,
                    tenant_id=tenant_id,
                    attempt=job.attempts,
                )
                result = await handler.handle(session, ctx, payload)
        except Exception as e:
            await self._record_failure(job, e)
            return

        await self._record_success(job, result)

    async def _record_success(self, job: Job, result: dict[str, Any] | None) -> None:
        async with self.database.session() as session:
            updated = await self.store.update_job(
                session,
                job.id,
                {
                    "status": JobStatus.SUCCEEDED.value,
                    "result": result or {},
                    "locked_at": None,
                    "locked_by": None,
                },
                owned_by=self.worker_id,
            )

        if not updated:
            logger.warning("Lost lock before recording success")
            return

        logger.info("Processing job completed successfully", attempt=job.attempts)

    async def _record_failure(
        self, job: Job, exc: Exception, terminal: bool = False
    ) -> None:
        exhausted = terminal or job.is_exhausted(self.settings.job_max_attempts)
        status = JobStatus.FAILED if exhausted else JobStatus.QUEUED
        error = {
            "code": error_code_for(exc),
            "message": str(exc),
            "attempt": job.attempts,
        }

        async with self.database.session() as session:
            updated = await self.store.update_job(
                session,
                job.id,
                {
                    "status": status.value,
                    "error": error,
                    "locked_at": None,
                    "locked_by": None,
                },
                owned_by=self.worker_id,
            )

        if not updated:
            logger.warning("Lost lock before recording failure", error=error)
            return

        if exhausted:
            logger.error(
                "Job failed permanently",
                attempt=job.attempts,
                error_code=error["code"],
                error=error["message"],
                exc_info=exc,
            )
        else:
            logger.warning(
                "Job attempt failed, requeued",
                attempt=job.attempts,
                max_attempts=self.settings.job_max_attempts,
                error_code=error["code"],
                error=error["message"],
            )
