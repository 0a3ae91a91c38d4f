"""
Periodic scan that turns due proposal nudges into send jobs.
"""

import time
from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shrubb_jobs.config.logging import get_logger
from shrubb_jobs.config.settings import Settings
from shrubb_jobs.infra.database import STORE_ERRORS, Database
from shrubb_jobs.v1.domain.models import CompanyMember, NudgeStatus, Proposal, ProposalNudge
from shrubb_jobs.v1.infra.jobs.models import JobType
from shrubb_jobs.v1.infra.jobs.schemas import JobCreate
from shrubb_jobs.v1.infra.jobs.service import JobService
from shrubb_jobs.v1.infra.jobs.store import JobStore
from shrubb_jobs.v1.nudges.rules import cancel_nudge, nudge_target

logger = get_logger(__name__)


@dataclass
class NudgeScanResult:
    """Counts from one scan."""

    due: int = 0
    enqueued: int = 0
    cancelled: int = 0
    skipped: int = 0


class NudgeScheduler:
    """
    Enqueues ``send_proposal_nudge`` jobs for pending nudges that are due.

    The worker calls ``run_if_due`` on every tick; a scan happens at most
    once per ``nudge_interval_s``.
    """

    def __init__(
        self,
        settings: Settings,
        database: Database,
        job_service: JobService,
        store: JobStore | None = None,
    ):
        self.settings = settings
        self.database = database
        self.job_service = job_service
        self.store = store or job_service.store
        self._last_run: float | None = None

    def is_due(self, now: float) -> bool:
        if self._last_run is None:
            return True
        return now - self._last_run >= self.settings.nudge_interval_s

    async def run_if_due(self, now: float | None = None) -> NudgeScanResult | None:
        """Scan when the interval has elapsed; store errors are logged."""
        now = time.monotonic() if now is None else now
        if not self.is_due(now):
            return None
        self._last_run = now

        try:
            return await self.scan_and_enqueue()
        except STORE_ERRORS as e:
            logger.error("Nudge scan failed", error=str(e))
            return None

    async def scan_and_enqueue(self, now: datetime | None = None) -> NudgeScanResult:
        now = now or datetime.now(UTC)
        scan = NudgeScanResult()

        async with self.database.session() as session:
            result = await session.execute(
                select(ProposalNudge.id)
                .where(
                    ProposalNudge.status == NudgeStatus.PENDING.value,
                    ProposalNudge.scheduled_at <= now,
                )
                .order_by(ProposalNudge.scheduled_at)
                .limit(self.settings.nudge_batch_size)
            )
            nudge_ids = list(result.scalars().all())
        scan.due = len(nudge_ids)

        for nudge_id in nudge_ids:
            # One transaction per nudge; the row lock is held until its job commits
            async with self.database.session() as session:
                nudge = await self._lock_pending_nudge(session, nudge_id)
                if nudge is None:
                    scan.skipped += 1
                    continue
                await self._handle_due_nudge(session, nudge, scan)

        if scan.due:
            logger.info(
                "Nudge scan completed",
                due=scan.due,
                enqueued=scan.enqueued,
                cancelled=scan.cancelled,
                skipped=scan.skipped,
            )
        return scan

    async def _handle_due_nudge(
        self, session: AsyncSession, nudge: ProposalNudge, scan: NudgeScanResult
    ) -> None:
        proposal = await session.get(Proposal, nudge.proposal_id)

        target, reason = await nudge_target(session, proposal)
        if target is None:
            cancel_nudge(nudge)
            await session.commit()
            scan.cancelled += 1
            logger.info("Nudge cancelled", nudge_id=str(nudge.id), reason=reason)
            return

        if await self.store.has_active_job(
            session, JobType.SEND_PROPOSAL_NUDGE.value, "nudge_id", nudge.id
        ):
            scan.skipped += 1
            return

        owner_id = proposal.created_by or await self._first_member(
            session, nudge.company_id
        )
        if owner_id is None:
            scan.skipped += 1
            logger.warning("Nudge company has no members", nudge_id=str(nudge.id))
            return

        await self.job_service.enqueue_job(
            session,
            JobCreate(
                type=JobType.SEND_PROPOSAL_NUDGE,
                owner_id=owner_id,
                tenant_id=nudge.company_id,
                payload={"nudge_id": str(nudge.id), "proposal_id": str(proposal.id)},
            ),
        )
        scan.enqueued += 1

    @staticmethod
    async def _lock_pending_nudge(
        session: AsyncSession, nudge_id: UUID
    ) -> ProposalNudge | None:
        """Lock the nudge row, or None if another worker holds it or it moved on."""
        result = await session.execute(
            select(ProposalNudge)
            .where(
                ProposalNudge.id == nudge_id,
                ProposalNudge.status == NudgeStatus.PENDING.value,
            )
            .with_for_update(skip_locked=True)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def _first_member(session: AsyncSession, company_id: UUID) -> UUID | None:
        result = await session.execute(
            select(CompanyMember.user_id)
            .where(CompanyMember.company_id == company_id)
            .order_by(CompanyMember.created_at, CompanyMember.id)
            .limit(1)
        )
        return result.scalar_one_or_none()
