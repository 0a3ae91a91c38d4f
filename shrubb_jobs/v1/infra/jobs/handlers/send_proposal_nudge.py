"""
Proposal nudge handler: texts a client who has not answered a proposal.
"""

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from shrubb_jobs.config.logging import get_logger
from shrubb_jobs.config.settings import Settings
from shrubb_jobs.v1.clients.twilio import TwilioClient
from shrubb_jobs.v1.core.exceptions import NotFoundError
from shrubb_jobs.v1.domain.models import Company, NudgeStatus, Proposal, ProposalNudge
from shrubb_jobs.v1.infra.jobs.schemas import SendProposalNudgePayload
from shrubb_jobs.v1.nudges.rules import cancel_nudge, mark_sent, nudge_message, nudge_target

logger = get_logger(__name__)


class SendProposalNudgeHandler:
    """Re-checks eligibility, sends the SMS and marks the nudge sent."""

    payload_model = SendProposalNudgePayload

    def __init__(self, settings: Settings, twilio: TwilioClient):
        self.settings = settings
        self.twilio = twilio

    async def handle(
        self, session: AsyncSession, ctx, payload: SendProposalNudgePayload
    ) -> dict[str, Any]:
        nudge = await session.get(ProposalNudge, payload.nudge_id)
        if nudge is None:
            raise NotFoundError(f"Nudge {payload.nudge_id} not found")

        if nudge.status != NudgeStatus.PENDING.value:
            return {"skipped": True, "reason": f"Nudge status is {nudge.status}"}

        proposal = await session.get(Proposal, payload.proposal_id)
        if proposal is None:
            raise NotFoundError(f"Proposal {payload.proposal_id} not found")

        target, reason = await nudge_target(session, proposal)
        if target is None:
            cancel_nudge(nudge)
            await session.commit()
            logger.info("Nudge cancelled", nudge_id=str(nudge.id), reason=reason)
            return {"skipped": True, "reason": reason}

        company = await session.get(Company, proposal.company_id)
        body = nudge_message(
            nudge.nudge_number,
            target.client.name,
            company.name if company else None,
        )

        await self.twilio.send_sms(target.from_number, target.client.phone, body)

        mark_sent(nudge)
        await session.commit()

        logger.info(
            "Nudge sent",
            nudge_id=str(nudge.id),
            proposal_id=str(proposal.id),
            nudge_number=nudge.nudge_number,
        )

        return {"sent": True, "nudge_number": nudge.nudge_number}
