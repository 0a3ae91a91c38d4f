"""
Conditions a proposal nudge must meet to be sent.

The scheduler checks them before enqueueing and the send handler checks
them again at send time, since the proposal can change in between.
"""

from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shrubb_jobs.v1.domain.models import (
    CLOSED_PROPOSAL_STATUSES,
    Client,
    NudgeStatus,
    PhoneNumber,
    Proposal,
    ProposalNudge,
)


@dataclass(frozen=True)
class NudgeTarget:
    """Where an eligible nudge goes and which number it is sent from."""

    client: Client
    from_number: str


async def active_phone_number(
    session: AsyncSession, company_id
) -> PhoneNumber | None:
    result = await session.execute(
        select(PhoneNumber)
        .where(PhoneNumber.account_id == company_id, PhoneNumber.status == "active")
        .order_by(PhoneNumber.purchased_at)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def nudge_target(
    session: AsyncSession, proposal: Proposal | None
) -> tuple[NudgeTarget | None, str | None]:
    """
    Return ``(target, None)`` for a sendable nudge, else ``(None, reason)``.
    """
    if proposal is None:
        return None, "Proposal not found"
    if proposal.status in CLOSED_PROPOSAL_STATUSES:
        return None, f"Proposal already {proposal.status}"

    client = await session.get(Client, proposal.client_id)
    if client is None or not client.phone:
        return None, "Client has no phone number"

    phone = await active_phone_number(session, proposal.company_id)
    if phone is None:
        return None, "No active phone number for company"

    return NudgeTarget(client=client, from_number=phone.phone_e164), None


def cancel_nudge(nudge: ProposalNudge) -> None:
    nudge.status = NudgeStatus.CANCELLED.value


def mark_sent(nudge: ProposalNudge, now: datetime | None = None) -> None:
    nudge.status = NudgeStatus.SENT.value
    nudge.sent_at = now or datetime.now(UTC)


def nudge_message(nudge_number: int, client_name: str | None, company_name: str | None) -> str:
    first_name = (client_name or "").split(" ")[0] or "there"
    company = company_name or "our team"
    if nudge_number == 1:
        return (
            f"Hi {first_name}, just checking in on the landscape proposal we sent "
            f"from {company}. Do you have any questions? We'd love to help you get "
            "started. Reply to chat or call us anytime."
        )
    return (
        f"Hi {first_name}, wanted to follow up one more time on your landscape "
        f"proposal from {company}. We're here if you have questions or want to "
        "make any changes. Just reply to this text."
    )
