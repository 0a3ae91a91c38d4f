"""
Phone provisioning handler: buys a local Twilio number for a company.
"""

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shrubb_jobs.config.logging import get_logger
from shrubb_jobs.config.settings import Settings
from shrubb_jobs.v1.clients.twilio import TwilioClient, area_code_of
from shrubb_jobs.v1.core.exceptions import ProviderError
from shrubb_jobs.v1.domain.models import CompanySettings, PhoneNumber
from shrubb_jobs.v1.infra.jobs.schemas import ProvisionPhonePayload
from shrubb_jobs.v1.nudges.rules import active_phone_number

logger = get_logger(__name__)


class ProvisionPhoneHandler:
    """
    Job handler for tenant phone numbers.

    Idempotent per company: a tenant that already has an active number gets
    it back without a purchase, so a retried job never buys twice once the
    first purchase was stored.
    """

    payload_model = ProvisionPhonePayload

    def __init__(self, settings: Settings, twilio: TwilioClient):
        self.settings = settings
        self.twilio = twilio

    async def handle(
        self, session: AsyncSession, ctx, payload: ProvisionPhonePayload
    ) -> dict[str, Any]:
        existing = await active_phone_number(session, ctx.tenant_id)
        if existing is not None:
            return {"phone_e164": existing.phone_e164, "already_provisioned": True}

        available = await self.twilio.search_available_numbers(payload.area_code)
        if not available:
            raise ProviderError(
                f"No available phone numbers for area code: {payload.area_code or 'any'}"
            )

        purchased = await self.twilio.purchase_number(available[0]["phone_number"])
        phone_e164 = purchased["phone_number"]
        area_code = area_code_of(phone_e164)

        session.add(
            PhoneNumber(
                account_id=ctx.tenant_id,
                provider="twilio",
                phone_e164=phone_e164,
                area_code=area_code,
                status="active",
            )
        )

        settings_result = await session.execute(
            select(CompanySettings.id).where(CompanySettings.company_id == ctx.tenant_id)
        )
        if settings_result.scalar_one_or_none() is None:
            session.add(CompanySettings(company_id=ctx.tenant_id))

        await session.commit()

        logger.info(
            "Phone number provisioned",
            phone_e164=phone_e164,
            tenant_id=str(ctx.tenant_id),
        )

        return {
            "phone_e164": phone_e164,
            "twilio_sid": purchased.get("sid"),
            "area_code": area_code,
        }
