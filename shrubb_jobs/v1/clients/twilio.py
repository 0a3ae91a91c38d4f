"""
Twilio REST client for number provisioning and outbound SMS.
"""

import re
from typing import Any

import httpx

from shrubb_jobs.config.logging import get_logger
from shrubb_jobs.config.settings import Settings
from shrubb_jobs.v1.core.exceptions import ProviderError

logger = get_logger(__name__)

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"


def area_code_of(phone_e164: str) -> str:
    """Three-digit area code of a North American E.164 number."""
    digits = re.sub(r"\D", "", phone_e164)
    return digits[1:4] if len(digits) >= 4 else ""


class TwilioClient:
    """Async Twilio REST API client authenticated with the account SID."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient | None = None):
        self.settings = settings
        self.account_sid = settings.twilio_account_sid or ""
        self._http = http_client or httpx.AsyncClient(
            base_url=TWILIO_API_BASE,
            auth=(self.account_sid, settings.twilio_auth_token or ""),
            timeout=settings.provider_timeout_s,
        )

    def _account_path(self, suffix: str) -> str:
        return f"/Accounts/{self.account_sid}/{suffix}"

    def webhook_url(self, path: str) -> str:
        base = self.settings.app_url.rstrip("/")
        return f"{base}/api/webhooks/twilio/{path}?token={self.settings.twilio_webhook_secret}"

    async def _request(
        self, action: str, method: str, path: str, **kwargs: Any
    ) -> dict[str, Any]:
        try:
            response = await self._http.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise ProviderError(f"Twilio {action} failed: {e}") from e

        if response.is_error:
            raise ProviderError(
                f"Twilio {action} failed ({response.status_code}): {response.text}",
                details={"status_code": response.status_code},
            )
        return response.json()

    async def search_available_numbers(
        self, area_code: str | None = None
    ) -> list[dict[str, Any]]:
        """Local US numbers with voice, SMS and MMS enabled."""
        params = {"VoiceEnabled": "true", "SmsEnabled": "true", "MmsEnabled": "true"}
        if area_code:
            params["AreaCode"] = area_code

        data = await self._request(
            "search",
            "GET",
            self._account_path("AvailablePhoneNumbers/US/Local.json"),
            params=params,
        )
        return data.get("available_phone_numbers") or []

    async def purchase_number(self, phone_number: str) -> dict[str, Any]:
        """Buy a number with SMS, voice and status webhooks pointed at the app."""
        form = {
            "PhoneNumber": phone_number,
            "SmsUrl": self.webhook_url("sms"),
            "SmsMethod": "POST",
            "VoiceUrl": self.webhook_url("voice"),
            "VoiceMethod": "POST",
            "StatusCallback": self.webhook_url("voice-status"),
            "StatusCallbackMethod": "POST",
        }
        return await self._request(
            "purchase", "POST", self._account_path("IncomingPhoneNumbers.json"), data=form
        )

    async def send_sms(self, from_number: str, to: str, body: str) -> str:
        """Send an SMS and return the message SID."""
        data = await self._request(
            "send",
            "POST",
            self._account_path("Messages.json"),
            data={"From": from_number, "To": to, "Body": body},
        )
        logger.info("SMS sent", to=to, message_sid=data.get("sid"))
        return data.get("sid", "")

    async def close(self) -> None:
        await self._http.aclose()
