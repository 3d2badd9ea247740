"""Outbound SMS delivery through the Twilio Messages API."""

from __future__ import annotations

import logging

import httpx
from pydantic import BaseModel

from enclave.core.config import (
    ENCLAVE_TWILIO_ACCOUNT_SID,
    ENCLAVE_TWILIO_AUTH_TOKEN,
    ENCLAVE_TWILIO_FROM,
)

logger = logging.getLogger("enclave.sms.sender")

_TWILIO_API = "https://api.twilio.com/2010-04-01"


class SendReceipt(BaseModel):
    accepted: bool
    sid: str | None = None
    error: str | None = None


def to_e164(phone: str) -> str:
    """Normalized 10-digit US numbers become +1XXXXXXXXXX; anything else passes through."""
    if phone.startswith("+"):
        return phone
    return f"+1{phone}" if len(phone) == 10 else f"+{phone}"


class TwilioSender:
    """Send one SMS per call. Never raises; failures come back as a rejected receipt."""

    def __init__(
        self,
        account_sid: str = ENCLAVE_TWILIO_ACCOUNT_SID,
        auth_token: str = ENCLAVE_TWILIO_AUTH_TOKEN,
        from_number: str = ENCLAVE_TWILIO_FROM,
        *,
        timeout: float = 10.0,
    ) -> None:
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.timeout = timeout

    async def send(self, phone: str, body: str) -> SendReceipt:
        if not (self.account_sid and self.auth_token and self.from_number):
            return SendReceipt(accepted=False, error="Twilio credentials not configured")
        url = f"{_TWILIO_API}/Accounts/{self.account_sid}/Messages.json"
        data = {"To": to_e164(phone), "From": self.from_number, "Body": body}
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                r = await client.post(url, data=data, auth=(self.account_sid, self.auth_token))
                r.raise_for_status()
                payload = r.json()
        except httpx.HTTPError as exc:
            logger.warning("Twilio send to %s failed: %s", phone, exc)
            return SendReceipt(accepted=False, error=str(exc))
        except ValueError as exc:
            logger.warning("Twilio returned invalid JSON for %s: %s", phone, exc)
            return SendReceipt(accepted=False, error=str(exc))
        return SendReceipt(accepted=True, sid=payload.get("sid"))
