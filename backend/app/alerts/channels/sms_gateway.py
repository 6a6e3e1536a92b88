"""
sms_gateway.py — SMS delivery channel via gateway integration.

Delivery mechanism:
    • Primary: Twilio Messages REST API over httpx (HTTP Basic auth)
    • Payload: ≤160 chars (GSM 7-bit), truncated with "..."
    • "simulation" provider logs the message and reports success

═══════════════════════════════════════════════════════════════════════════
SMS GATEWAY ARCHITECTURE
═══════════════════════════════════════════════════════════════════════════

    App  →  HTTP POST  →  Twilio  →  Carrier  →  Handset

        POST {api_base}/Accounts/{sid}/Messages.json
             To=<E.164>  From=<sender>  Body=<≤160 chars>

    Response classes:
        2xx                    → Succeeded(message sid)
        4xx                    → Failed  (bad number, unsubscribed, …)
        read timeout           → Failed  (this send only)
        5xx / connect          → ProviderUnavailableError (trips channel)

═══════════════════════════════════════════════════════════════════════════
MESSAGE TEMPLATING
═══════════════════════════════════════════════════════════════════════════

    "[HIGH] Flash Flood Warning: Hope River rising fast. Move to high ground. -JamAlert"
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from backend.app.alerts.channels.base import ProviderUnavailableError, json_field, transport_failure
from backend.app.alerts.models import (
    AttemptState,
    Channel,
    Failed,
    NotificationPayload,
    Recipient,
    Succeeded,
)

logger = logging.getLogger(__name__)

SMS_MAX_GSM7 = 160      # GSM 7-bit encoding
_SIGNATURE = " -JamAlert"


def format_sms(payload: NotificationPayload) -> str:
    """Format the SMS body within the 160-char GSM limit."""
    prefix = f"[{payload.severity.value}] {payload.title}: "
    body = payload.message

    available = SMS_MAX_GSM7 - len(prefix) - len(_SIGNATURE)
    if available < 4:
        text = f"{prefix}{body}"
        return text[: SMS_MAX_GSM7 - 3] + "..."
    if len(body) > available:
        body = body[: available - 3] + "..."
    return f"{prefix}{body}{_SIGNATURE}"


class SmsSender:
    """
    SMS channel sender.

    Usage:
        sender = SmsSender(provider="twilio", account_sid=..., auth_token=..., from_number=...)
        state = await sender.send(recipient, payload)
        await sender.aclose()
    """

    channel = Channel.SMS

    def __init__(
        self,
        *,
        provider: str = "simulation",
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        from_number: Optional[str] = None,
        api_base: str = "https://api.twilio.com/2010-04-01",
        timeout_seconds: float = 15.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.provider = provider
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.api_base = api_base.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._http_client = http_client

    @property
    def is_configured(self) -> bool:
        if self.provider == "simulation":
            return True
        return (
            self.provider == "twilio"
            and bool(self.account_sid and self.auth_token and self.from_number)
        )

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self.api_base,
                timeout=httpx.Timeout(self.timeout_seconds),
                auth=(self.account_sid or "", self.auth_token or ""),
            )
        return self._http_client

    async def send(self, recipient: Recipient, payload: NotificationPayload) -> AttemptState:
        if not recipient.phone:
            return Failed("No phone number on file")

        sms_body = format_sms(payload)

        if self.provider == "simulation":
            logger.info(
                "[SMS] Alert %s → %s (%s): %d chars → '%s'",
                payload.alert_id,
                recipient.phone,
                recipient.display_name,
                len(sms_body),
                sms_body[:80] + ("..." if len(sms_body) > 80 else ""),
            )
            return Succeeded(provider_ref=f"sim-sms-{payload.alert_id[:8]}-{recipient.id}")

        if self.provider == "twilio":
            return await self._send_twilio(recipient.phone, sms_body)

        return Failed(f"Unknown SMS provider: {self.provider}")

    async def _send_twilio(self, to: str, body: str) -> AttemptState:
        if not self.is_configured:
            raise ProviderUnavailableError(self.channel, "Twilio credentials are not configured")

        try:
            response = await self._client().post(
                f"/Accounts/{self.account_sid}/Messages.json",
                data={"To": to, "From": self.from_number, "Body": body},
            )
        except httpx.HTTPError as exc:
            return transport_failure(self.channel, exc)

        if response.status_code >= 500:
            raise ProviderUnavailableError(
                self.channel, f"Twilio returned HTTP {response.status_code}",
            )
        if response.status_code >= 400:
            detail = _error_message(response)
            logger.warning("[SMS/Twilio] Rejected %s: %s", to, detail)
            return Failed(f"Twilio rejected message: {detail}")

        return Succeeded(provider_ref=json_field(response, "sid"))

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None


def _error_message(response: httpx.Response) -> str:
    message = json_field(response, "message")
    return message or f"HTTP {response.status_code}"
