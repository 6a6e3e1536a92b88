"""
web_push.py — Push notification channel.

Delivery mechanism:
    • JSON POST to a push gateway (notification hub / FCM relay)
    • Payload: title, body, data {alertId, type, severity, parishes}
    • "simulation" provider logs the notification and reports success

Limitations:
    - Requires the device to have registered a push token
    - Tokens expire; the gateway answers 404/410 for stale ones
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

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


def build_notification(payload: NotificationPayload, token: str) -> Dict[str, Any]:
    return {
        "token": token,
        "notification": {
            "title": payload.title,
            "body": payload.message,
        },
        "data": {
            "alertId": payload.alert_id,
            "type": payload.alert_type.value,
            "severity": payload.severity.value,
            "parishes": [p.value for p in payload.parishes],
        },
        "priority": "high" if payload.severity.value == "HIGH" else "normal",
    }


class PushSender:
    """Push channel sender backed by an HTTP gateway."""

    channel = Channel.PUSH

    def __init__(
        self,
        *,
        provider: str = "simulation",
        gateway_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout_seconds: float = 10.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.provider = provider
        self.gateway_url = gateway_url
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self._http_client = http_client

    @property
    def is_configured(self) -> bool:
        if self.provider == "simulation":
            return True
        return self.provider == "gateway" and bool(self.gateway_url)

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_seconds),
                headers=headers,
            )
        return self._http_client

    async def send(self, recipient: Recipient, payload: NotificationPayload) -> AttemptState:
        # ── Token validation ──
        if not recipient.push_token:
            return Failed("No push token registered")

        notification = build_notification(payload, recipient.push_token)

        if self.provider == "simulation":
            logger.info(
                "[PUSH] Alert %s → user %s: '%s'",
                payload.alert_id, recipient.id, payload.title,
            )
            return Succeeded(provider_ref=f"sim-push-{payload.alert_id[:8]}-{recipient.id}")

        if self.provider == "gateway":
            return await self._send_gateway(notification)

        return Failed(f"Unknown push provider: {self.provider}")

    async def _send_gateway(self, notification: Dict[str, Any]) -> AttemptState:
        if not self.gateway_url:
            raise ProviderUnavailableError(self.channel, "Push gateway URL is not configured")

        try:
            response = await self._client().post(self.gateway_url, json=notification)
        except httpx.HTTPError as exc:
            return transport_failure(self.channel, exc)

        if response.status_code >= 500:
            raise ProviderUnavailableError(
                self.channel, f"Push gateway returned HTTP {response.status_code}",
            )
        if response.status_code in (404, 410):
            return Failed("Push token expired or unregistered")
        if response.status_code >= 400:
            return Failed(f"Push gateway rejected notification: HTTP {response.status_code}")

        return Succeeded(provider_ref=json_field(response, "id"))

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
