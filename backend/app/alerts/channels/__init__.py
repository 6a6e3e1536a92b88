"""
channels — Per-channel delivery backends.

    email_alert  — SMTP / simulation
    sms_gateway  — Twilio REST / simulation
    web_push     — push gateway / simulation

``build_senders`` wires all three from settings.
"""

from __future__ import annotations

from typing import Dict

from backend.app.alerts.channels.base import ChannelSender, ProviderUnavailableError
from backend.app.alerts.channels.email_alert import EmailSender
from backend.app.alerts.channels.sms_gateway import SmsSender
from backend.app.alerts.channels.web_push import PushSender
from backend.app.alerts.models import Channel
from backend.app.core.config import Settings

__all__ = [
    "ChannelSender",
    "EmailSender",
    "ProviderUnavailableError",
    "PushSender",
    "SmsSender",
    "build_senders",
]


def build_senders(cfg: Settings) -> Dict[Channel, ChannelSender]:
    return {
        Channel.EMAIL: EmailSender(
            provider=cfg.EMAIL_PROVIDER,
            smtp_host=cfg.SMTP_HOST,
            smtp_port=cfg.SMTP_PORT,
            username=cfg.SMTP_USER,
            password=cfg.SMTP_PASSWORD,
            use_tls=cfg.SMTP_USE_TLS,
            from_name=cfg.SMTP_FROM_NAME,
            from_email=cfg.SMTP_FROM_EMAIL,
            timeout_seconds=cfg.SEND_TIMEOUT_SECONDS,
            max_workers=cfg.CHANNEL_CONCURRENCY,
        ),
        Channel.SMS: SmsSender(
            provider=cfg.SMS_PROVIDER,
            account_sid=cfg.TWILIO_ACCOUNT_SID,
            auth_token=cfg.TWILIO_AUTH_TOKEN,
            from_number=cfg.TWILIO_FROM_NUMBER,
            api_base=cfg.TWILIO_API_BASE,
            timeout_seconds=cfg.SEND_TIMEOUT_SECONDS,
        ),
        Channel.PUSH: PushSender(
            provider=cfg.PUSH_PROVIDER,
            gateway_url=cfg.PUSH_GATEWAY_URL,
            api_key=cfg.PUSH_API_KEY,
            timeout_seconds=cfg.SEND_TIMEOUT_SECONDS,
        ),
    }
