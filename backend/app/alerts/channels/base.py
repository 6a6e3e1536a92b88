"""
Sender contract shared by every notification channel.

    await sender.send(recipient, payload) -> Succeeded | Failed

A sender reports per-recipient problems (bad address, rejected number,
missing token) as ``Failed``. It raises ``ProviderUnavailableError`` only
when the provider itself cannot be reached; the dispatcher then trips the
whole channel for the rest of the run.
"""

from __future__ import annotations

from typing import Any, Optional, Protocol

import httpx

from backend.app.alerts.models import (
    AttemptState,
    Channel,
    Failed,
    NotificationPayload,
    Recipient,
)


class ProviderUnavailableError(Exception):
    """The channel provider could not be reached at all."""

    def __init__(self, channel: Channel, reason: str):
        super().__init__(f"{channel.value} provider unavailable: {reason}")
        self.channel = channel
        self.reason = reason


class ChannelSender(Protocol):
    channel: Channel

    async def send(self, recipient: Recipient, payload: NotificationPayload) -> AttemptState: ...

    async def aclose(self) -> None: ...


def parish_label(code: str) -> str:
    """``ST_ANDREW`` → ``St. Andrew``."""
    words = code.split("_")
    if words[0] == "ST":
        return "St. " + " ".join(w.capitalize() for w in words[1:])
    return " ".join(w.capitalize() for w in words)


def json_field(response: httpx.Response, name: str) -> Optional[str]:
    """``response.json()[name]`` as text, or None when the body is not a JSON object."""
    try:
        body: Any = response.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    value = body.get(name)
    return str(value) if value is not None else None


def transport_failure(channel: Channel, exc: httpx.HTTPError) -> AttemptState:
    """
    Classify an httpx transport error.

    Read / write / pool timeouts fail the single send. Anything else
    (connect errors and connect timeouts included) means the provider is
    unreachable and is raised as ProviderUnavailableError.
    """
    if isinstance(exc, httpx.TimeoutException) and not isinstance(exc, httpx.ConnectTimeout):
        return Failed(f"{channel.value} provider timed out: {type(exc).__name__}")
    raise ProviderUnavailableError(channel, str(exc) or type(exc).__name__) from exc
