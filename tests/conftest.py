"""
Shared test doubles.

ScriptedSender stands in for a channel provider: recipients listed in
``fail_for`` get a per-recipient Failed, ``outage=True`` makes every send
raise ProviderUnavailableError. Both can be changed between calls so a
test can dispatch, "fix" some recipients, then retry.
"""

from __future__ import annotations

import asyncio
from typing import Dict, Iterable, List

import pytest

from backend.app.alerts.channels.base import ProviderUnavailableError
from backend.app.alerts.models import (
    AttemptState,
    Channel,
    Failed,
    NotificationPayload,
    Recipient,
    Succeeded,
)


class ScriptedSender:
    provider = "scripted"
    is_configured = True

    def __init__(
        self,
        channel: Channel,
        fail_for: Iterable[str] = (),
        *,
        outage: bool = False,
        delay: float = 0.0,
    ):
        self.channel = channel
        self.fail_for = set(fail_for)
        self.outage = outage
        self.delay = delay
        self.calls: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False

    async def send(self, recipient: Recipient, payload: NotificationPayload) -> AttemptState:
        self.calls.append(recipient.id)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.outage:
                raise ProviderUnavailableError(self.channel, "connection refused")
            if recipient.id in self.fail_for:
                return Failed("mailbox unavailable")
            return Succeeded(provider_ref=f"{self.channel.value}-{recipient.id}")
        finally:
            self.in_flight -= 1

    async def aclose(self) -> None:
        self.closed = True


def scripted_senders(**fail_for: Iterable[str]) -> Dict[Channel, ScriptedSender]:
    """``scripted_senders(email=["u1"])`` → one ScriptedSender per channel."""
    return {
        channel: ScriptedSender(channel, fail_for.get(channel.value, ()))
        for channel in Channel
    }


@pytest.fixture
def senders() -> Dict[Channel, ScriptedSender]:
    return scripted_senders()
