"""
dispatcher.py — Throttled fan-out of one payload to many delivery targets.

═══════════════════════════════════════════════════════════════════════════
BATCHING MODEL
═══════════════════════════════════════════════════════════════════════════

    targets ──group by channel──▶  email: [b0][b1][b2]
                                   sms:   [b0][b1]
                                   push:  [b0]

    round 0:  email.b0 ║ sms.b0 ║ push.b0     (channels run concurrently)
              sleep(batch_delay)
    round 1:  email.b1 ║ sms.b1
              sleep(batch_delay)
    round 2:  email.b2

Inside a batch each channel is bounded by its own semaphore
(``channel_concurrency`` sends in flight).

Failure handling:
    sender returns Failed              → recorded, run continues
    sender exceeds send timeout        → Failed("timed out"), run continues
    sender raises unexpected error     → Failed(str(exc)), run continues
    sender raises ProviderUnavailable  → channel tripped; every send on that
                                         channel not yet started fails fast
                                         with provider_outage=True
    outcome callback raises            → dispatch aborts (infrastructure)

There are no inline retries; retrying is the RetryCoordinator's job.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Mapping, Sequence, Set

from backend.app.alerts.channels.base import ChannelSender, ProviderUnavailableError
from backend.app.alerts.models import (
    AttemptState,
    Channel,
    DeliveryTarget,
    Failed,
    NotificationPayload,
    Succeeded,
)

logger = logging.getLogger(__name__)

OutcomeCallback = Callable[[DeliveryTarget, AttemptState], Awaitable[None]]
Sleeper = Callable[[float], Awaitable[None]]


@dataclass
class DispatchReport:
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    rounds: int = 0
    tripped_channels: Set[Channel] = field(default_factory=set)


def group_batches(
    targets: Sequence[DeliveryTarget], batch_size: int,
) -> "OrderedDict[Channel, List[List[DeliveryTarget]]]":
    """Group targets per channel (first-seen order) and cut into batches."""
    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")

    per_channel: "OrderedDict[Channel, List[DeliveryTarget]]" = OrderedDict()
    for target in targets:
        per_channel.setdefault(target.channel, []).append(target)

    return OrderedDict(
        (channel, [items[i:i + batch_size] for i in range(0, len(items), batch_size)])
        for channel, items in per_channel.items()
    )


class NotificationDispatcher:
    """
    Parameters
    ----------
    senders : mapping of Channel → ChannelSender
    channel_concurrency : int
        Max sends in flight per channel.
    send_timeout_seconds : float
        Upper bound for a single send.
    sleep : callable
        Awaitable used between rounds (injectable for tests).
    """

    def __init__(
        self,
        senders: Mapping[Channel, ChannelSender],
        *,
        channel_concurrency: int = 10,
        send_timeout_seconds: float = 15.0,
        sleep: Sleeper = asyncio.sleep,
    ):
        if channel_concurrency < 1:
            raise ValueError("channel_concurrency must be >= 1")
        self._senders = dict(senders)
        self._concurrency = channel_concurrency
        self._timeout = send_timeout_seconds
        self._sleep = sleep

    async def dispatch(
        self,
        targets: Sequence[DeliveryTarget],
        payload: NotificationPayload,
        on_outcome: OutcomeCallback,
        *,
        batch_size: int,
        batch_delay_seconds: float,
    ) -> DispatchReport:
        report = DispatchReport()
        if not targets:
            return report

        batches = group_batches(targets, batch_size)
        rounds = max(len(b) for b in batches.values())
        semaphores: Dict[Channel, asyncio.Semaphore] = {
            channel: asyncio.Semaphore(self._concurrency) for channel in batches
        }
        started = time.perf_counter()

        for index in range(rounds):
            if index > 0 and batch_delay_seconds > 0:
                await self._sleep(batch_delay_seconds)

            work = [
                self._run_batch(channel, channel_batches[index], payload, on_outcome,
                                semaphores[channel], report)
                for channel, channel_batches in batches.items()
                if index < len(channel_batches)
            ]
            logger.debug(
                "Alert %s: round %d/%d across %d channels",
                payload.alert_id, index + 1, rounds, len(work),
                extra={"alert_id": payload.alert_id, "batch": index},
            )
            await _gather_all(work)
            report.rounds += 1

        logger.info(
            "Alert %s dispatch finished: %d attempted, %d ok, %d failed, %d rounds, %.0fms",
            payload.alert_id, report.attempted, report.succeeded, report.failed,
            report.rounds, (time.perf_counter() - started) * 1000,
            extra={
                "alert_id": payload.alert_id,
                "target_count": report.attempted,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
            },
        )
        if report.tripped_channels:
            logger.warning(
                "Alert %s: provider outage on %s",
                payload.alert_id, sorted(c.value for c in report.tripped_channels),
            )
        return report

    async def _run_batch(
        self,
        channel: Channel,
        batch: List[DeliveryTarget],
        payload: NotificationPayload,
        on_outcome: OutcomeCallback,
        semaphore: asyncio.Semaphore,
        report: DispatchReport,
    ) -> None:
        async def deliver(target: DeliveryTarget) -> None:
            async with semaphore:
                state = await self._send_one(target, payload, report)
            report.attempted += 1
            if isinstance(state, Succeeded):
                report.succeeded += 1
            else:
                report.failed += 1
            await on_outcome(target, state)

        await _gather_all([deliver(t) for t in batch])

    async def _send_one(
        self, target: DeliveryTarget, payload: NotificationPayload, report: DispatchReport,
    ) -> AttemptState:
        channel = target.channel
        if channel in report.tripped_channels:
            return Failed(f"{channel.value} provider unavailable", provider_outage=True)

        sender = self._senders.get(channel)
        if sender is None:
            return Failed(f"No sender configured for {channel.value}")

        try:
            return await asyncio.wait_for(
                sender.send(target.recipient, payload), timeout=self._timeout,
            )
        except ProviderUnavailableError as exc:
            if channel not in report.tripped_channels:
                logger.error(
                    "Tripping %s channel for alert %s: %s",
                    channel.value, payload.alert_id, exc.reason,
                    extra={"alert_id": payload.alert_id, "channel": channel.value},
                )
            report.tripped_channels.add(channel)
            return Failed(f"{channel.value} provider unavailable: {exc.reason}", provider_outage=True)
        except asyncio.TimeoutError:
            return Failed(f"Send timed out after {self._timeout:g}s")
        except Exception as exc:
            logger.exception(
                "[%s] Unexpected send error for %s",
                channel.value, target.recipient.id,
                extra={"alert_id": payload.alert_id, "recipient_id": target.recipient.id},
            )
            return Failed(str(exc) or type(exc).__name__)


async def _gather_all(coros: List[Awaitable[None]]) -> None:
    """Run to completion, then re-raise the first error, if any."""
    results = await asyncio.gather(*coros, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
