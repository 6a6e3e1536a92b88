"""
tracker.py — Delivery accounting and failed-subset retry.

DeliveryTracker
    record()    one outcome → store.record_outcome (upsert + counter delta,
                atomic inside the store; see models.apply_outcome)
    finalize()  derive COMPLETED / FAILED from the counters once every
                outcome of a run has been recorded
    fail_unrecorded()
                after an aborted run, mark targets with no attempt as
                FAILED so retry can pick them up

RetryCoordinator
    retry_failed()  snapshot the FAILED attempts at call time, resolve
                    their recipients again and push them back through the
                    dispatcher with the retry batch settings

Attempts that succeed during a retry stop being FAILED, so a second retry
finds nothing to do and reports total_retried = 0.
"""

from __future__ import annotations

import logging
from typing import List, Sequence, Set

from backend.app.alerts.dispatcher import NotificationDispatcher
from backend.app.alerts.models import (
    Alert,
    AlertDeliveryStatus,
    AttemptState,
    AttemptStatus,
    Channel,
    DeliveryAttempt,
    DeliveryTarget,
    Failed,
    NotificationPayload,
    RetryResult,
    Succeeded,
)
from backend.app.core.errors import NotFoundError
from backend.app.storage.base import AlertStore, RecipientDirectory

logger = logging.getLogger(__name__)


def final_status(alert: Alert) -> AlertDeliveryStatus:
    if alert.failed_count == 0 and alert.delivered_count == alert.recipient_count:
        return AlertDeliveryStatus.COMPLETED
    return AlertDeliveryStatus.FAILED


class DeliveryTracker:
    def __init__(self, store: AlertStore):
        self._store = store

    async def record(
        self, alert_id: str, recipient_id: str, channel: Channel, state: AttemptState,
    ) -> DeliveryAttempt:
        attempt = await self._store.record_outcome(alert_id, recipient_id, channel, state)
        if isinstance(state, Failed):
            logger.debug(
                "Alert %s: %s/%s failed (attempt %d): %s",
                alert_id, recipient_id, channel.value, attempt.attempt_count, state.reason,
                extra={"alert_id": alert_id, "recipient_id": recipient_id, "channel": channel.value},
            )
        return attempt

    async def fail_unrecorded(
        self, alert_id: str, targets: Sequence[DeliveryTarget], reason: str,
    ) -> int:
        """
        Record ``Failed(reason)`` for every target of an aborted run that has
        no attempt yet, so a later retry can reach it. Best-effort: a target
        that cannot be recorded is logged and skipped.
        """
        recorded = {
            (a.recipient_id, a.channel) for a in await self._store.list_attempts(alert_id)
        }
        filled = 0
        for target in targets:
            if (target.recipient.id, target.channel) in recorded:
                continue
            try:
                await self.record(alert_id, target.recipient.id, target.channel, Failed(reason))
            except Exception:
                logger.exception(
                    "Alert %s: could not record %s/%s after abort",
                    alert_id, target.recipient.id, target.channel.value,
                    extra={"alert_id": alert_id, "recipient_id": target.recipient.id},
                )
                continue
            filled += 1
        return filled

    async def finalize(self, alert_id: str) -> Alert:
        alert = await self._store.get_alert(alert_id)
        if alert is None:
            raise NotFoundError("Alert", alert_id=alert_id)
        status = final_status(alert)
        finalized = await self._store.set_status(alert_id, status)
        logger.info(
            "Alert %s finalised %s: %d delivered, %d failed of %d",
            alert_id, status.value, finalized.delivered_count,
            finalized.failed_count, finalized.recipient_count,
            extra={"alert_id": alert_id},
        )
        return finalized


class RetryCoordinator:
    """
    Parameters
    ----------
    store : AlertStore
    directory : RecipientDirectory
        Used to re-load recipients of failed attempts.
    dispatcher : NotificationDispatcher
    tracker : DeliveryTracker
    batch_size, batch_delay_seconds
        Retry throttling (smaller / slower than first dispatch).
    """

    def __init__(
        self,
        store: AlertStore,
        directory: RecipientDirectory,
        dispatcher: NotificationDispatcher,
        tracker: DeliveryTracker,
        *,
        batch_size: int = 50,
        batch_delay_seconds: float = 2.0,
    ):
        self._store = store
        self._directory = directory
        self._dispatcher = dispatcher
        self._tracker = tracker
        self.batch_size = batch_size
        self.batch_delay_seconds = batch_delay_seconds

    async def retry_failed(self, alert: Alert) -> RetryResult:
        failed = await self._store.list_attempts(alert.id, AttemptStatus.FAILED)
        result = RetryResult(total_retried=len(failed))
        if not failed:
            logger.info("Alert %s: nothing to retry", alert.id, extra={"alert_id": alert.id})
            return result

        recipients = await self._directory.get_recipients({a.recipient_id for a in failed})

        async def record(recipient_id: str, channel: Channel, state: AttemptState) -> None:
            await self._tracker.record(alert.id, recipient_id, channel, state)
            stats = result.stats[channel]
            if isinstance(state, Succeeded):
                result.success_count += 1
                stats.sent += 1
            else:
                result.failure_count += 1
                stats.failed += 1

        async def on_outcome(target: DeliveryTarget, state: AttemptState) -> None:
            await record(target.recipient.id, target.channel, state)

        targets: List[DeliveryTarget] = []
        for attempt in failed:
            recipient = recipients.get(attempt.recipient_id)
            if recipient is None or not recipient.is_active:
                await record(
                    attempt.recipient_id, attempt.channel,
                    Failed("Recipient no longer registered"),
                )
                continue
            targets.append(DeliveryTarget(recipient, attempt.channel))

        logger.info(
            "Retrying %d failed deliveries for alert %s (%d recipients gone)",
            len(targets), alert.id, len(failed) - len(targets),
            extra={"alert_id": alert.id, "target_count": len(targets)},
        )

        report = await self._dispatcher.dispatch(
            targets,
            NotificationPayload.from_alert(alert),
            on_outcome,
            batch_size=self.batch_size,
            batch_delay_seconds=self.batch_delay_seconds,
        )
        result.outage_channels = sorted(report.tripped_channels, key=lambda c: c.value)
        return result


def involved_channels(result: RetryResult) -> Set[Channel]:
    return {c for c, s in result.stats.items() if s.sent or s.failed}
