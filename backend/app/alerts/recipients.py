"""
recipients.py — Targeting: who receives an alert, on which channels.

Eligibility rules (all must hold):
    • user is active
    • user's parish ∈ alert.parishes
    • alert severity is HIGH, or the user is not emergency-only
    • user opted in to at least one channel

Each eligible user yields one DeliveryTarget per opted-in channel, so an
alert's recipient_count is the number of (user, channel) pairs.
"""

from __future__ import annotations

import logging
from typing import List

from backend.app.alerts.models import Alert, DeliveryTarget, Recipient
from backend.app.core.enums import Severity
from backend.app.storage.base import RecipientDirectory

logger = logging.getLogger(__name__)


def is_eligible(recipient: Recipient, severity: Severity) -> bool:
    if not recipient.is_active:
        return False
    if recipient.emergency_only and severity != Severity.HIGH:
        return False
    return bool(recipient.opted_in_channels())


def targets_for(recipient: Recipient) -> List[DeliveryTarget]:
    return [DeliveryTarget(recipient, channel) for channel in recipient.opted_in_channels()]


class RecipientResolver:
    def __init__(self, directory: RecipientDirectory):
        self._directory = directory

    async def resolve(self, alert: Alert) -> List[DeliveryTarget]:
        candidates = await self._directory.find_active_in_parishes(alert.parishes)

        targets: List[DeliveryTarget] = []
        skipped = 0
        for recipient in candidates:
            if recipient.parish not in alert.parishes or not is_eligible(recipient, alert.severity):
                skipped += 1
                continue
            targets.extend(targets_for(recipient))

        logger.info(
            "Alert %s: %d targets from %d users (%d not eligible)",
            alert.id, len(targets), len(candidates) - skipped, skipped,
            extra={"alert_id": alert.id, "target_count": len(targets)},
        )
        return targets
