"""
models.py — Shared data structures for the alert delivery engine.

Defines:
    • AlertType / AlertDeliveryStatus / Channel — classification enums
    • Recipient       — a registered user as seen by the delivery engine
    • DeliveryTarget  — one (recipient, channel) pair
    • Alert           — the broadcast plus its delivery counters
    • DeliveryAttempt — the single evolving record per (alert, recipient, channel)
    • NotificationPayload, RetryResult, AlertAnalytics

═══════════════════════════════════════════════════════════════════════════
DELIVERY ATTEMPT STATE MACHINE
═══════════════════════════════════════════════════════════════════════════

    (none) ──send ok──▶ Succeeded                      (terminal)
    (none) ──send err─▶ Failed(reason) ──retry ok──▶ Succeeded
                              │
                              └──retry err──▶ Failed(reason')  (retryable)

Counter deltas applied to the owning alert for each transition:

    Transition            delivered   failed   stats[ch].sent   stats[ch].failed
    ───────────────────   ─────────   ──────   ──────────────   ────────────────
    none → Succeeded         +1          0           +1                 0
    none → Failed             0         +1            0                +1
    Failed → Succeeded       +1         −1           +1                −1
    Failed → Failed           0          0            0                 0

Succeeded is terminal; a second outcome for a Succeeded key is rejected.
That table is the whole reason retry is idempotent and the counters obey
delivered + failed ≤ recipient_count.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple, Union

from backend.app.core.enums import Parish, Severity


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class AlertType(str, Enum):
    WEATHER        = "WEATHER"
    FLOOD          = "FLOOD"
    FLOOD_WARNING  = "FLOOD_WARNING"
    HEAVY_RAIN     = "HEAVY_RAIN"
    HIGH_WINDS     = "HIGH_WINDS"
    SEVERE_WEATHER = "SEVERE_WEATHER"
    EMERGENCY      = "EMERGENCY"
    ALL_CLEAR      = "ALL_CLEAR"


class AlertDeliveryStatus(str, Enum):
    """Alert-level delivery lifecycle."""
    PENDING     = "PENDING"        # created, never dispatched
    IN_PROGRESS = "IN_PROGRESS"    # a dispatch or retry holds the alert
    COMPLETED   = "COMPLETED"      # every target attempted, zero failures
    FAILED      = "FAILED"         # run ended with failures remaining


class Channel(str, Enum):
    """Notification media. Values double as delivery-stats keys."""
    EMAIL = "email"
    SMS   = "sms"
    PUSH  = "push"


class AttemptStatus(str, Enum):
    SUCCEEDED = "SUCCEEDED"
    FAILED    = "FAILED"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _generate_id() -> str:
    return str(uuid.uuid4())


# ═══════════════════════════════════════════════════════════════════════════
# Attempt state (tagged variant)
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Succeeded:
    provider_ref: Optional[str] = None

    @property
    def status(self) -> AttemptStatus:
        return AttemptStatus.SUCCEEDED


@dataclass(frozen=True)
class Failed:
    reason: str
    provider_outage: bool = False

    @property
    def status(self) -> AttemptStatus:
        return AttemptStatus.FAILED


AttemptState = Union[Succeeded, Failed]


# ═══════════════════════════════════════════════════════════════════════════
# Recipients
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Recipient:
    """
    A registered user, read-only from the delivery engine's point of view.

    Attributes
    ----------
    emergency_only : bool
        Receives HIGH severity alerts only.
    email_alerts, sms_alerts, push_alerts : bool
        Per-channel opt-ins.
    """
    id: str
    parish: Parish
    first_name: str = ""
    last_name: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None
    push_token: Optional[str] = None
    email_alerts: bool = False
    sms_alerts: bool = False
    push_alerts: bool = False
    emergency_only: bool = False
    is_active: bool = True

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip() or self.id

    def opted_in_channels(self) -> List[Channel]:
        channels = []
        if self.email_alerts:
            channels.append(Channel.EMAIL)
        if self.sms_alerts:
            channels.append(Channel.SMS)
        if self.push_alerts:
            channels.append(Channel.PUSH)
        return channels


@dataclass(frozen=True)
class DeliveryTarget:
    recipient: Recipient
    channel: Channel

    @property
    def key(self) -> Tuple[str, Channel]:
        return (self.recipient.id, self.channel)


# ═══════════════════════════════════════════════════════════════════════════
# Delivery statistics
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class ChannelStats:
    sent: int = 0
    failed: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"sent": self.sent, "failed": self.failed}


def empty_stats() -> Dict[Channel, ChannelStats]:
    return {channel: ChannelStats() for channel in Channel}


def stats_to_dict(stats: Dict[Channel, ChannelStats]) -> Dict[str, Dict[str, int]]:
    return {channel.value: stats[channel].to_dict() for channel in Channel}


@dataclass(frozen=True)
class CounterDelta:
    """Change to apply to an alert's counters for one attempt transition."""
    channel: Channel
    delivered: int = 0
    failed: int = 0
    channel_sent: int = 0
    channel_failed: int = 0

    @property
    def is_zero(self) -> bool:
        return not (self.delivered or self.failed or self.channel_sent or self.channel_failed)


# ═══════════════════════════════════════════════════════════════════════════
# Alert
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class Alert:
    type: AlertType
    severity: Severity
    title: str
    message: str
    parishes: FrozenSet[Parish]
    id: str = field(default_factory=_generate_id)
    created_at: datetime = field(default_factory=_now)
    expires_at: Optional[datetime] = None
    created_by: Optional[str] = None
    delivery_status: AlertDeliveryStatus = AlertDeliveryStatus.PENDING
    recipient_count: int = 0
    delivered_count: int = 0
    failed_count: int = 0
    dispatched_at: Optional[datetime] = None
    stats: Dict[Channel, ChannelStats] = field(default_factory=empty_stats)

    @property
    def delivery_stats(self) -> Optional[Dict[str, Dict[str, int]]]:
        """Per-channel stats; None until the first dispatch started."""
        if self.dispatched_at is None:
            return None
        return stats_to_dict(self.stats)

    @property
    def pending_count(self) -> int:
        return self.recipient_count - self.delivered_count - self.failed_count

    def is_expired(self, at: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (at or _now())

    def apply_delta(self, delta: CounterDelta) -> None:
        self.delivered_count += delta.delivered
        self.failed_count += delta.failed
        ch = self.stats[delta.channel]
        ch.sent += delta.channel_sent
        ch.failed += delta.channel_failed

    def copy(self) -> "Alert":
        return replace(
            self,
            stats={c: ChannelStats(s.sent, s.failed) for c, s in self.stats.items()},
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "severity": self.severity.value,
            "title": self.title,
            "message": self.message,
            "parishes": sorted(p.value for p in self.parishes),
            "createdAt": self.created_at.isoformat(),
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
            "createdBy": self.created_by,
            "deliveryStatus": self.delivery_status.value,
            "recipientCount": self.recipient_count,
            "deliveredCount": self.delivered_count,
            "failedCount": self.failed_count,
            "deliveryStats": self.delivery_stats,
        }


# ═══════════════════════════════════════════════════════════════════════════
# Delivery attempt
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class DeliveryAttempt:
    """The single evolving record for one (alert, recipient, channel)."""
    alert_id: str
    recipient_id: str
    channel: Channel
    state: AttemptState
    attempt_count: int = 1
    updated_at: datetime = field(default_factory=_now)

    @property
    def key(self) -> Tuple[str, str, Channel]:
        return (self.alert_id, self.recipient_id, self.channel)

    @property
    def status(self) -> AttemptStatus:
        return self.state.status

    @property
    def last_error(self) -> Optional[str]:
        return self.state.reason if isinstance(self.state, Failed) else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alertId": self.alert_id,
            "recipientId": self.recipient_id,
            "channel": self.channel.value,
            "status": self.status.value,
            "attemptCount": self.attempt_count,
            "lastError": self.last_error,
            "updatedAt": self.updated_at.isoformat(),
        }


class AttemptTransitionError(Exception):
    """Outcome recorded against a terminal (Succeeded) attempt."""


def apply_outcome(
    previous: Optional[DeliveryAttempt],
    alert_id: str,
    recipient_id: str,
    channel: Channel,
    state: AttemptState,
    at: Optional[datetime] = None,
) -> Tuple[DeliveryAttempt, CounterDelta]:
    """
    Compute the next attempt record and the alert counter delta.

    Pure function — stores call it inside their atomic section.

    Raises
    ------
    AttemptTransitionError
        If ``previous`` is already Succeeded.
    """
    at = at or _now()

    if previous is None:
        attempt = DeliveryAttempt(alert_id, recipient_id, channel, state, 1, at)
        if isinstance(state, Succeeded):
            return attempt, CounterDelta(channel, delivered=1, channel_sent=1)
        return attempt, CounterDelta(channel, failed=1, channel_failed=1)

    if isinstance(previous.state, Succeeded):
        raise AttemptTransitionError(
            f"attempt {previous.key} already succeeded; outcomes are final"
        )

    attempt = replace(
        previous,
        state=state,
        attempt_count=previous.attempt_count + 1,
        updated_at=at,
    )
    if isinstance(state, Succeeded):
        return attempt, CounterDelta(
            channel, delivered=1, failed=-1, channel_sent=1, channel_failed=-1,
        )
    return attempt, CounterDelta(channel)


# ═══════════════════════════════════════════════════════════════════════════
# Payload & results
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class NotificationPayload:
    """Channel-neutral message; each sender renders its own format."""
    alert_id: str
    alert_type: AlertType
    severity: Severity
    title: str
    message: str
    parishes: Tuple[Parish, ...] = ()

    @classmethod
    def from_alert(cls, alert: Alert) -> "NotificationPayload":
        return cls(
            alert_id=alert.id,
            alert_type=alert.type,
            severity=alert.severity,
            title=alert.title,
            message=alert.message,
            parishes=tuple(sorted(alert.parishes, key=lambda p: p.value)),
        )


@dataclass
class RetryResult:
    total_retried: int = 0
    success_count: int = 0
    failure_count: int = 0
    stats: Dict[Channel, ChannelStats] = field(default_factory=empty_stats)
    outage_channels: List[Channel] = field(default_factory=list)

    @property
    def delivery_stats(self) -> Dict[str, Dict[str, int]]:
        return stats_to_dict(self.stats)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalRetried": self.total_retried,
            "successCount": self.success_count,
            "failureCount": self.failure_count,
            "deliveryStats": self.delivery_stats,
        }


@dataclass(frozen=True)
class AlertAnalytics:
    alert_id: str
    delivery_status: AlertDeliveryStatus
    recipient_count: int
    delivered_count: int
    failed_count: int
    pending_count: int
    delivery_rate: float            # percent of targets delivered
    delivery_stats: Optional[Dict[str, Dict[str, int]]]

    @classmethod
    def from_alert(cls, alert: Alert) -> "AlertAnalytics":
        rate = (
            alert.delivered_count / alert.recipient_count * 100
            if alert.recipient_count else 0.0
        )
        return cls(
            alert_id=alert.id,
            delivery_status=alert.delivery_status,
            recipient_count=alert.recipient_count,
            delivered_count=alert.delivered_count,
            failed_count=alert.failed_count,
            pending_count=alert.pending_count,
            delivery_rate=round(rate, 2),
            delivery_stats=alert.delivery_stats,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alertId": self.alert_id,
            "deliveryStatus": self.delivery_status.value,
            "recipientCount": self.recipient_count,
            "deliveredCount": self.delivered_count,
            "failedCount": self.failed_count,
            "pendingCount": self.pending_count,
            "deliveryRate": self.delivery_rate,
            "deliveryStats": self.delivery_stats,
        }
