"""
test_alert_service.py — Tests for the alert delivery engine.

Covers:
    • Attempt state machine and counter deltas (apply_outcome)
    • Alert model projections (delivery_stats, to_dict, expiry)
    • Recipient targeting (parish, emergency-only, opt-ins)
    • Alert creation validation
    • First dispatch (counters, final status, exclusion, expiry)
    • Retry (scope, idempotence, counters, provider outage)
    • Analytics

Run with:
    pytest tests/test_alert_service.py -v
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

import pytest

from backend.app.alerts.alert_service import AlertService
from backend.app.alerts.dispatcher import NotificationDispatcher
from backend.app.alerts.models import (
    Alert,
    AlertDeliveryStatus,
    AlertType,
    AttemptStatus,
    AttemptTransitionError,
    Channel,
    CounterDelta,
    DeliveryAttempt,
    Failed,
    Recipient,
    Succeeded,
    apply_outcome,
)
from backend.app.alerts.recipients import RecipientResolver, is_eligible
from backend.app.core.enums import Parish, Severity
from backend.app.core.errors import (
    AlertExpiredError,
    AlreadyDispatchedError,
    DeliveryInProgressError,
    NoFailuresError,
    NotFoundError,
    ProviderError,
    ValidationError,
)
from backend.app.storage.memory import InMemoryAlertStore, InMemoryRecipientDirectory

from conftest import ScriptedSender, scripted_senders


# ═══════════════════════════════════════════════════════════════════════════
# Test Fixtures
# ═══════════════════════════════════════════════════════════════════════════

async def _no_sleep(_seconds: float) -> None:
    return None


def _make_recipient(
    rid: str = "U001",
    parish: Parish = Parish.KINGSTON,
    *,
    email: bool = True,
    sms: bool = False,
    push: bool = False,
    emergency_only: bool = False,
    is_active: bool = True,
) -> Recipient:
    """Create a test user with contact details for every channel."""
    return Recipient(
        id=rid,
        parish=parish,
        first_name="Test",
        last_name=rid,
        email=f"{rid.lower()}@example.com",
        phone="+18765550100",
        push_token=f"tok-{rid}",
        email_alerts=email,
        sms_alerts=sms,
        push_alerts=push,
        emergency_only=emergency_only,
        is_active=is_active,
    )


def _make_service(
    recipients: List[Recipient],
    senders: Optional[Dict[Channel, ScriptedSender]] = None,
    *,
    batch_size: int = 100,
    retry_batch_size: int = 50,
) -> Tuple[AlertService, InMemoryAlertStore, InMemoryRecipientDirectory]:
    store = InMemoryAlertStore()
    directory = InMemoryRecipientDirectory(recipients)
    dispatcher = NotificationDispatcher(
        senders if senders is not None else scripted_senders(),
        channel_concurrency=10,
        send_timeout_seconds=5.0,
        sleep=_no_sleep,
    )
    service = AlertService(
        store, directory, dispatcher,
        batch_size=batch_size,
        batch_delay_seconds=0.0,
        retry_batch_size=retry_batch_size,
        retry_batch_delay_seconds=0.0,
    )
    return service, store, directory


def _create(service: AlertService, **overrides) -> Alert:
    kwargs = dict(
        type=AlertType.FLOOD_WARNING,
        severity=Severity.HIGH,
        title="Flash Flood Warning",
        message="Hope River rising fast. Move to high ground.",
        parishes=[Parish.KINGSTON],
    )
    kwargs.update(overrides)
    return asyncio.run(service.create_alert(**kwargs))


def _users(n: int, prefix: str = "U", **kwargs) -> List[Recipient]:
    return [_make_recipient(f"{prefix}{i:03d}", **kwargs) for i in range(n)]


def _assert_counter_invariant(alert: Alert) -> None:
    assert alert.delivered_count + alert.failed_count <= alert.recipient_count
    stats = alert.delivery_stats
    if stats is not None:
        assert sum(s["sent"] for s in stats.values()) == alert.delivered_count
        assert sum(s["failed"] for s in stats.values()) == alert.failed_count


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Attempt State Machine
# ═══════════════════════════════════════════════════════════════════════════

class TestApplyOutcome:
    """Test the per-attempt transition table."""

    def test_first_success(self):
        attempt, delta = apply_outcome(None, "A1", "U1", Channel.EMAIL, Succeeded())
        assert attempt.status == AttemptStatus.SUCCEEDED
        assert attempt.attempt_count == 1
        assert delta == CounterDelta(Channel.EMAIL, delivered=1, channel_sent=1)

    def test_first_failure(self):
        attempt, delta = apply_outcome(None, "A1", "U1", Channel.SMS, Failed("bad number"))
        assert attempt.status == AttemptStatus.FAILED
        assert attempt.last_error == "bad number"
        assert delta == CounterDelta(Channel.SMS, failed=1, channel_failed=1)

    def test_failed_then_succeeded_moves_counters(self):
        previous, _ = apply_outcome(None, "A1", "U1", Channel.PUSH, Failed("x"))
        attempt, delta = apply_outcome(previous, "A1", "U1", Channel.PUSH, Succeeded())
        assert attempt.attempt_count == 2
        assert attempt.last_error is None
        assert delta == CounterDelta(
            Channel.PUSH, delivered=1, failed=-1, channel_sent=1, channel_failed=-1,
        )

    def test_failed_then_failed_changes_only_the_record(self):
        previous, _ = apply_outcome(None, "A1", "U1", Channel.EMAIL, Failed("first"))
        attempt, delta = apply_outcome(previous, "A1", "U1", Channel.EMAIL, Failed("second"))
        assert attempt.attempt_count == 2
        assert attempt.last_error == "second"
        assert delta.is_zero

    def test_succeeded_is_terminal(self):
        previous, _ = apply_outcome(None, "A1", "U1", Channel.EMAIL, Succeeded())
        with pytest.raises(AttemptTransitionError):
            apply_outcome(previous, "A1", "U1", Channel.EMAIL, Failed("late"))

    def test_attempt_to_dict(self):
        attempt = DeliveryAttempt("A1", "U1", Channel.SMS, Failed("timeout"))
        d = attempt.to_dict()
        assert d["channel"] == "sms"
        assert d["status"] == "FAILED"
        assert d["lastError"] == "timeout"


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Alert Model
# ═══════════════════════════════════════════════════════════════════════════

class TestAlertModel:
    """Test Alert projections."""

    def _alert(self, **kwargs) -> Alert:
        return Alert(
            type=AlertType.WEATHER,
            severity=Severity.LOW,
            title="t",
            message="m",
            parishes=frozenset({Parish.ST_ANN}),
            **kwargs,
        )

    def test_delivery_stats_null_until_dispatched(self):
        alert = self._alert()
        assert alert.delivery_stats is None
        alert.dispatched_at = datetime.now(timezone.utc)
        assert alert.delivery_stats == {
            "email": {"sent": 0, "failed": 0},
            "sms": {"sent": 0, "failed": 0},
            "push": {"sent": 0, "failed": 0},
        }

    def test_expiry(self):
        past = datetime.now(timezone.utc) - timedelta(minutes=1)
        assert self._alert(expires_at=past).is_expired()
        assert not self._alert().is_expired()

    def test_to_dict_camel_case(self):
        d = self._alert(recipient_count=4, delivered_count=3, failed_count=1).to_dict()
        assert d["recipientCount"] == 4
        assert d["deliveredCount"] == 3
        assert d["failedCount"] == 1
        assert d["deliveryStatus"] == "PENDING"
        assert d["deliveryStats"] is None
        assert d["parishes"] == ["ST_ANN"]

    def test_copy_does_not_share_stats(self):
        alert = self._alert()
        clone = alert.copy()
        clone.stats[Channel.EMAIL].sent = 5
        assert alert.stats[Channel.EMAIL].sent == 0


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Recipient Targeting
# ═══════════════════════════════════════════════════════════════════════════

class TestRecipientResolver:
    """Test parish / eligibility / opt-in targeting."""

    def _resolve(self, recipients, severity=Severity.MEDIUM, parishes=(Parish.KINGSTON,)):
        alert = Alert(
            type=AlertType.WEATHER, severity=severity, title="t", message="m",
            parishes=frozenset(parishes),
        )
        resolver = RecipientResolver(InMemoryRecipientDirectory(recipients))
        return asyncio.run(resolver.resolve(alert))

    def test_one_target_per_opted_in_channel(self):
        targets = self._resolve([_make_recipient("U1", email=True, sms=True, push=True)])
        assert sorted(t.channel.value for t in targets) == ["email", "push", "sms"]

    def test_other_parish_excluded(self):
        targets = self._resolve([_make_recipient("U1", parish=Parish.HANOVER)])
        assert targets == []

    def test_inactive_excluded(self):
        assert self._resolve([_make_recipient("U1", is_active=False)]) == []

    def test_no_opt_in_excluded(self):
        assert self._resolve([_make_recipient("U1", email=False)]) == []

    def test_emergency_only_needs_high_severity(self):
        user = _make_recipient("U1", emergency_only=True)
        assert self._resolve([user], severity=Severity.MEDIUM) == []
        assert len(self._resolve([user], severity=Severity.HIGH)) == 1

    def test_multiple_parishes(self):
        users = [
            _make_recipient("U1", parish=Parish.KINGSTON),
            _make_recipient("U2", parish=Parish.ST_ANDREW),
            _make_recipient("U3", parish=Parish.PORTLAND),
        ]
        targets = self._resolve(users, parishes=(Parish.KINGSTON, Parish.ST_ANDREW))
        assert sorted(t.recipient.id for t in targets) == ["U1", "U2"]

    def test_is_eligible(self):
        assert is_eligible(_make_recipient(), Severity.LOW)
        assert not is_eligible(_make_recipient(emergency_only=True), Severity.LOW)


# ═══════════════════════════════════════════════════════════════════════════
# Section 4: Alert Creation
# ═══════════════════════════════════════════════════════════════════════════

class TestCreateAlert:
    """Test create_alert validation."""

    def test_creates_pending_alert(self):
        service, store, _ = _make_service([])
        alert = _create(service, parishes=["kingston", "ST_ANDREW"], type="flood")
        assert alert.delivery_status == AlertDeliveryStatus.PENDING
        assert alert.parishes == frozenset({Parish.KINGSTON, Parish.ST_ANDREW})
        assert alert.type == AlertType.FLOOD
        assert asyncio.run(store.get_alert(alert.id)) is not None

    def test_empty_parishes_rejected(self):
        service, _, _ = _make_service([])
        with pytest.raises(ValidationError):
            _create(service, parishes=[])

    def test_unknown_parish_rejected(self):
        service, _, _ = _make_service([])
        with pytest.raises(ValidationError) as exc:
            _create(service, parishes=["ATLANTIS"])
        assert exc.value.status_code == 400

    def test_unknown_type_rejected(self):
        service, _, _ = _make_service([])
        with pytest.raises(ValidationError):
            _create(service, type="TSUNAMI_PARTY")

    def test_blank_title_rejected(self):
        service, _, _ = _make_service([])
        with pytest.raises(ValidationError):
            _create(service, title="   ")

    def test_past_expiry_rejected(self):
        service, _, _ = _make_service([])
        with pytest.raises(ValidationError):
            _create(service, expires_at=datetime.now(timezone.utc) - timedelta(hours=1))


# ═══════════════════════════════════════════════════════════════════════════
# Section 5: Dispatch
# ═══════════════════════════════════════════════════════════════════════════

class TestDispatchAlert:
    """Test first dispatch of an alert."""

    def test_all_delivered_completes(self):
        service, _, _ = _make_service(_users(5, email=True, sms=True))
        alert = _create(service)
        result = asyncio.run(service.dispatch_alert(alert.id))
        assert result.recipient_count == 10
        assert result.delivered_count == 10
        assert result.failed_count == 0
        assert result.delivery_status == AlertDeliveryStatus.COMPLETED
        assert result.delivery_stats["email"] == {"sent": 5, "failed": 0}
        assert result.delivery_stats["sms"] == {"sent": 5, "failed": 0}
        _assert_counter_invariant(result)

    def test_failures_mark_failed(self):
        senders = scripted_senders(email=["U001", "U003"])
        service, store, _ = _make_service(_users(5), senders)
        alert = _create(service)
        result = asyncio.run(service.dispatch_alert(alert.id))
        assert result.delivered_count == 3
        assert result.failed_count == 2
        assert result.delivery_status == AlertDeliveryStatus.FAILED
        failed = asyncio.run(store.list_attempts(alert.id, AttemptStatus.FAILED))
        assert sorted(a.recipient_id for a in failed) == ["U001", "U003"]
        _assert_counter_invariant(result)

    def test_no_recipients_completes_with_empty_stats(self):
        service, _, _ = _make_service([])
        alert = _create(service)
        result = asyncio.run(service.dispatch_alert(alert.id))
        assert result.recipient_count == 0
        assert result.delivery_status == AlertDeliveryStatus.COMPLETED
        assert result.delivery_stats is not None

    def test_missing_alert(self):
        service, _, _ = _make_service([])
        with pytest.raises(NotFoundError):
            asyncio.run(service.dispatch_alert("00000000-0000-4000-8000-000000000000"))

    def test_second_dispatch_rejected(self):
        service, _, _ = _make_service(_users(1))
        alert = _create(service)
        asyncio.run(service.dispatch_alert(alert.id))
        with pytest.raises(AlreadyDispatchedError):
            asyncio.run(service.dispatch_alert(alert.id))

    def test_expired_alert_rejected(self):
        service, store, _ = _make_service(_users(1))
        alert = _create(service)
        store._alerts[alert.id].expires_at = datetime.now(timezone.utc) - timedelta(seconds=1)
        with pytest.raises(AlertExpiredError):
            asyncio.run(service.dispatch_alert(alert.id))

    def test_concurrent_dispatch_only_one_wins(self):
        senders = {c: ScriptedSender(c, delay=0.01) for c in Channel}
        service, _, _ = _make_service(_users(3), senders)
        alert = _create(service)

        async def race():
            return await asyncio.gather(
                service.dispatch_alert(alert.id),
                service.dispatch_alert(alert.id),
                return_exceptions=True,
            )

        results = asyncio.run(race())
        wins = [r for r in results if isinstance(r, Alert)]
        losses = [r for r in results if isinstance(r, DeliveryInProgressError)]
        assert len(wins) == 1
        assert len(losses) == 1
        assert len(senders[Channel.EMAIL].calls) == 3

    def test_store_failure_marks_alert_failed(self):
        service, store, _ = _make_service(_users(2))
        alert = _create(service)

        async def broken(*args, **kwargs):
            raise RuntimeError("database went away")

        store.record_outcome = broken
        with pytest.raises(RuntimeError):
            asyncio.run(service.dispatch_alert(alert.id))
        stored = asyncio.run(store.get_alert(alert.id))
        assert stored.delivery_status == AlertDeliveryStatus.FAILED

    def test_aborted_dispatch_is_recoverable_by_retry(self):
        senders = scripted_senders()
        service, store, _ = _make_service(_users(3), senders, batch_size=1)
        alert = _create(service)

        real_record = store.record_outcome
        calls = {"n": 0}

        async def flaky(*args, **kwargs):
            calls["n"] += 1
            if calls["n"] == 1:
                raise RuntimeError("connection reset")
            return await real_record(*args, **kwargs)

        store.record_outcome = flaky
        with pytest.raises(RuntimeError):
            asyncio.run(service.dispatch_alert(alert.id))

        aborted = asyncio.run(store.get_alert(alert.id))
        assert aborted.delivery_status == AlertDeliveryStatus.FAILED
        assert aborted.recipient_count == 3
        assert (aborted.delivered_count, aborted.failed_count) == (0, 3)
        assert senders[Channel.EMAIL].calls == ["U000"]
        failed = asyncio.run(store.list_attempts(alert.id, AttemptStatus.FAILED))
        assert all(a.state.reason.startswith("Dispatch aborted") for a in failed)
        _assert_counter_invariant(aborted)

        result = asyncio.run(service.retry_alert_delivery(alert.id))
        assert result.total_retried == 3
        assert result.success_count == 3
        final = asyncio.run(store.get_alert(alert.id))
        assert final.delivery_status == AlertDeliveryStatus.COMPLETED
        assert (final.delivered_count, final.failed_count) == (3, 0)

    def test_abort_before_sending_returns_to_pending(self):
        service, store, directory = _make_service(_users(2))
        alert = _create(service)
        real_find = directory.find_active_in_parishes

        async def broken(*args, **kwargs):
            raise RuntimeError("directory unavailable")

        directory.find_active_in_parishes = broken
        with pytest.raises(RuntimeError):
            asyncio.run(service.dispatch_alert(alert.id))
        stored = asyncio.run(store.get_alert(alert.id))
        assert stored.delivery_status == AlertDeliveryStatus.PENDING

        directory.find_active_in_parishes = real_find
        result = asyncio.run(service.dispatch_alert(alert.id))
        assert result.delivery_status == AlertDeliveryStatus.COMPLETED
        assert result.delivered_count == 2

    def test_send_alert_dispatches_immediately(self):
        service, _, _ = _make_service(_users(2))
        alert = asyncio.run(service.send_alert(
            "EMERGENCY", "HIGH", "Evacuate", "Leave low-lying areas now.", ["KINGSTON"],
        ))
        assert alert.delivery_status == AlertDeliveryStatus.COMPLETED
        assert alert.delivered_count == 2

    def test_send_alert_can_defer(self):
        service, _, _ = _make_service(_users(2))
        alert = asyncio.run(service.send_alert(
            "WEATHER", "LOW", "Rain", "Showers this afternoon.", ["KINGSTON"],
            send_immediately=False,
        ))
        assert alert.delivery_status == AlertDeliveryStatus.PENDING
        assert alert.delivery_stats is None


# ═══════════════════════════════════════════════════════════════════════════
# Section 6: Retry
# ═══════════════════════════════════════════════════════════════════════════

class TestRetryAlertDelivery:
    """Test retry of failed deliveries."""

    def test_partial_recovery(self):
        users = _users(100)
        failing = [u.id for u in users[:15]]
        senders = scripted_senders(email=failing)
        service, _, _ = _make_service(users, senders)
        alert = _create(service)

        dispatched = asyncio.run(service.dispatch_alert(alert.id))
        assert (dispatched.recipient_count, dispatched.delivered_count, dispatched.failed_count) == (100, 85, 15)

        senders[Channel.EMAIL].fail_for = set(failing[:3])
        result = asyncio.run(service.retry_alert_delivery(alert.id))
        assert result.total_retried == 15
        assert result.success_count == 12
        assert result.failure_count == 3

        after = asyncio.run(service.get_alert_by_id(alert.id))
        assert after.recipient_count == 100
        assert after.delivered_count == 97
        assert after.failed_count == 3
        assert after.delivery_status == AlertDeliveryStatus.FAILED
        _assert_counter_invariant(after)

    def test_retry_only_resends_failed(self):
        senders = scripted_senders(email=["U002"], sms=["U004"])
        service, _, _ = _make_service(_users(5, email=True, sms=True), senders)
        alert = _create(service)
        asyncio.run(service.dispatch_alert(alert.id))

        for sender in senders.values():
            sender.calls.clear()
            sender.fail_for.clear()
        result = asyncio.run(service.retry_alert_delivery(alert.id))

        assert senders[Channel.EMAIL].calls == ["U002"]
        assert senders[Channel.SMS].calls == ["U004"]
        assert result.delivery_stats["email"] == {"sent": 1, "failed": 0}
        after = asyncio.run(service.get_alert_by_id(alert.id))
        assert after.delivery_status == AlertDeliveryStatus.COMPLETED
        assert after.recipient_count == 10

    def test_retry_idempotent_once_recovered(self):
        senders = scripted_senders(email=["U000"])
        service, _, _ = _make_service(_users(2), senders)
        alert = _create(service)
        asyncio.run(service.dispatch_alert(alert.id))

        senders[Channel.EMAIL].fail_for.clear()
        asyncio.run(service.retry_alert_delivery(alert.id))
        snapshot = asyncio.run(service.get_alert_by_id(alert.id))

        with pytest.raises(NoFailuresError):
            asyncio.run(service.retry_alert_delivery(alert.id))
        again = asyncio.run(service.get_alert_by_id(alert.id))
        assert again.delivered_count == snapshot.delivered_count
        assert again.failed_count == snapshot.failed_count

    def test_coordinator_reports_zero_when_nothing_failed(self):
        service, _, _ = _make_service(_users(2))
        alert = _create(service)
        dispatched = asyncio.run(service.dispatch_alert(alert.id))
        result = asyncio.run(service.retry_coordinator.retry_failed(dispatched))
        assert result.total_retried == 0
        assert result.success_count == 0

    def test_never_dispatched_has_nothing_to_retry(self):
        service, _, _ = _make_service(_users(2))
        alert = _create(service)
        with pytest.raises(NoFailuresError) as exc:
            asyncio.run(service.retry_alert_delivery(alert.id))
        assert exc.value.message == "No failed deliveries to retry for this alert."

    def test_missing_alert(self):
        service, _, _ = _make_service([])
        with pytest.raises(NotFoundError):
            asyncio.run(service.retry_alert_delivery("00000000-0000-4000-8000-000000000000"))

    def test_expired_alert_rejected(self):
        senders = scripted_senders(email=["U000"])
        service, store, _ = _make_service(_users(1), senders)
        alert = _create(service)
        asyncio.run(service.dispatch_alert(alert.id))
        store._alerts[alert.id].expires_at = datetime.now(timezone.utc) - timedelta(seconds=1)
        with pytest.raises(AlertExpiredError):
            asyncio.run(service.retry_alert_delivery(alert.id))

    def test_in_progress_rejected(self):
        senders = scripted_senders(email=["U000"])
        service, store, _ = _make_service(_users(1), senders)
        alert = _create(service)
        asyncio.run(service.dispatch_alert(alert.id))
        store._alerts[alert.id].delivery_status = AlertDeliveryStatus.IN_PROGRESS
        with pytest.raises(DeliveryInProgressError):
            asyncio.run(service.retry_alert_delivery(alert.id))

    def test_removed_recipient_stays_failed(self):
        senders = scripted_senders(email=["U000", "U001"])
        service, _, directory = _make_service(_users(2), senders)
        alert = _create(service)
        asyncio.run(service.dispatch_alert(alert.id))

        senders[Channel.EMAIL].fail_for.clear()
        senders[Channel.EMAIL].calls.clear()
        directory.remove("U001")
        result = asyncio.run(service.retry_alert_delivery(alert.id))

        assert senders[Channel.EMAIL].calls == ["U000"]
        assert result.success_count == 1
        assert result.failure_count == 1
        attempts = asyncio.run(service.store.list_attempts(alert.id, AttemptStatus.FAILED))
        assert attempts[0].last_error == "Recipient no longer registered"
        assert attempts[0].attempt_count == 2

    def test_provider_outage_raises_after_recording(self):
        senders = scripted_senders(sms=["U000", "U001"])
        service, store, _ = _make_service(_users(2, email=False, sms=True), senders)
        alert = _create(service)
        asyncio.run(service.dispatch_alert(alert.id))

        senders[Channel.SMS].outage = True
        with pytest.raises(ProviderError) as exc:
            asyncio.run(service.retry_alert_delivery(alert.id))
        assert exc.value.status_code == 500
        assert exc.value.details["failed_channels"] == ["sms"]

        after = asyncio.run(store.get_alert(alert.id))
        assert after.delivery_status == AlertDeliveryStatus.FAILED
        assert after.failed_count == 2
        attempts = asyncio.run(store.list_attempts(alert.id))
        assert all(a.attempt_count == 2 for a in attempts)


# ═══════════════════════════════════════════════════════════════════════════
# Section 7: Analytics
# ═══════════════════════════════════════════════════════════════════════════

class TestAnalytics:
    """Test get_alert_analytics."""

    def test_delivery_rate(self):
        senders = scripted_senders(email=["U000"])
        service, _, _ = _make_service(_users(4), senders)
        alert = _create(service)
        asyncio.run(service.dispatch_alert(alert.id))
        analytics = asyncio.run(service.get_alert_analytics(alert.id)).to_dict()
        assert analytics["deliveryRate"] == 75.0
        assert analytics["pendingCount"] == 0
        assert analytics["deliveryStats"]["email"] == {"sent": 3, "failed": 1}

    def test_undispatched(self):
        service, _, _ = _make_service([])
        alert = _create(service)
        analytics = asyncio.run(service.get_alert_analytics(alert.id))
        assert analytics.delivery_rate == 0.0
        assert analytics.delivery_stats is None

    def test_missing(self):
        service, _, _ = _make_service([])
        with pytest.raises(NotFoundError):
            asyncio.run(service.get_alert_analytics("nope"))
