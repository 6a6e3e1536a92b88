"""
alert_service.py — Core alert broadcasting orchestration engine.

This is the central coordinator that:
    1. Validates and stores a new alert (PENDING)
    2. Claims the alert for a run (compare-and-set → IN_PROGRESS)
    3. Resolves (user, channel) targets for the alert's parishes
    4. Fans out through the dispatcher in throttled batches
    5. Records every outcome through the delivery tracker
    6. Finalises COMPLETED / FAILED from the counters
    7. Re-runs exactly the FAILED subset on operator retry

═══════════════════════════════════════════════════════════════════════════
ORCHESTRATION FLOW
═══════════════════════════════════════════════════════════════════════════

    ┌─────────────────────┐
    │  create_alert       │  validate type / severity / parishes / expiry
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  dispatch_alert     │  PENDING ──claim──▶ IN_PROGRESS
    │                     │  (loser of the race → 409)
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  RecipientResolver  │  parish ∩ eligibility ∩ opt-ins
    └─────────┬───────────┘  → recipient_count, dispatched_at
              │
              ▼
    ┌─────────────────────┐
    │  Dispatcher         │  batches of 100, 1s apart, per-channel
    │                     │  concurrency, provider circuit per channel
    └─────────┬───────────┘
              │ on_outcome
              ▼
    ┌─────────────────────┐
    │  DeliveryTracker    │  attempt upsert + counter delta (atomic)
    └─────────┬───────────┘
              │
              ▼
          COMPLETED  (failed == 0, all delivered)
          FAILED     (failures remain; retry allowed)

    Aborted run (store / infrastructure error):
        before any send   → back to PENDING
        mid-run           → unrecorded targets recorded Failed, alert FAILED

═══════════════════════════════════════════════════════════════════════════
RETRY
═══════════════════════════════════════════════════════════════════════════

    Trigger        Operator, via POST /api/alerts/retry/{alertId}
    Scope          attempts FAILED at call time, nothing else
    Throttle       batches of 50, 2s apart
    Exclusion      FAILED ──claim──▶ IN_PROGRESS
    Counters       delta only; recipient_count never changes

    Preconditions, in order:
        alert exists                           else 404
        delivery_stats set and failed > 0      else 400 (nothing to retry)
        not expired                            else 410
        no run in progress                     else 409

    If every retried send failed because each involved provider was
    unreachable, outcomes are still recorded and a ProviderError (500)
    carries the details.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Union

from backend.app.alerts.dispatcher import NotificationDispatcher
from backend.app.alerts.models import (
    Alert,
    AlertAnalytics,
    AlertDeliveryStatus,
    AlertType,
    AttemptState,
    DeliveryTarget,
    NotificationPayload,
    RetryResult,
)
from backend.app.alerts.recipients import RecipientResolver
from backend.app.alerts.tracker import DeliveryTracker, RetryCoordinator, involved_channels
from backend.app.core.enums import Parish, Severity, parse_enum
from backend.app.core.errors import (
    AlertExpiredError,
    AlreadyDispatchedError,
    DeliveryInProgressError,
    NoFailuresError,
    NotFoundError,
    ProviderError,
    ValidationError,
)
from backend.app.storage.base import AlertStore, RecipientDirectory

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def _coerce(enum_cls, value, field: str):
    if isinstance(value, enum_cls):
        return value
    parsed = parse_enum(enum_cls, value if isinstance(value, str) else None)
    if parsed is None:
        raise ValidationError(f"Invalid {field}: {value!r}", field=field)
    return parsed


class AlertService:
    """
    Alert lifecycle: create, dispatch, retry, read.

    Parameters
    ----------
    store : AlertStore
    directory : RecipientDirectory
    dispatcher : NotificationDispatcher
    batch_size, batch_delay_seconds
        First-dispatch throttling.
    retry_batch_size, retry_batch_delay_seconds
        Retry throttling.
    """

    def __init__(
        self,
        store: AlertStore,
        directory: RecipientDirectory,
        dispatcher: NotificationDispatcher,
        *,
        batch_size: int = 100,
        batch_delay_seconds: float = 1.0,
        retry_batch_size: int = 50,
        retry_batch_delay_seconds: float = 2.0,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.resolver = RecipientResolver(directory)
        self.tracker = DeliveryTracker(store)
        self.retry_coordinator = RetryCoordinator(
            store, directory, dispatcher, self.tracker,
            batch_size=retry_batch_size,
            batch_delay_seconds=retry_batch_delay_seconds,
        )
        self.batch_size = batch_size
        self.batch_delay_seconds = batch_delay_seconds

    # ─────────────────────────────────────────────────────────────────────
    # Create
    # ─────────────────────────────────────────────────────────────────────

    async def create_alert(
        self,
        type: Union[AlertType, str],
        severity: Union[Severity, str],
        title: str,
        message: str,
        parishes: Iterable[Union[Parish, str]],
        *,
        expires_at: Optional[datetime] = None,
        created_by: Optional[str] = None,
    ) -> Alert:
        alert_type = _coerce(AlertType, type, "type")
        alert_severity = _coerce(Severity, severity, "severity")

        if not title or not title.strip():
            raise ValidationError("Title is required", field="title")
        if not message or not message.strip():
            raise ValidationError("Message is required", field="message")

        parish_set = frozenset(_coerce(Parish, p, "parish") for p in parishes)
        if not parish_set:
            raise ValidationError("At least one parish is required", field="parishes")

        if expires_at is not None:
            expires_at = _as_utc(expires_at)
            if expires_at <= _now():
                raise ValidationError("Expiry must be in the future", field="expiresAt")

        alert = Alert(
            type=alert_type,
            severity=alert_severity,
            title=title.strip(),
            message=message.strip(),
            parishes=parish_set,
            expires_at=expires_at,
            created_by=created_by,
        )
        stored = await self.store.add_alert(alert)
        logger.info(
            "Alert %s created [%s/%s] for %s",
            stored.id, stored.type.value, stored.severity.value,
            sorted(p.value for p in stored.parishes),
            extra={"alert_id": stored.id},
        )
        return stored

    # ─────────────────────────────────────────────────────────────────────
    # Dispatch
    # ─────────────────────────────────────────────────────────────────────

    async def _require(self, alert_id: str) -> Alert:
        alert = await self.store.get_alert(alert_id)
        if alert is None:
            raise NotFoundError("Alert", alert_id=alert_id)
        return alert

    async def dispatch_alert(self, alert_id: str) -> Alert:
        """
        First delivery of a PENDING alert.

        Raises
        ------
        NotFoundError, AlertExpiredError, DeliveryInProgressError,
        AlreadyDispatchedError
        """
        alert = await self._require(alert_id)
        if alert.is_expired():
            raise AlertExpiredError(alert_id, alert.expires_at.isoformat())
        if alert.delivery_status == AlertDeliveryStatus.IN_PROGRESS:
            raise DeliveryInProgressError(alert_id)
        if alert.delivery_status != AlertDeliveryStatus.PENDING:
            raise AlreadyDispatchedError(alert_id, alert.delivery_status.value)

        if not await self.store.claim_alert(alert_id, {AlertDeliveryStatus.PENDING}):
            current = await self._require(alert_id)
            if current.delivery_status == AlertDeliveryStatus.IN_PROGRESS:
                raise DeliveryInProgressError(alert_id)
            raise AlreadyDispatchedError(alert_id, current.delivery_status.value)

        logger.info(
            "Broadcasting alert %s [%s] — %s",
            alert_id, alert.severity.value, alert.title,
            extra={"alert_id": alert_id},
        )

        async def on_outcome(target: DeliveryTarget, state: AttemptState) -> None:
            await self.tracker.record(alert_id, target.recipient.id, target.channel, state)

        targets: List[DeliveryTarget] = []
        begun = False
        try:
            targets = await self.resolver.resolve(alert)
            await self.store.begin_dispatch(alert_id, len(targets), _now())
            begun = True
            await self.dispatcher.dispatch(
                targets,
                NotificationPayload.from_alert(alert),
                on_outcome,
                batch_size=self.batch_size,
                batch_delay_seconds=self.batch_delay_seconds,
            )
        except Exception as exc:
            logger.exception("Alert %s dispatch aborted", alert_id, extra={"alert_id": alert_id})
            await self._recover_aborted_dispatch(alert_id, targets, begun, exc)
            raise

        return await self.tracker.finalize(alert_id)

    async def _recover_aborted_dispatch(
        self, alert_id: str, targets: List[DeliveryTarget], begun: bool, exc: Exception,
    ) -> None:
        """
        Leave an aborted alert in a state an operator can act on.

        Nothing sent yet → back to PENDING, dispatch may run again.
        Otherwise every target without an attempt is recorded as Failed and
        the alert ends FAILED, so retry reaches exactly those targets.
        """
        try:
            if not begun:
                await self.store.set_status(alert_id, AlertDeliveryStatus.PENDING)
                return
            filled = await self.tracker.fail_unrecorded(
                alert_id, targets, f"Dispatch aborted: {str(exc) or type(exc).__name__}",
            )
            if filled:
                logger.warning(
                    "Alert %s: %d undelivered targets marked failed for retry",
                    alert_id, filled, extra={"alert_id": alert_id},
                )
            await self.store.set_status(alert_id, AlertDeliveryStatus.FAILED)
        except Exception:
            logger.exception(
                "Alert %s: recovery after aborted dispatch failed", alert_id,
                extra={"alert_id": alert_id},
            )

    async def send_alert(
        self,
        type: Union[AlertType, str],
        severity: Union[Severity, str],
        title: str,
        message: str,
        parishes: Iterable[Union[Parish, str]],
        *,
        expires_at: Optional[datetime] = None,
        created_by: Optional[str] = None,
        send_immediately: bool = True,
    ) -> Alert:
        """Create an alert and, unless told otherwise, dispatch it straight away."""
        alert = await self.create_alert(
            type, severity, title, message, parishes,
            expires_at=expires_at, created_by=created_by,
        )
        if not send_immediately:
            return alert
        return await self.dispatch_alert(alert.id)

    # ─────────────────────────────────────────────────────────────────────
    # Retry
    # ─────────────────────────────────────────────────────────────────────

    async def retry_alert_delivery(self, alert_id: str) -> RetryResult:
        """
        Re-send every delivery currently FAILED for ``alert_id``.

        Returns
        -------
        RetryResult
            total_retried / success_count / failure_count and per-channel
            stats of this retry run only.

        Raises
        ------
        NotFoundError, NoFailuresError, AlertExpiredError,
        DeliveryInProgressError, ProviderError
        """
        alert = await self._require(alert_id)
        if alert.delivery_stats is None or alert.failed_count == 0:
            raise NoFailuresError(alert_id)
        if alert.is_expired():
            raise AlertExpiredError(alert_id, alert.expires_at.isoformat())
        if alert.delivery_status == AlertDeliveryStatus.IN_PROGRESS:
            raise DeliveryInProgressError(alert_id)

        if not await self.store.claim_alert(alert_id, {AlertDeliveryStatus.FAILED}):
            current = await self._require(alert_id)
            if current.delivery_status == AlertDeliveryStatus.IN_PROGRESS:
                raise DeliveryInProgressError(alert_id)
            raise NoFailuresError(alert_id)

        try:
            result = await self.retry_coordinator.retry_failed(alert)
        except Exception:
            logger.exception("Alert %s retry aborted", alert_id, extra={"alert_id": alert_id})
            await self.store.set_status(alert_id, AlertDeliveryStatus.FAILED)
            raise

        finalized = await self.tracker.finalize(alert_id)
        logger.info(
            "Alert %s retry: %d retried, %d ok, %d failed → %s",
            alert_id, result.total_retried, result.success_count,
            result.failure_count, finalized.delivery_status.value,
            extra={"alert_id": alert_id},
        )

        if (
            result.total_retried
            and result.success_count == 0
            and result.outage_channels
            and involved_channels(result) <= set(result.outage_channels)
        ):
            raise ProviderError(
                "Notification providers unavailable; no deliveries succeeded",
                alert_id=alert_id,
                failed_channels=[c.value for c in result.outage_channels],
                total_retried=result.total_retried,
                failure_count=result.failure_count,
            )
        return result

    # ─────────────────────────────────────────────────────────────────────
    # Read
    # ─────────────────────────────────────────────────────────────────────

    async def get_alert_by_id(self, alert_id: str) -> Optional[Alert]:
        return await self.store.get_alert(alert_id)

    async def get_alert_analytics(self, alert_id: str) -> AlertAnalytics:
        return AlertAnalytics.from_alert(await self._require(alert_id))
