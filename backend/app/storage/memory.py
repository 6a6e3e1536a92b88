"""
In-process storage adapters.

Used by the development server and the test-suite. Each mutating method
runs its whole read-modify-write under one ``threading.Lock`` with no
``await`` inside, so concurrent coroutines (and TestClient threads) see
every update as atomic.

Returned objects are copies; mutating them never touches the store.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Collection, Dict, Iterable, List, Optional, Tuple

from backend.app.alerts.models import (
    Alert,
    AlertDeliveryStatus,
    AttemptState,
    AttemptStatus,
    Channel,
    DeliveryAttempt,
    Recipient,
    apply_outcome,
)
from backend.app.core.enums import Parish
from backend.app.core.errors import NotFoundError
from backend.app.incidents.models import (
    IncidentFilters,
    IncidentReport,
    IncidentType,
    ReportStatus,
    VerificationStatus,
)

logger = logging.getLogger(__name__)

AttemptKey = Tuple[str, str, Channel]


# ═══════════════════════════════════════════════════════════════════════════
# Alerts
# ═══════════════════════════════════════════════════════════════════════════

class InMemoryAlertStore:
    def __init__(self) -> None:
        self._alerts: Dict[str, Alert] = {}
        self._attempts: Dict[AttemptKey, DeliveryAttempt] = {}
        self._lock = threading.Lock()

    def _require(self, alert_id: str) -> Alert:
        alert = self._alerts.get(alert_id)
        if alert is None:
            raise NotFoundError("Alert", alert_id=alert_id)
        return alert

    async def add_alert(self, alert: Alert) -> Alert:
        with self._lock:
            self._alerts[alert.id] = alert.copy()
        return alert.copy()

    async def get_alert(self, alert_id: str) -> Optional[Alert]:
        with self._lock:
            alert = self._alerts.get(alert_id)
            return alert.copy() if alert else None

    async def claim_alert(
        self, alert_id: str, from_statuses: Collection[AlertDeliveryStatus],
    ) -> bool:
        with self._lock:
            alert = self._require(alert_id)
            if alert.delivery_status not in from_statuses:
                return False
            alert.delivery_status = AlertDeliveryStatus.IN_PROGRESS
            return True

    async def begin_dispatch(self, alert_id: str, recipient_count: int, at: datetime) -> None:
        with self._lock:
            alert = self._require(alert_id)
            alert.recipient_count = recipient_count
            alert.dispatched_at = at

    async def record_outcome(
        self, alert_id: str, recipient_id: str, channel: Channel, state: AttemptState,
    ) -> DeliveryAttempt:
        key = (alert_id, recipient_id, channel)
        with self._lock:
            alert = self._require(alert_id)
            attempt, delta = apply_outcome(
                self._attempts.get(key), alert_id, recipient_id, channel, state,
            )
            self._attempts[key] = attempt
            if not delta.is_zero:
                alert.apply_delta(delta)
            return attempt

    async def set_status(self, alert_id: str, status: AlertDeliveryStatus) -> Alert:
        with self._lock:
            alert = self._require(alert_id)
            alert.delivery_status = status
            return alert.copy()

    async def list_attempts(
        self, alert_id: str, status: Optional[AttemptStatus] = None,
    ) -> List[DeliveryAttempt]:
        with self._lock:
            return [
                a for (aid, _, _), a in self._attempts.items()
                if aid == alert_id and (status is None or a.status == status)
            ]


# ═══════════════════════════════════════════════════════════════════════════
# Recipients
# ═══════════════════════════════════════════════════════════════════════════

class InMemoryRecipientDirectory:
    def __init__(self, recipients: Iterable[Recipient] = ()) -> None:
        self._recipients: Dict[str, Recipient] = {r.id: r for r in recipients}

    def add(self, recipient: Recipient) -> None:
        self._recipients[recipient.id] = recipient

    def remove(self, recipient_id: str) -> None:
        self._recipients.pop(recipient_id, None)

    async def find_active_in_parishes(self, parishes: Iterable[Parish]) -> List[Recipient]:
        wanted = set(parishes)
        return [
            r for r in self._recipients.values()
            if r.is_active and r.parish in wanted
        ]

    async def get_recipients(self, recipient_ids: Iterable[str]) -> Dict[str, Recipient]:
        return {
            rid: self._recipients[rid]
            for rid in recipient_ids
            if rid in self._recipients
        }


# ═══════════════════════════════════════════════════════════════════════════
# Incidents
# ═══════════════════════════════════════════════════════════════════════════

class InMemoryIncidentStore:
    def __init__(self) -> None:
        self._reports: Dict[str, IncidentReport] = {}
        self._lock = threading.Lock()

    async def add_incident(self, report: IncidentReport) -> IncidentReport:
        with self._lock:
            stored = report.copy()
            if report.reporter_id:
                stored.corroborating_reporters = frozenset({report.reporter_id})
            self._reports[report.id] = stored
            return stored.copy()

    async def get_incident(self, incident_id: str) -> Optional[IncidentReport]:
        with self._lock:
            report = self._reports.get(incident_id)
            return report.copy() if report else None

    async def add_corroboration(
        self, incident_id: str, reporter_id: Optional[str], at: datetime,
    ) -> Tuple[Optional[IncidentReport], bool]:
        with self._lock:
            report = self._reports.get(incident_id)
            if report is None:
                return None, False
            if reporter_id and reporter_id in report.corroborating_reporters:
                return report.copy(), False
            report.report_count += 1
            if reporter_id:
                report.corroborating_reporters = report.corroborating_reporters | {reporter_id}
            report.updated_at = at
            return report.copy(), True

    async def promote_verification(
        self,
        incident_id: str,
        from_statuses: Collection[VerificationStatus],
        to_status: VerificationStatus,
        at: datetime,
        *,
        escalate: bool = False,
        verified_by: Optional[str] = None,
    ) -> Optional[IncidentReport]:
        with self._lock:
            report = self._reports.get(incident_id)
            if report is None or report.verification_status not in from_statuses:
                return None
            report.verification_status = to_status
            report.updated_at = at
            if escalate and report.escalated_at is None:
                report.escalated_at = at
            if to_status == VerificationStatus.ODPEM_VERIFIED:
                report.verified_at = at
                report.verified_by = verified_by
            return report.copy()

    async def set_review_status(
        self, incident_id: str, status: ReportStatus, at: datetime,
    ) -> Optional[IncidentReport]:
        with self._lock:
            report = self._reports.get(incident_id)
            if report is None:
                return None
            report.review_status = status
            report.updated_at = at
            return report.copy()

    async def find_candidates(
        self, incident_type: IncidentType, parish: Parish, since: datetime,
    ) -> List[IncidentReport]:
        with self._lock:
            found = [
                r.copy() for r in self._reports.values()
                if r.incident_type == incident_type
                and r.parish == parish
                and r.created_at >= since
            ]
        found.sort(key=lambda r: r.created_at, reverse=True)
        return found

    async def list_incidents(
        self, filters: IncidentFilters, offset: int, limit: int,
    ) -> Tuple[List[IncidentReport], int]:
        with self._lock:
            matched = [r.copy() for r in self._reports.values() if filters.matches(r)]
        matched.sort(key=lambda r: r.created_at, reverse=True)
        return matched[offset:offset + limit], len(matched)
