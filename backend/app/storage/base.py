"""
Persistence ports.

The delivery engine and the verification engine only talk to these
protocols. Every method that changes shared state is atomic on its own:
callers never read-modify-write counters or statuses themselves.

Adapters:
    storage.memory — in-process dicts guarded by a threading lock
    storage.sql    — SQLAlchemy 2.0 async (PostgreSQL in production)
"""

from __future__ import annotations

from datetime import datetime
from typing import Collection, Dict, Iterable, List, Optional, Protocol, Tuple

from backend.app.alerts.models import (
    Alert,
    AlertDeliveryStatus,
    AttemptState,
    AttemptStatus,
    Channel,
    DeliveryAttempt,
    Recipient,
)
from backend.app.core.enums import Parish
from backend.app.incidents.models import (
    IncidentFilters,
    IncidentReport,
    IncidentType,
    ReportStatus,
    VerificationStatus,
)


class AlertStore(Protocol):
    async def add_alert(self, alert: Alert) -> Alert: ...

    async def get_alert(self, alert_id: str) -> Optional[Alert]: ...

    async def claim_alert(
        self, alert_id: str, from_statuses: Collection[AlertDeliveryStatus],
    ) -> bool:
        """Compare-and-set: move to IN_PROGRESS iff status is in ``from_statuses``."""
        ...

    async def begin_dispatch(self, alert_id: str, recipient_count: int, at: datetime) -> None:
        """Fix the target count and mark per-channel stats as initialised."""
        ...

    async def record_outcome(
        self, alert_id: str, recipient_id: str, channel: Channel, state: AttemptState,
    ) -> DeliveryAttempt:
        """Upsert the attempt and apply its counter delta in one atomic step."""
        ...

    async def set_status(self, alert_id: str, status: AlertDeliveryStatus) -> Alert: ...

    async def list_attempts(
        self, alert_id: str, status: Optional[AttemptStatus] = None,
    ) -> List[DeliveryAttempt]: ...


class RecipientDirectory(Protocol):
    async def find_active_in_parishes(self, parishes: Iterable[Parish]) -> List[Recipient]: ...

    async def get_recipients(self, recipient_ids: Iterable[str]) -> Dict[str, Recipient]: ...


class IncidentStore(Protocol):
    async def add_incident(self, report: IncidentReport) -> IncidentReport: ...

    async def get_incident(self, incident_id: str) -> Optional[IncidentReport]: ...

    async def add_corroboration(
        self, incident_id: str, reporter_id: Optional[str], at: datetime,
    ) -> Tuple[Optional[IncidentReport], bool]:
        """
        Count one corroborating report.

        Returns (report, counted). ``counted`` is False when ``reporter_id``
        already reported this incident. ``report`` is None if absent.
        """
        ...

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
        """
        Compare-and-set on verification_status.

        Returns the updated report, or None when the current status was not
        in ``from_statuses``. With ``escalate`` the escalation timestamp is
        written only if still unset.
        """
        ...

    async def set_review_status(
        self, incident_id: str, status: ReportStatus, at: datetime,
    ) -> Optional[IncidentReport]: ...

    async def find_candidates(
        self, incident_type: IncidentType, parish: Parish, since: datetime,
    ) -> List[IncidentReport]: ...

    async def list_incidents(
        self, filters: IncidentFilters, offset: int, limit: int,
    ) -> Tuple[List[IncidentReport], int]: ...
