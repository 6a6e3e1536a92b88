"""
verification.py — Incident credibility state machine.

═══════════════════════════════════════════════════════════════════════════
TRANSITIONS
═══════════════════════════════════════════════════════════════════════════

    From                  Event                              To
    ───────────────────   ────────────────────────────────   ───────────────────
    (new)                 open_incident                      UNVERIFIED (count 1)
    UNVERIFIED            corroborate, count < threshold     UNVERIFIED
    UNVERIFIED            corroborate, count ≥ threshold     COMMUNITY_CONFIRMED
                                                             + escalated_at
                                                             + notifier fired
    COMMUNITY_CONFIRMED   corroborate                        COMMUNITY_CONFIRMED
    UNVERIFIED /
    COMMUNITY_CONFIRMED   confirm (admin)                    ODPEM_VERIFIED
    ODPEM_VERIFIED        anything                           ODPEM_VERIFIED

Escalation happens inside one compare-and-set (UNVERIFIED →
COMMUNITY_CONFIRMED); only the caller that wins it fires the notifier, so
two reports crossing the threshold at once escalate exactly once.

A named reporter counts once per incident. Anonymous reports always count.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional, Protocol

from backend.app.core.auth import AdminUser
from backend.app.core.errors import InvalidTransitionError, NotFoundError
from backend.app.incidents.models import IncidentReport, VerificationStatus
from backend.app.storage.base import IncidentStore

logger = logging.getLogger(__name__)

_ESCALATABLE = frozenset({VerificationStatus.UNVERIFIED})
_CONFIRMABLE = frozenset({
    VerificationStatus.UNVERIFIED,
    VerificationStatus.COMMUNITY_CONFIRMED,
})


class EscalationNotifier(Protocol):
    async def escalate(self, report: IncidentReport) -> None: ...


class LoggingEscalationNotifier:
    """Default notifier: writes the escalation to the admin log."""

    async def escalate(self, report: IncidentReport) -> None:
        logger.warning(
            "Incident %s escalated to admins: %s in %s (%d reports)",
            report.id, report.incident_type.value, report.parish.value, report.report_count,
            extra={"incident_id": report.id},
        )


def _now() -> datetime:
    return datetime.now(timezone.utc)


class VerificationEngine:
    def __init__(
        self,
        store: IncidentStore,
        notifier: Optional[EscalationNotifier] = None,
        *,
        threshold: int = 2,
    ):
        if threshold < 1:
            raise ValueError("threshold must be >= 1")
        self._store = store
        self._notifier = notifier or LoggingEscalationNotifier()
        self.threshold = threshold

    async def open_incident(self, report: IncidentReport) -> IncidentReport:
        report.verification_status = VerificationStatus.UNVERIFIED
        report.report_count = 1
        report.escalated_at = None
        stored = await self._store.add_incident(report)
        logger.info(
            "Incident %s opened: %s in %s",
            stored.id, stored.incident_type.value, stored.parish.value,
            extra={"incident_id": stored.id},
        )
        if stored.report_count >= self.threshold:
            return await self._escalate(stored)
        return stored

    async def corroborate(self, incident_id: str, reporter_id: Optional[str] = None) -> IncidentReport:
        report, counted = await self._store.add_corroboration(incident_id, reporter_id, _now())
        if report is None:
            raise NotFoundError("Incident report", incident_id=incident_id)
        if not counted:
            logger.info(
                "Incident %s: reporter %s already counted",
                incident_id, reporter_id, extra={"incident_id": incident_id},
            )
            return report

        if (
            report.verification_status == VerificationStatus.UNVERIFIED
            and report.report_count >= self.threshold
        ):
            return await self._escalate(report)
        return report

    async def _escalate(self, report: IncidentReport) -> IncidentReport:
        promoted = await self._store.promote_verification(
            report.id,
            _ESCALATABLE,
            VerificationStatus.COMMUNITY_CONFIRMED,
            _now(),
            escalate=True,
        )
        if promoted is None:
            # Lost the race, or an admin verified it first.
            current = await self._store.get_incident(report.id)
            return current or report

        logger.info(
            "Incident %s community-confirmed after %d reports",
            promoted.id, promoted.report_count, extra={"incident_id": promoted.id},
        )
        await self._notifier.escalate(promoted)
        return promoted

    async def confirm(self, incident_id: str, admin: AdminUser) -> IncidentReport:
        """
        Admin (ODPEM) verification. Terminal.

        Raises
        ------
        NotFoundError
            No such incident.
        InvalidTransitionError
            Already ODPEM_VERIFIED.
        """
        promoted = await self._store.promote_verification(
            incident_id,
            _CONFIRMABLE,
            VerificationStatus.ODPEM_VERIFIED,
            _now(),
            verified_by=admin.id,
        )
        if promoted is not None:
            logger.info(
                "Incident %s verified by %s", incident_id, admin.email or admin.id,
                extra={"incident_id": incident_id},
            )
            return promoted

        current = await self._store.get_incident(incident_id)
        if current is None:
            raise NotFoundError("Incident report", incident_id=incident_id)
        raise InvalidTransitionError(
            "Incident report",
            current.verification_status.value,
            VerificationStatus.ODPEM_VERIFIED.value,
        )
