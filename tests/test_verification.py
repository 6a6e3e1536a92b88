"""
test_verification.py — Tests for incident corroboration and verification.

Run with:
    pytest tests/test_verification.py -v
"""

from __future__ import annotations

import asyncio
from typing import List

import pytest

from backend.app.core.auth import AdminRole, AdminUser
from backend.app.core.enums import Parish, Severity
from backend.app.core.errors import InvalidTransitionError, NotFoundError
from backend.app.incidents.models import (
    IncidentReport,
    IncidentType,
    ReportStatus,
    VerificationStatus,
)
from backend.app.incidents.review import IncidentAction, IncidentReviewService
from backend.app.incidents.verification import VerificationEngine
from backend.app.storage.memory import InMemoryIncidentStore


ADMIN = AdminUser(id="admin-1", email="ops@odpem.gov.jm", role=AdminRole.ADMIN)


class _CountingNotifier:
    def __init__(self):
        self.escalated: List[str] = []

    async def escalate(self, report: IncidentReport) -> None:
        await asyncio.sleep(0)
        self.escalated.append(report.id)


def _make_report(reporter_id=None, **kwargs) -> IncidentReport:
    return IncidentReport(
        incident_type=kwargs.get("incident_type", IncidentType.FLOOD),
        severity=kwargs.get("severity", Severity.HIGH),
        parish=kwargs.get("parish", Parish.ST_CATHERINE),
        description="Water over the road at Bog Walk gorge",
        community=kwargs.get("community", "Bog Walk"),
        reporter_id=reporter_id,
    )


def _make_engine(threshold: int = 2):
    store = InMemoryIncidentStore()
    notifier = _CountingNotifier()
    return VerificationEngine(store, notifier, threshold=threshold), store, notifier


# ═══════════════════════════════════════════════════════════════════════════
# Corroboration & escalation
# ═══════════════════════════════════════════════════════════════════════════

class TestCorroboration:
    """Test report counting and one-time escalation."""

    def test_open_incident_is_unverified(self):
        engine, _, notifier = _make_engine()
        report = asyncio.run(engine.open_incident(_make_report("R1")))
        assert report.verification_status == VerificationStatus.UNVERIFIED
        assert report.report_count == 1
        assert report.escalated_at is None
        assert notifier.escalated == []

    def test_second_reporter_escalates(self):
        engine, _, notifier = _make_engine()
        report = asyncio.run(engine.open_incident(_make_report("R1")))
        updated = asyncio.run(engine.corroborate(report.id, "R2"))
        assert updated.report_count == 2
        assert updated.verification_status == VerificationStatus.COMMUNITY_CONFIRMED
        assert updated.escalated_at is not None
        assert notifier.escalated == [report.id]

    def test_further_reports_do_not_re_escalate(self):
        engine, store, notifier = _make_engine()
        report = asyncio.run(engine.open_incident(_make_report("R1")))
        asyncio.run(engine.corroborate(report.id, "R2"))
        first_escalation = asyncio.run(store.get_incident(report.id)).escalated_at

        updated = asyncio.run(engine.corroborate(report.id, "R3"))
        assert updated.report_count == 3
        assert updated.verification_status == VerificationStatus.COMMUNITY_CONFIRMED
        assert updated.escalated_at == first_escalation
        assert len(notifier.escalated) == 1

    def test_same_reporter_counts_once(self):
        engine, _, notifier = _make_engine()
        report = asyncio.run(engine.open_incident(_make_report("R1")))
        updated = asyncio.run(engine.corroborate(report.id, "R1"))
        assert updated.report_count == 1
        assert updated.verification_status == VerificationStatus.UNVERIFIED
        assert notifier.escalated == []

    def test_anonymous_reports_always_count(self):
        engine, _, _ = _make_engine(threshold=3)
        report = asyncio.run(engine.open_incident(_make_report(None)))
        asyncio.run(engine.corroborate(report.id, None))
        updated = asyncio.run(engine.corroborate(report.id, None))
        assert updated.report_count == 3
        assert updated.verification_status == VerificationStatus.COMMUNITY_CONFIRMED

    def test_concurrent_corroboration_escalates_once(self):
        engine, _, notifier = _make_engine(threshold=2)
        report = asyncio.run(engine.open_incident(_make_report("R1")))

        async def burst():
            return await asyncio.gather(*(
                engine.corroborate(report.id, f"R{i}") for i in range(2, 8)
            ))

        results = asyncio.run(burst())
        assert max(r.report_count for r in results) == 7
        assert notifier.escalated == [report.id]

    def test_threshold_of_one_escalates_on_open(self):
        engine, _, notifier = _make_engine(threshold=1)
        report = asyncio.run(engine.open_incident(_make_report("R1")))
        assert report.verification_status == VerificationStatus.COMMUNITY_CONFIRMED
        assert notifier.escalated == [report.id]

    def test_missing_incident(self):
        engine, _, _ = _make_engine()
        with pytest.raises(NotFoundError):
            asyncio.run(engine.corroborate("nope", "R1"))

    def test_invalid_threshold(self):
        with pytest.raises(ValueError):
            VerificationEngine(InMemoryIncidentStore(), threshold=0)


# ═══════════════════════════════════════════════════════════════════════════
# Admin verification
# ═══════════════════════════════════════════════════════════════════════════

class TestConfirm:
    """Test ODPEM verification."""

    def test_confirm_unverified(self):
        engine, _, _ = _make_engine()
        report = asyncio.run(engine.open_incident(_make_report("R1")))
        verified = asyncio.run(engine.confirm(report.id, ADMIN))
        assert verified.verification_status == VerificationStatus.ODPEM_VERIFIED
        assert verified.verified_by == "admin-1"
        assert verified.verified_at is not None

    def test_confirm_community_confirmed(self):
        engine, _, _ = _make_engine()
        report = asyncio.run(engine.open_incident(_make_report("R1")))
        asyncio.run(engine.corroborate(report.id, "R2"))
        verified = asyncio.run(engine.confirm(report.id, ADMIN))
        assert verified.verification_status == VerificationStatus.ODPEM_VERIFIED
        assert verified.escalated_at is not None

    def test_reconfirm_rejected(self):
        engine, _, _ = _make_engine()
        report = asyncio.run(engine.open_incident(_make_report("R1")))
        asyncio.run(engine.confirm(report.id, ADMIN))
        with pytest.raises(InvalidTransitionError) as exc:
            asyncio.run(engine.confirm(report.id, ADMIN))
        assert exc.value.status_code == 409

    def test_verified_is_terminal_for_corroboration(self):
        engine, _, notifier = _make_engine()
        report = asyncio.run(engine.open_incident(_make_report("R1")))
        asyncio.run(engine.confirm(report.id, ADMIN))
        updated = asyncio.run(engine.corroborate(report.id, "R2"))
        assert updated.verification_status == VerificationStatus.ODPEM_VERIFIED
        assert notifier.escalated == []

    def test_confirm_missing(self):
        engine, _, _ = _make_engine()
        with pytest.raises(NotFoundError):
            asyncio.run(engine.confirm("nope", ADMIN))


# ═══════════════════════════════════════════════════════════════════════════
# Moderation
# ═══════════════════════════════════════════════════════════════════════════

class TestReviewActions:
    """Test approve / reject / resolve / verify."""

    def _setup(self):
        engine, store, _ = _make_engine()
        review = IncidentReviewService(store, engine)
        report = asyncio.run(engine.open_incident(_make_report("R1")))
        return review, report

    @pytest.mark.parametrize("action,expected", [
        (IncidentAction.APPROVE, ReportStatus.APPROVED),
        (IncidentAction.REJECT, ReportStatus.REJECTED),
        (IncidentAction.RESOLVE, ReportStatus.RESOLVED),
    ])
    def test_review_leaves_verification_alone(self, action, expected):
        review, report = self._setup()
        updated = asyncio.run(review.apply_action(report.id, action, ADMIN))
        assert updated.review_status == expected
        assert updated.verification_status == VerificationStatus.UNVERIFIED

    def test_verify_leaves_review_alone(self):
        review, report = self._setup()
        updated = asyncio.run(review.apply_action(report.id, IncidentAction.VERIFY, ADMIN))
        assert updated.verification_status == VerificationStatus.ODPEM_VERIFIED
        assert updated.review_status == ReportStatus.PENDING

    def test_missing_report(self):
        review, _ = self._setup()
        with pytest.raises(NotFoundError):
            asyncio.run(review.apply_action("nope", IncidentAction.APPROVE, ADMIN))
