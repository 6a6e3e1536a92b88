"""
intake.py — Public incident report intake.

Pipeline:
    1. Sanitise free text, names, phone numbers
    2. Validate enums, description, incident date, reporter details
    3. Strip reporter identity from anonymous reports
    4. Keep coordinates only inside Jamaica's bounding box
    5. Ask the CorroborationMatcher for an open incident describing the
       same event; corroborate it, or open a new incident

═══════════════════════════════════════════════════════════════════════════
CORROBORATION MATCH
═══════════════════════════════════════════════════════════════════════════

    Same incident type                      required
    Same parish                             required
    Same community (case/space-insensitive) required; two blanks match
    Candidate created within the window     default 6 hours
    Candidate review status                 not REJECTED / RESOLVED
    Candidate verification status           not ODPEM_VERIFIED

    The most recent matching candidate wins.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional, Union

from backend.app.core.enums import Parish, Severity, parse_enum
from backend.app.core.errors import ValidationError
from backend.app.incidents.models import (
    IncidentReport,
    IncidentType,
    ReportStatus,
    VerificationStatus,
)
from backend.app.incidents.verification import VerificationEngine
from backend.app.storage.base import IncidentStore

logger = logging.getLogger(__name__)

# Jamaica bounding box
LAT_MIN, LAT_MAX = 17.7, 18.5
LON_MIN, LON_MAX = -78.4, -76.2

MIN_DESCRIPTION_LENGTH = 10
MAX_TEXT_LENGTH = 1000
MAX_NAME_LENGTH = 100
MAX_ADDRESS_LENGTH = 500

_CLOSED_REVIEW = frozenset({ReportStatus.REJECTED, ReportStatus.RESOLVED})


# ═══════════════════════════════════════════════════════════════════════════
# Sanitisers
# ═══════════════════════════════════════════════════════════════════════════

def sanitize_text(text: str, limit: int = MAX_TEXT_LENGTH) -> str:
    return re.sub(r"[<>'\"]", "", text.strip())[:limit]


def sanitize_address(text: str) -> str:
    return re.sub(r"[<>]", "", text.strip())[:MAX_ADDRESS_LENGTH]


def sanitize_name(name: str) -> str:
    cleaned = re.sub(r"[^a-zA-Z\s\-']", "", name.strip())
    return re.sub(r"\s+", " ", cleaned)[:MAX_NAME_LENGTH]


def sanitize_phone(phone: str) -> str:
    """Normalise Jamaican numbers to E.164 (+1876…); others pass through."""
    cleaned = re.sub(r"[^\d+]", "", phone)
    if cleaned.startswith("+1876"):
        return cleaned
    if cleaned.startswith("1876"):
        return "+" + cleaned
    if cleaned.startswith("876"):
        return "+1" + cleaned
    if len(cleaned) == 7:
        return "+1876" + cleaned
    return cleaned


def normalize_community(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    text = re.sub(r"\s+", " ", value.strip().lower())
    return text or None


def within_jamaica(latitude: float, longitude: float) -> bool:
    return LAT_MIN <= latitude <= LAT_MAX and LON_MIN <= longitude <= LON_MAX


# ═══════════════════════════════════════════════════════════════════════════
# Submission
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class ReportSubmission:
    incident_type: Union[IncidentType, str]
    severity: Union[Severity, str]
    parish: Union[Parish, str]
    description: str
    incident_date: Optional[date] = None
    community: Optional[str] = None
    address: Optional[str] = None
    reporter_id: Optional[str] = None
    reporter_name: Optional[str] = None
    reporter_phone: Optional[str] = None
    is_anonymous: bool = False
    receive_updates: bool = False
    latitude: Optional[float] = None
    longitude: Optional[float] = None


@dataclass(frozen=True)
class IntakeResult:
    report: IncidentReport
    corroborated: bool


def _enum_field(enum_cls, value, field: str):
    if isinstance(value, enum_cls):
        return value
    parsed = parse_enum(enum_cls, value if isinstance(value, str) else None)
    if parsed is None:
        raise ValidationError(f"Valid {field} is required", field=field)
    return parsed


def build_report(
    submission: ReportSubmission,
    *,
    max_age_days: int = 30,
    today: Optional[date] = None,
) -> IncidentReport:
    """Validate and sanitise a submission into a new (unsaved) report."""
    today = today or datetime.now(timezone.utc).date()

    incident_type = _enum_field(IncidentType, submission.incident_type, "incidentType")
    severity = _enum_field(Severity, submission.severity, "severity")
    parish = _enum_field(Parish, submission.parish, "parish")

    description = sanitize_text(submission.description or "")
    if len(description) < MIN_DESCRIPTION_LENGTH:
        raise ValidationError(
            f"Description must be at least {MIN_DESCRIPTION_LENGTH} characters",
            field="description",
        )

    if submission.incident_date is None:
        raise ValidationError("Incident date is required", field="incidentDate")
    if submission.incident_date > today:
        raise ValidationError("Incident date cannot be in the future", field="incidentDate")
    if submission.incident_date < today - timedelta(days=max_age_days):
        raise ValidationError(
            f"Incident date cannot be more than {max_age_days} days in the past",
            field="incidentDate",
        )

    reporter_name = sanitize_name(submission.reporter_name) if submission.reporter_name else None
    reporter_phone = sanitize_phone(submission.reporter_phone) if submission.reporter_phone else None
    reporter_id = submission.reporter_id
    receive_updates = submission.receive_updates

    if submission.is_anonymous:
        reporter_id = reporter_name = reporter_phone = None
        receive_updates = False
    elif receive_updates and (not reporter_name or len(reporter_name) < 2):
        raise ValidationError(
            "Reporter name is required for non-anonymous reports with updates",
            field="reporterName",
        )

    latitude = longitude = None
    if submission.latitude is not None and submission.longitude is not None:
        if within_jamaica(submission.latitude, submission.longitude):
            latitude, longitude = submission.latitude, submission.longitude

    community = sanitize_text(submission.community, MAX_NAME_LENGTH) if submission.community else None

    return IncidentReport(
        incident_type=incident_type,
        severity=severity,
        parish=parish,
        description=description,
        community=community or None,
        address=sanitize_address(submission.address) if submission.address else None,
        incident_date=submission.incident_date,
        reporter_id=reporter_id,
        reporter_name=reporter_name or None,
        reporter_phone=reporter_phone or None,
        is_anonymous=submission.is_anonymous,
        receive_updates=receive_updates,
        latitude=latitude,
        longitude=longitude,
    )


# ═══════════════════════════════════════════════════════════════════════════
# Matching & intake
# ═══════════════════════════════════════════════════════════════════════════

class CorroborationMatcher:
    def __init__(self, store: IncidentStore, *, window_hours: float = 6.0):
        self._store = store
        self.window = timedelta(hours=window_hours)

    @staticmethod
    def is_open_candidate(candidate: IncidentReport) -> bool:
        return (
            candidate.review_status not in _CLOSED_REVIEW
            and candidate.verification_status != VerificationStatus.ODPEM_VERIFIED
        )

    async def find_match(
        self, report: IncidentReport, at: Optional[datetime] = None,
    ) -> Optional[IncidentReport]:
        since = (at or datetime.now(timezone.utc)) - self.window
        candidates: List[IncidentReport] = await self._store.find_candidates(
            report.incident_type, report.parish, since,
        )
        community = normalize_community(report.community)
        for candidate in candidates:
            if candidate.id == report.id:
                continue
            if normalize_community(candidate.community) != community:
                continue
            if self.is_open_candidate(candidate):
                return candidate
        return None


class ReportIntake:
    def __init__(
        self,
        engine: VerificationEngine,
        matcher: CorroborationMatcher,
        *,
        max_age_days: int = 30,
    ):
        self._engine = engine
        self._matcher = matcher
        self.max_age_days = max_age_days

    async def submit(self, submission: ReportSubmission) -> IntakeResult:
        report = build_report(submission, max_age_days=self.max_age_days)

        match = await self._matcher.find_match(report)
        if match is not None:
            updated = await self._engine.corroborate(match.id, report.reporter_id)
            logger.info(
                "Report corroborates incident %s (%d reports)",
                updated.id, updated.report_count, extra={"incident_id": updated.id},
            )
            return IntakeResult(report=updated, corroborated=True)

        created = await self._engine.open_incident(report)
        return IntakeResult(report=created, corroborated=False)
