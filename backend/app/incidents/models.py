"""
models.py — Crowd-sourced incident reports and their two status dimensions.

    verification_status   credibility, owned by the verification engine
        UNVERIFIED ──corroboration ≥ threshold──▶ COMMUNITY_CONFIRMED
             │                                          │
             └────────── admin confirm ───────▶ ODPEM_VERIFIED ◀┘   (terminal)

    review_status         moderation, owned by the admin-review workflow
        PENDING → APPROVED | REJECTED | RESOLVED

The two never drive each other.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional

from backend.app.core.enums import Parish, Severity


class IncidentType(str, Enum):
    FLOOD          = "FLOOD"
    FIRE           = "FIRE"
    ACCIDENT       = "ACCIDENT"
    CRIME          = "CRIME"
    MEDICAL        = "MEDICAL"
    WEATHER        = "WEATHER"
    INFRASTRUCTURE = "INFRASTRUCTURE"
    POWER          = "POWER"
    OTHER          = "OTHER"


class VerificationStatus(str, Enum):
    UNVERIFIED          = "UNVERIFIED"
    COMMUNITY_CONFIRMED = "COMMUNITY_CONFIRMED"
    ODPEM_VERIFIED      = "ODPEM_VERIFIED"


class ReportStatus(str, Enum):
    PENDING  = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    RESOLVED = "RESOLVED"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class IncidentReport:
    incident_type: IncidentType
    severity: Severity
    parish: Parish
    description: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    community: Optional[str] = None
    address: Optional[str] = None
    incident_date: Optional[date] = None
    reporter_id: Optional[str] = None          # None when anonymous
    reporter_name: Optional[str] = None
    reporter_phone: Optional[str] = None
    is_anonymous: bool = False
    receive_updates: bool = False
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    verification_status: VerificationStatus = VerificationStatus.UNVERIFIED
    review_status: ReportStatus = ReportStatus.PENDING
    report_count: int = 1
    corroborating_reporters: FrozenSet[str] = frozenset()
    escalated_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None
    verified_by: Optional[str] = None
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    def copy(self) -> "IncidentReport":
        return replace(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "incidentType": self.incident_type.value,
            "severity": self.severity.value,
            "parish": self.parish.value,
            "community": self.community,
            "address": self.address,
            "description": self.description,
            "incidentDate": self.incident_date.isoformat() if self.incident_date else None,
            "reporterName": self.reporter_name,
            "isAnonymous": self.is_anonymous,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "verificationStatus": self.verification_status.value,
            "status": self.review_status.value,
            "reportCount": self.report_count,
            "escalatedAt": self.escalated_at.isoformat() if self.escalated_at else None,
            "verifiedAt": self.verified_at.isoformat() if self.verified_at else None,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class IncidentFilters:
    """Admin list filters; every field optional, unset means unfiltered."""
    parish: Optional[Parish] = None
    status: Optional[ReportStatus] = None
    incident_type: Optional[IncidentType] = None
    severity: Optional[Severity] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None

    def matches(self, report: IncidentReport) -> bool:
        if self.parish is not None and report.parish != self.parish:
            return False
        if self.status is not None and report.review_status != self.status:
            return False
        if self.incident_type is not None and report.incident_type != self.incident_type:
            return False
        if self.severity is not None and report.severity != self.severity:
            return False
        if self.date_from is not None and report.created_at < self.date_from:
            return False
        if self.date_to is not None and report.created_at > self.date_to:
            return False
        return True
