"""
review.py — Admin moderation of incident reports.

    list      filter + paginate (invalid filter values are ignored)
    approve   review_status → APPROVED
    reject    review_status → REJECTED
    resolve   review_status → RESOLVED
    verify    verification_status → ODPEM_VERIFIED (via the engine)

Moderation never touches verification_status except through ``verify``.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, time, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from backend.app.core.auth import AdminUser
from backend.app.core.enums import Parish, Severity, parse_enum
from backend.app.core.errors import NotFoundError
from backend.app.incidents.models import (
    IncidentFilters,
    IncidentReport,
    IncidentType,
    ReportStatus,
)
from backend.app.incidents.verification import VerificationEngine
from backend.app.storage.base import IncidentStore

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


class IncidentAction(str, Enum):
    APPROVE = "approve"
    REJECT  = "reject"
    RESOLVE = "resolve"
    VERIFY  = "verify"


_REVIEW_TARGETS = {
    IncidentAction.APPROVE: ReportStatus.APPROVED,
    IncidentAction.REJECT:  ReportStatus.REJECTED,
    IncidentAction.RESOLVE: ReportStatus.RESOLVED,
}


def parse_action(value: str) -> Optional[IncidentAction]:
    try:
        return IncidentAction(value.strip().lower())
    except ValueError:
        return None


def _parse_datetime(value: Optional[str], *, end_of_day: bool = False) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if end_of_day and len(value.strip()) == 10:
        parsed = datetime.combine(parsed.date(), time.max)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_filters(params: Mapping[str, Optional[str]]) -> IncidentFilters:
    """Build filters from query parameters, dropping anything unparseable."""
    return IncidentFilters(
        parish=parse_enum(Parish, params.get("parish")),
        status=parse_enum(ReportStatus, params.get("status")),
        incident_type=parse_enum(IncidentType, params.get("incidentType")),
        severity=parse_enum(Severity, params.get("severity")),
        date_from=_parse_datetime(params.get("dateFrom")),
        date_to=_parse_datetime(params.get("dateTo"), end_of_day=True),
    )


def clamp_paging(page: Optional[int], limit: Optional[int]) -> tuple:
    page = page if page and page > 0 else 1
    if limit is None:
        limit = DEFAULT_PAGE_SIZE
    limit = max(1, min(MAX_PAGE_SIZE, limit))
    return page, limit


@dataclass(frozen=True)
class IncidentPage:
    items: List[IncidentReport]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.total else 0

    def pagination(self) -> Dict[str, Any]:
        return {
            "page": self.page,
            "limit": self.limit,
            "total": self.total,
            "totalPages": self.total_pages,
        }


class IncidentReviewService:
    def __init__(self, store: IncidentStore, engine: VerificationEngine):
        self._store = store
        self._engine = engine

    async def list_incidents(
        self,
        filters: IncidentFilters,
        page: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> IncidentPage:
        page, limit = clamp_paging(page, limit)
        items, total = await self._store.list_incidents(filters, (page - 1) * limit, limit)
        return IncidentPage(items=items, page=page, limit=limit, total=total)

    async def apply_action(
        self, incident_id: str, action: IncidentAction, admin: AdminUser,
    ) -> IncidentReport:
        if action == IncidentAction.VERIFY:
            report = await self._engine.confirm(incident_id, admin)
        else:
            report = await self._store.set_review_status(
                incident_id, _REVIEW_TARGETS[action], datetime.now(timezone.utc),
            )
            if report is None:
                raise NotFoundError("Incident report", incident_id=incident_id)

        logger.info(
            "Admin %s (%s) applied '%s' to incident %s",
            admin.email or admin.id, admin.role.value, action.value, incident_id,
            extra={"incident_id": incident_id},
        )
        return report
