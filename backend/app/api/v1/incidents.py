"""
FastAPI routes: incident reports.

Admin (mounted at /api/admin/incidents):
    GET  /                         — filtered, paginated list (authenticated)
    PUT  /{reportId}/{action}      — approve | reject | resolve | verify
                                     (MODERATOR or above)

Public (mounted at /api/incidents):
    POST /report                   — submit a report (may corroborate an
                                     existing incident instead of opening one)
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, status

from backend.app.api.deps import (
    ServiceContainer,
    get_container,
    require_authenticated,
    require_moderator,
)
from backend.app.api.schemas import IncidentReportRequest
from backend.app.core.auth import AdminUser
from backend.app.core.errors import ValidationError
from backend.app.incidents.intake import ReportSubmission
from backend.app.incidents.review import parse_action, parse_filters

router = APIRouter(prefix="/api/admin/incidents", tags=["admin-incidents"])
public_router = APIRouter(prefix="/api/incidents", tags=["incidents"])

_PAST_TENSE = {
    "approve": "approved",
    "reject": "rejected",
    "resolve": "resolved",
    "verify": "verified",
}


def _int_or_none(value: Optional[str]) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except ValueError:
        return None


@router.get("", summary="List incident reports")
async def list_incidents(
    page: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    parish: Optional[str] = Query(None),
    status_: Optional[str] = Query(None, alias="status"),
    incident_type: Optional[str] = Query(None, alias="incidentType"),
    severity: Optional[str] = Query(None),
    date_from: Optional[str] = Query(None, alias="dateFrom"),
    date_to: Optional[str] = Query(None, alias="dateTo"),
    user: AdminUser = Depends(require_authenticated),
    container: ServiceContainer = Depends(get_container),
) -> Dict[str, Any]:
    filters = parse_filters({
        "parish": parish,
        "status": status_,
        "incidentType": incident_type,
        "severity": severity,
        "dateFrom": date_from,
        "dateTo": date_to,
    })
    result = await container.review.list_incidents(
        filters, _int_or_none(page), _int_or_none(limit),
    )
    return {
        "success": True,
        "data": [r.to_dict() for r in result.items],
        "pagination": result.pagination(),
    }


@router.put("/{rest:path}", summary="Moderate an incident report")
async def update_incident(
    rest: str,
    user: AdminUser = Depends(require_moderator),
    container: ServiceContainer = Depends(get_container),
) -> Dict[str, Any]:
    parts = rest.strip("/").split("/")
    if len(parts) != 2 or not all(p.strip() for p in parts):
        raise ValidationError("Invalid request path. Expected /{reportId}/{action}")

    report_id, raw_action = parts
    action = parse_action(raw_action)
    if action is None:
        raise ValidationError(
            f"Invalid action: {raw_action}. Must be approve, reject, resolve or verify",
            field="action",
        )

    report = await container.review.apply_action(report_id, action, user)
    return {
        "success": True,
        "message": f"Incident report {_PAST_TENSE[action.value]} successfully",
        "data": {
            "id": report.id,
            "status": report.review_status.value,
            "verificationStatus": report.verification_status.value,
            "updatedAt": report.updated_at.isoformat(),
        },
    }


@public_router.post("/report", status_code=status.HTTP_201_CREATED, summary="Submit a report")
async def submit_report(
    body: IncidentReportRequest,
    container: ServiceContainer = Depends(get_container),
) -> Dict[str, Any]:
    result = await container.intake.submit(ReportSubmission(
        incident_type=body.incident_type,
        severity=body.severity,
        parish=body.parish,
        description=body.description,
        incident_date=body.incident_date,
        community=body.community,
        address=body.address,
        reporter_id=body.reporter_id,
        reporter_name=body.reporter_name,
        reporter_phone=body.reporter_phone,
        is_anonymous=body.is_anonymous,
        receive_updates=body.receive_updates,
        latitude=body.latitude,
        longitude=body.longitude,
    ))
    report = result.report
    return {
        "success": True,
        "message": (
            "Report added to an existing incident" if result.corroborated
            else "Incident report submitted"
        ),
        "data": {
            "id": report.id,
            "reportCount": report.report_count,
            "verificationStatus": report.verification_status.value,
            "status": report.review_status.value,
            "corroborated": result.corroborated,
        },
    }
