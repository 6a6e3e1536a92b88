"""
FastAPI routes: alert creation, delivery retry and delivery read-outs.

    POST /api/alerts                       — create (optionally dispatch now)
    POST /api/alerts/{alertId}/dispatch    — first dispatch of a PENDING alert
    POST /api/alerts/retry/{alertId}       — retry exactly the failed deliveries
    GET  /api/alerts/{alertId}             — alert with counters
    GET  /api/alerts/{alertId}/analytics   — delivery rate / per-channel stats

All routes require an admin principal of MODERATOR or above (401 otherwise).
"""

from __future__ import annotations

import uuid
from typing import Any, Dict

from fastapi import APIRouter, Depends, status

from backend.app.api.deps import ServiceContainer, get_container, require_alert_operator
from backend.app.api.schemas import CreateAlertRequest
from backend.app.core.auth import AdminUser
from backend.app.core.errors import NotFoundError, ValidationError

router = APIRouter(prefix="/api/alerts", tags=["alerts"])


def _parse_alert_id(raw: str) -> str:
    value = raw.strip()
    if not value:
        raise ValidationError("Alert ID is required", field="alertId")
    try:
        return str(uuid.UUID(value))
    except ValueError:
        raise ValidationError("Invalid alert ID format", field="alertId") from None


@router.post("", status_code=status.HTTP_201_CREATED, summary="Create an alert")
async def create_alert(
    body: CreateAlertRequest,
    user: AdminUser = Depends(require_alert_operator),
    container: ServiceContainer = Depends(get_container),
) -> Dict[str, Any]:
    alert = await container.alerts.send_alert(
        body.type,
        body.severity,
        body.title,
        body.message,
        body.parishes,
        expires_at=body.expires_at,
        created_by=user.id,
        send_immediately=body.send_immediately,
    )
    return {
        "success": True,
        "data": alert.to_dict(),
        "message": "Alert sent" if body.send_immediately else "Alert created",
    }


@router.post("/retry", include_in_schema=False)
@router.post("/retry/", include_in_schema=False)
async def retry_without_id(
    user: AdminUser = Depends(require_alert_operator),
) -> Dict[str, Any]:
    raise ValidationError("Alert ID is required", field="alertId")


@router.post("/retry/{alert_id}", summary="Retry failed deliveries")
async def retry_alert(
    alert_id: str,
    user: AdminUser = Depends(require_alert_operator),
    container: ServiceContainer = Depends(get_container),
) -> Dict[str, Any]:
    alert_id = _parse_alert_id(alert_id)
    result = await container.alerts.retry_alert_delivery(alert_id)
    return {
        "success": True,
        "data": {"alertId": alert_id, "retryResult": result.to_dict()},
        "message": (
            f"Retry completed: {result.success_count} of "
            f"{result.total_retried} deliveries succeeded"
        ),
    }


@router.post("/{alert_id}/dispatch", summary="Dispatch a pending alert")
async def dispatch_alert(
    alert_id: str,
    user: AdminUser = Depends(require_alert_operator),
    container: ServiceContainer = Depends(get_container),
) -> Dict[str, Any]:
    alert = await container.alerts.dispatch_alert(_parse_alert_id(alert_id))
    return {"success": True, "data": alert.to_dict()}


@router.get("/{alert_id}", summary="Get an alert")
async def get_alert(
    alert_id: str,
    user: AdminUser = Depends(require_alert_operator),
    container: ServiceContainer = Depends(get_container),
) -> Dict[str, Any]:
    alert_id = _parse_alert_id(alert_id)
    alert = await container.alerts.get_alert_by_id(alert_id)
    if alert is None:
        raise NotFoundError("Alert", alert_id=alert_id)
    return {"success": True, "data": alert.to_dict()}


@router.get("/{alert_id}/analytics", summary="Delivery analytics")
async def get_alert_analytics(
    alert_id: str,
    user: AdminUser = Depends(require_alert_operator),
    container: ServiceContainer = Depends(get_container),
) -> Dict[str, Any]:
    analytics = await container.alerts.get_alert_analytics(_parse_alert_id(alert_id))
    return {"success": True, "data": analytics.to_dict()}
