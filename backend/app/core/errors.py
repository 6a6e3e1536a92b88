"""
Centralised error handling — exception hierarchy + FastAPI handlers.

Provides:
    • Domain-specific exception classes with HTTP status mapping
    • Consistent JSON error envelope: {"success": false, "error": ..., "code": ...}
    • Automatic logging of unhandled errors
    • Request context in error responses (non-production)

Per-recipient send failures never reach this module: they are recorded
on the delivery attempt and in the alert counters. Only request-level
failures (bad input, missing resources, unreachable providers) do.

Usage:
    from backend.app.core.errors import NotFoundError, register_error_handlers

    raise NotFoundError("Alert", alert_id="...")
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from backend.app.core.config import settings

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class JamAlertError(Exception):
    """Base exception for all application errors."""

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


class ValidationError(JamAlertError):
    """Input validation failed (400)."""

    def __init__(self, message: str, *, field: Optional[str] = None, **details: Any):
        d = {**details}
        if field:
            d["field"] = field
        super().__init__(
            message=message,
            status_code=400,
            error_code="VALIDATION_ERROR",
            details=d,
        )


class AuthenticationError(JamAlertError):
    """Missing or invalid credentials (401)."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(
            message=message,
            status_code=401,
            error_code="UNAUTHENTICATED",
        )


class AuthorizationError(JamAlertError):
    """Authenticated but role too low (403)."""

    def __init__(self, message: str = "Insufficient permissions", *, required_role: str = ""):
        super().__init__(
            message=message,
            status_code=403,
            error_code="FORBIDDEN",
            details={"required_role": required_role} if required_role else None,
        )


class NotFoundError(JamAlertError):
    """Resource not found (404)."""

    def __init__(self, resource: str, **identifiers: Any):
        details = {"resource": resource, **identifiers}
        super().__init__(
            message=f"{resource} not found",
            status_code=404,
            error_code="NOT_FOUND",
            details=details,
        )


class MethodNotAllowedError(JamAlertError):
    """HTTP method not supported on this route (405)."""

    def __init__(self, method: str = ""):
        super().__init__(
            message="Method not allowed",
            status_code=405,
            error_code="METHOD_NOT_ALLOWED",
            details={"method": method} if method else None,
        )


class NoFailuresError(JamAlertError):
    """Retry requested for an alert with nothing failed (400)."""

    def __init__(self, alert_id: str):
        super().__init__(
            message="No failed deliveries to retry for this alert.",
            status_code=400,
            error_code="NO_FAILED_DELIVERIES",
            details={"alert_id": alert_id},
        )


class DeliveryInProgressError(JamAlertError):
    """A dispatch or retry already holds the alert (409)."""

    def __init__(self, alert_id: str):
        super().__init__(
            message=f"Alert {alert_id} already has a delivery in progress",
            status_code=409,
            error_code="DELIVERY_IN_PROGRESS",
            details={"alert_id": alert_id},
        )


class AlreadyDispatchedError(JamAlertError):
    """First dispatch requested for an alert that has left PENDING (409)."""

    def __init__(self, alert_id: str, status: str):
        super().__init__(
            message=f"Alert {alert_id} was already dispatched (status={status}); use retry",
            status_code=409,
            error_code="ALREADY_DISPATCHED",
            details={"alert_id": alert_id, "status": status},
        )


class InvalidTransitionError(JamAlertError):
    """State machine transition not allowed from the current state (409)."""

    def __init__(self, entity: str, current: str, target: str):
        super().__init__(
            message=f"{entity} cannot move from {current} to {target}",
            status_code=409,
            error_code="INVALID_TRANSITION",
            details={"entity": entity, "current": current, "target": target},
        )


class AlertExpiredError(JamAlertError):
    """Dispatch or retry against an alert past expires_at (410)."""

    def __init__(self, alert_id: str, expires_at: str):
        super().__init__(
            message=f"Alert {alert_id} expired at {expires_at}",
            status_code=410,
            error_code="ALERT_EXPIRED",
            details={"alert_id": alert_id, "expires_at": expires_at},
        )


class ProviderError(JamAlertError):
    """Channel provider(s) unreachable for a whole operation (500)."""

    def __init__(self, message: str, **details: Any):
        super().__init__(
            message=message,
            status_code=500,
            error_code="PROVIDER_ERROR",
            details=details,
        )


# ═══════════════════════════════════════════════════════════════════════════
# Error Response Builder
# ═══════════════════════════════════════════════════════════════════════════

def _build_error_response(
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> JSONResponse:
    """Build a consistent JSON error response."""
    body: Dict[str, Any] = {
        "success": False,
        "error": message,
        "code": error_code,
    }

    if details:
        body["details"] = details

    # Include request path in non-production
    if request and not settings.is_production:
        body["path"] = str(request.url.path)
        body["method"] = request.method

    return JSONResponse(status_code=status_code, content=body)


_HTTP_CODES = {
    404: "NOT_FOUND",
}


# ═══════════════════════════════════════════════════════════════════════════
# FastAPI Exception Handlers
# ═══════════════════════════════════════════════════════════════════════════

def register_error_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the FastAPI app."""

    @app.exception_handler(JamAlertError)
    async def handle_app_error(request: Request, exc: JamAlertError):
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            "API Error [%s]: %s | details=%s",
            exc.error_code, exc.message, exc.details,
        )
        return _build_error_response(
            exc.status_code, exc.error_code, exc.message,
            exc.details, request,
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 405:
            return await handle_app_error(request, MethodNotAllowedError(request.method))
        return _build_error_response(
            exc.status_code,
            _HTTP_CODES.get(exc.status_code, "HTTP_ERROR"),
            str(exc.detail),
            request=request,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        logger.warning("Request validation failed: %s", exc.errors())
        return _build_error_response(
            400, "VALIDATION_ERROR", "Invalid request",
            {"errors": [
                {"loc": list(e.get("loc", ())), "msg": e.get("msg", "")}
                for e in exc.errors()
            ]},
            request,
        )

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.critical(
            "Unhandled exception: %s\n%s",
            exc, traceback.format_exc(),
        )
        message = str(exc) if settings.DEBUG else "Internal server error"
        return _build_error_response(500, "INTERNAL_ERROR", message, request=request)
