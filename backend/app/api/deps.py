"""
Dependency wiring for the API layer.

``get_container()`` builds every service once per process from settings.
Tests replace it through ``app.dependency_overrides[get_container]``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, Optional

from fastapi import Depends
from starlette.requests import Request

from backend.app.alerts.alert_service import AlertService
from backend.app.alerts.channels import ChannelSender, build_senders
from backend.app.alerts.dispatcher import NotificationDispatcher, Sleeper
from backend.app.alerts.models import Channel
from backend.app.core.auth import (
    AdminAuthenticator,
    AdminRole,
    AdminUser,
    TokenAuthenticator,
    has_role,
)
from backend.app.core.config import Settings, settings
from backend.app.core.errors import AuthenticationError, AuthorizationError
from backend.app.incidents.intake import CorroborationMatcher, ReportIntake
from backend.app.incidents.review import IncidentReviewService
from backend.app.incidents.verification import EscalationNotifier, VerificationEngine
from backend.app.storage.base import AlertStore, IncidentStore, RecipientDirectory

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    alert_store: AlertStore
    recipients: RecipientDirectory
    incident_store: IncidentStore
    senders: Dict[Channel, ChannelSender]
    alerts: AlertService
    verification: VerificationEngine
    intake: ReportIntake
    review: IncidentReviewService
    authenticator: AdminAuthenticator

    async def aclose(self) -> None:
        for sender in self.senders.values():
            await sender.aclose()


def build_container(
    cfg: Settings = settings,
    *,
    alert_store: Optional[AlertStore] = None,
    recipients: Optional[RecipientDirectory] = None,
    incident_store: Optional[IncidentStore] = None,
    senders: Optional[Dict[Channel, ChannelSender]] = None,
    authenticator: Optional[AdminAuthenticator] = None,
    notifier: Optional[EscalationNotifier] = None,
    sleep: Sleeper = asyncio.sleep,
) -> ServiceContainer:
    """Assemble the services; any piece can be supplied ready-made."""
    if cfg.STORAGE_BACKEND == "sql":
        from backend.app.core.database import get_session_factory
        from backend.app.storage.sql import SqlAlertStore, SqlIncidentStore, SqlRecipientDirectory

        factory = get_session_factory()
        retry = {
            "retry_attempts": cfg.DB_RETRY_ATTEMPTS,
            "retry_delay_seconds": cfg.DB_RETRY_DELAY_SECONDS,
        }
        alert_store = alert_store or SqlAlertStore(factory, **retry)
        recipients = recipients or SqlRecipientDirectory(factory, **retry)
        incident_store = incident_store or SqlIncidentStore(factory, **retry)
    else:
        from backend.app.storage.memory import (
            InMemoryAlertStore,
            InMemoryIncidentStore,
            InMemoryRecipientDirectory,
        )

        alert_store = alert_store or InMemoryAlertStore()
        recipients = recipients or InMemoryRecipientDirectory()
        incident_store = incident_store or InMemoryIncidentStore()

    senders = senders if senders is not None else build_senders(cfg)
    dispatcher = NotificationDispatcher(
        senders,
        channel_concurrency=cfg.CHANNEL_CONCURRENCY,
        send_timeout_seconds=cfg.SEND_TIMEOUT_SECONDS,
        sleep=sleep,
    )
    alerts = AlertService(
        alert_store, recipients, dispatcher,
        batch_size=cfg.ALERT_BATCH_SIZE,
        batch_delay_seconds=cfg.ALERT_BATCH_DELAY_SECONDS,
        retry_batch_size=cfg.RETRY_BATCH_SIZE,
        retry_batch_delay_seconds=cfg.RETRY_BATCH_DELAY_SECONDS,
    )
    verification = VerificationEngine(
        incident_store, notifier, threshold=cfg.CORROBORATION_THRESHOLD,
    )
    intake = ReportIntake(
        verification,
        CorroborationMatcher(incident_store, window_hours=cfg.CORROBORATION_WINDOW_HOURS),
        max_age_days=cfg.INCIDENT_MAX_AGE_DAYS,
    )
    return ServiceContainer(
        alert_store=alert_store,
        recipients=recipients,
        incident_store=incident_store,
        senders=senders,
        alerts=alerts,
        verification=verification,
        intake=intake,
        review=IncidentReviewService(incident_store, verification),
        authenticator=authenticator or TokenAuthenticator(cfg.ADMIN_API_TOKENS),
    )


@lru_cache
def get_container() -> ServiceContainer:
    logger.info("Building services (storage=%s)", settings.STORAGE_BACKEND)
    return build_container(settings)


# ── Auth dependencies ──

async def require_authenticated(
    request: Request,
    container: ServiceContainer = Depends(get_container),
) -> AdminUser:
    """Any authenticated admin principal, else 401."""
    result = await container.authenticator.authenticate(request)
    if not result.success or result.user is None:
        raise AuthenticationError(result.error or "Authentication required")
    return result.user


async def require_moderator(user: AdminUser = Depends(require_authenticated)) -> AdminUser:
    """MODERATOR or above, else 403."""
    if not has_role(user, AdminRole.MODERATOR):
        raise AuthorizationError(required_role=AdminRole.MODERATOR.value)
    return user


async def require_alert_operator(
    request: Request,
    container: ServiceContainer = Depends(get_container),
) -> AdminUser:
    """Alert operations answer 401 for anyone below MODERATOR."""
    result = await container.authenticator.authenticate(request)
    if not result.success or not has_role(result.user, AdminRole.MODERATOR):
        raise AuthenticationError("Admin access required")
    return result.user
