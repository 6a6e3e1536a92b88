"""
SQL storage adapters — SQLAlchemy 2.0 async sessions.

Retry:
    every public store call runs under a tenacity policy that retries
    connection-level errors (dropped connection, timeout, invalidated pool
    connection) with exponential backoff. Constraint and data errors are
    raised at once. A call whose commit was lost in flight may be replayed;
    the attempt state machine rejects a replayed terminal transition.

Atomicity:
    • counters move through ``UPDATE … SET col = col + :delta`` only
    • attempt upsert + counter update share one transaction
    • status changes are conditional updates (compare-and-set on rowcount)

SQLite hands back naive datetimes; everything read is normalised to UTC.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Collection, Dict, Iterable, List, Optional, Tuple, TypeVar

from sqlalchemy import func, select, update
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from backend.app.alerts.models import (
    Alert,
    AlertDeliveryStatus,
    AlertType,
    AttemptState,
    AttemptStatus,
    Channel,
    ChannelStats,
    DeliveryAttempt,
    Failed,
    Recipient,
    Succeeded,
    apply_outcome,
)
from backend.app.core.enums import Parish, Severity
from backend.app.core.errors import NotFoundError
from backend.app.incidents.models import (
    IncidentFilters,
    IncidentReport,
    IncidentType,
    ReportStatus,
    VerificationStatus,
)
from backend.app.storage.tables import (
    AlertRow,
    DeliveryAttemptRow,
    IncidentReporterRow,
    IncidentRow,
    UserRow,
)

logger = logging.getLogger(__name__)

SessionFactory = async_sessionmaker[AsyncSession]


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════
# Row ↔ model mapping
# ═══════════════════════════════════════════════════════════════════════════

def _alert_from_row(row: AlertRow) -> Alert:
    return Alert(
        id=row.id,
        type=AlertType(row.type),
        severity=Severity(row.severity),
        title=row.title,
        message=row.message,
        parishes=frozenset(Parish(p) for p in row.parishes),
        created_at=_utc(row.created_at),
        expires_at=_utc(row.expires_at),
        created_by=row.created_by,
        delivery_status=AlertDeliveryStatus(row.delivery_status),
        recipient_count=row.recipient_count,
        delivered_count=row.delivered_count,
        failed_count=row.failed_count,
        dispatched_at=_utc(row.dispatched_at),
        stats={
            channel: ChannelStats(
                sent=getattr(row, f"{channel.value}_sent"),
                failed=getattr(row, f"{channel.value}_failed"),
            )
            for channel in Channel
        },
    )


def _attempt_from_row(row: DeliveryAttemptRow) -> DeliveryAttempt:
    state: AttemptState
    if row.status == AttemptStatus.SUCCEEDED.value:
        state = Succeeded(provider_ref=row.provider_ref)
    else:
        state = Failed(reason=row.reason or "", provider_outage=row.provider_outage)
    return DeliveryAttempt(
        alert_id=row.alert_id,
        recipient_id=row.recipient_id,
        channel=Channel(row.channel),
        state=state,
        attempt_count=row.attempt_count,
        updated_at=_utc(row.updated_at),
    )


def _write_attempt(row: DeliveryAttemptRow, attempt: DeliveryAttempt) -> None:
    row.status = attempt.status.value
    row.attempt_count = attempt.attempt_count
    row.updated_at = attempt.updated_at
    if isinstance(attempt.state, Succeeded):
        row.reason = None
        row.provider_outage = False
        row.provider_ref = attempt.state.provider_ref
    else:
        row.reason = attempt.state.reason
        row.provider_outage = attempt.state.provider_outage


def _recipient_from_row(row: UserRow) -> Recipient:
    return Recipient(
        id=row.id,
        parish=Parish(row.parish),
        first_name=row.first_name,
        last_name=row.last_name,
        email=row.email,
        phone=row.phone,
        push_token=row.push_token,
        email_alerts=row.email_alerts,
        sms_alerts=row.sms_alerts,
        push_alerts=row.push_alerts,
        emergency_only=row.emergency_only,
        is_active=row.is_active,
    )


def _incident_from_row(row: IncidentRow) -> IncidentReport:
    return IncidentReport(
        id=row.id,
        incident_type=IncidentType(row.incident_type),
        severity=Severity(row.severity),
        parish=Parish(row.parish),
        community=row.community,
        address=row.address,
        description=row.description,
        incident_date=row.incident_date,
        reporter_id=row.reporter_id,
        reporter_name=row.reporter_name,
        reporter_phone=row.reporter_phone,
        is_anonymous=row.is_anonymous,
        receive_updates=row.receive_updates,
        latitude=row.latitude,
        longitude=row.longitude,
        verification_status=VerificationStatus(row.verification_status),
        review_status=ReportStatus(row.review_status),
        report_count=row.report_count,
        corroborating_reporters=frozenset(r.reporter_id for r in row.reporters),
        escalated_at=_utc(row.escalated_at),
        verified_at=_utc(row.verified_at),
        verified_by=row.verified_by,
        created_at=_utc(row.created_at),
        updated_at=_utc(row.updated_at),
    )


# ═══════════════════════════════════════════════════════════════════════════
# Transient-error retry
# ═══════════════════════════════════════════════════════════════════════════

F = TypeVar("F", bound=Callable[..., Any])


def is_transient(exc: BaseException) -> bool:
    """Connection-level failures worth another attempt."""
    if isinstance(exc, DBAPIError):
        return exc.connection_invalidated or isinstance(exc, (OperationalError, InterfaceError))
    return isinstance(exc, (ConnectionError, TimeoutError, asyncio.TimeoutError))


def transient_retry(method: F) -> F:
    """Run a store method under its adapter's retry policy."""

    @functools.wraps(method)
    async def wrapper(self: "_SqlAdapter", *args: Any, **kwargs: Any) -> Any:
        return await self._retrying.copy()(method, self, *args, **kwargs)

    return wrapper  # type: ignore[return-value]


class _SqlAdapter:
    """
    Parameters
    ----------
    session_factory : async_sessionmaker
    retry_attempts : int
        Total tries per call, first one included.
    retry_delay_seconds : float
        First backoff; doubles on each further attempt.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        retry_attempts: int = 3,
        retry_delay_seconds: float = 1.0,
    ):
        self._sessions = session_factory
        self._retrying = AsyncRetrying(
            reraise=True,
            retry=retry_if_exception(is_transient),
            stop=stop_after_attempt(max(1, retry_attempts)),
            wait=wait_exponential(multiplier=retry_delay_seconds, max=30),
            before_sleep=before_sleep_log(logger, logging.WARNING),
        )


# ═══════════════════════════════════════════════════════════════════════════
# Alerts
# ═══════════════════════════════════════════════════════════════════════════

class SqlAlertStore(_SqlAdapter):
    @transient_retry
    async def add_alert(self, alert: Alert) -> Alert:
        row = AlertRow(
            id=alert.id,
            type=alert.type.value,
            severity=alert.severity.value,
            title=alert.title,
            message=alert.message,
            parishes=sorted(p.value for p in alert.parishes),
            created_at=alert.created_at,
            expires_at=alert.expires_at,
            created_by=alert.created_by,
            delivery_status=alert.delivery_status.value,
            recipient_count=alert.recipient_count,
            delivered_count=alert.delivered_count,
            failed_count=alert.failed_count,
            dispatched_at=alert.dispatched_at,
        )
        for channel, stats in alert.stats.items():
            setattr(row, f"{channel.value}_sent", stats.sent)
            setattr(row, f"{channel.value}_failed", stats.failed)
        async with self._sessions() as session, session.begin():
            session.add(row)
        return alert.copy()

    @transient_retry
    async def get_alert(self, alert_id: str) -> Optional[Alert]:
        async with self._sessions() as session:
            row = await session.get(AlertRow, alert_id)
            return _alert_from_row(row) if row else None

    async def _exists(self, session: AsyncSession, alert_id: str) -> bool:
        found = await session.scalar(select(AlertRow.id).where(AlertRow.id == alert_id))
        return found is not None

    @transient_retry
    async def claim_alert(
        self, alert_id: str, from_statuses: Collection[AlertDeliveryStatus],
    ) -> bool:
        async with self._sessions() as session, session.begin():
            result = await session.execute(
                update(AlertRow)
                .where(
                    AlertRow.id == alert_id,
                    AlertRow.delivery_status.in_([s.value for s in from_statuses]),
                )
                .values(delivery_status=AlertDeliveryStatus.IN_PROGRESS.value)
            )
            if result.rowcount == 1:
                return True
            if not await self._exists(session, alert_id):
                raise NotFoundError("Alert", alert_id=alert_id)
            return False

    @transient_retry
    async def begin_dispatch(self, alert_id: str, recipient_count: int, at: datetime) -> None:
        async with self._sessions() as session, session.begin():
            result = await session.execute(
                update(AlertRow)
                .where(AlertRow.id == alert_id)
                .values(recipient_count=recipient_count, dispatched_at=at)
            )
            if result.rowcount == 0:
                raise NotFoundError("Alert", alert_id=alert_id)

    @transient_retry
    async def record_outcome(
        self, alert_id: str, recipient_id: str, channel: Channel, state: AttemptState,
    ) -> DeliveryAttempt:
        async with self._sessions() as session, session.begin():
            row = await session.get(
                DeliveryAttemptRow,
                (alert_id, recipient_id, channel.value),
                with_for_update=True,
            )
            previous = _attempt_from_row(row) if row else None
            attempt, delta = apply_outcome(previous, alert_id, recipient_id, channel, state)

            if row is None:
                row = DeliveryAttemptRow(
                    alert_id=alert_id, recipient_id=recipient_id, channel=channel.value,
                )
                session.add(row)
            _write_attempt(row, attempt)

            if not delta.is_zero:
                sent_col = getattr(AlertRow, f"{channel.value}_sent")
                failed_col = getattr(AlertRow, f"{channel.value}_failed")
                values: Dict[str, Any] = {
                    "delivered_count": AlertRow.delivered_count + delta.delivered,
                    "failed_count": AlertRow.failed_count + delta.failed,
                    sent_col.key: sent_col + delta.channel_sent,
                    failed_col.key: failed_col + delta.channel_failed,
                }
                result = await session.execute(
                    update(AlertRow).where(AlertRow.id == alert_id).values(**values)
                )
                if result.rowcount == 0:
                    raise NotFoundError("Alert", alert_id=alert_id)
        return attempt

    @transient_retry
    async def set_status(self, alert_id: str, status: AlertDeliveryStatus) -> Alert:
        async with self._sessions() as session, session.begin():
            await session.execute(
                update(AlertRow)
                .where(AlertRow.id == alert_id)
                .values(delivery_status=status.value)
            )
            row = await session.get(AlertRow, alert_id, populate_existing=True)
            if row is None:
                raise NotFoundError("Alert", alert_id=alert_id)
            return _alert_from_row(row)

    @transient_retry
    async def list_attempts(
        self, alert_id: str, status: Optional[AttemptStatus] = None,
    ) -> List[DeliveryAttempt]:
        stmt = select(DeliveryAttemptRow).where(DeliveryAttemptRow.alert_id == alert_id)
        if status is not None:
            stmt = stmt.where(DeliveryAttemptRow.status == status.value)
        async with self._sessions() as session:
            rows = (await session.scalars(stmt)).all()
            return [_attempt_from_row(r) for r in rows]


# ═══════════════════════════════════════════════════════════════════════════
# Recipients
# ═══════════════════════════════════════════════════════════════════════════

class SqlRecipientDirectory(_SqlAdapter):
    @transient_retry
    async def add(self, recipient: Recipient) -> None:
        async with self._sessions() as session, session.begin():
            await session.merge(UserRow(
                id=recipient.id,
                parish=recipient.parish.value,
                first_name=recipient.first_name,
                last_name=recipient.last_name,
                email=recipient.email,
                phone=recipient.phone,
                push_token=recipient.push_token,
                email_alerts=recipient.email_alerts,
                sms_alerts=recipient.sms_alerts,
                push_alerts=recipient.push_alerts,
                emergency_only=recipient.emergency_only,
                is_active=recipient.is_active,
            ))

    @transient_retry
    async def find_active_in_parishes(self, parishes: Iterable[Parish]) -> List[Recipient]:
        values = [p.value for p in parishes]
        if not values:
            return []
        stmt = select(UserRow).where(UserRow.is_active.is_(True), UserRow.parish.in_(values))
        async with self._sessions() as session:
            rows = (await session.scalars(stmt)).all()
            return [_recipient_from_row(r) for r in rows]

    @transient_retry
    async def get_recipients(self, recipient_ids: Iterable[str]) -> Dict[str, Recipient]:
        ids = list(recipient_ids)
        if not ids:
            return {}
        async with self._sessions() as session:
            rows = (await session.scalars(select(UserRow).where(UserRow.id.in_(ids)))).all()
            return {r.id: _recipient_from_row(r) for r in rows}


# ═══════════════════════════════════════════════════════════════════════════
# Incidents
# ═══════════════════════════════════════════════════════════════════════════

class SqlIncidentStore(_SqlAdapter):
    async def _load(self, session: AsyncSession, incident_id: str) -> Optional[IncidentReport]:
        row = await session.get(IncidentRow, incident_id, populate_existing=True)
        return _incident_from_row(row) if row else None

    @transient_retry
    async def add_incident(self, report: IncidentReport) -> IncidentReport:
        row = IncidentRow(
            id=report.id,
            incident_type=report.incident_type.value,
            severity=report.severity.value,
            parish=report.parish.value,
            community=report.community,
            address=report.address,
            description=report.description,
            incident_date=report.incident_date,
            reporter_id=report.reporter_id,
            reporter_name=report.reporter_name,
            reporter_phone=report.reporter_phone,
            is_anonymous=report.is_anonymous,
            receive_updates=report.receive_updates,
            latitude=report.latitude,
            longitude=report.longitude,
            verification_status=report.verification_status.value,
            review_status=report.review_status.value,
            report_count=report.report_count,
            escalated_at=report.escalated_at,
            verified_at=report.verified_at,
            verified_by=report.verified_by,
            created_at=report.created_at,
            updated_at=report.updated_at,
        )
        if report.reporter_id:
            row.reporters = [IncidentReporterRow(reporter_id=report.reporter_id)]
        async with self._sessions() as session, session.begin():
            session.add(row)
        async with self._sessions() as session:
            return await self._load(session, report.id)

    @transient_retry
    async def get_incident(self, incident_id: str) -> Optional[IncidentReport]:
        async with self._sessions() as session:
            return await self._load(session, incident_id)

    @transient_retry
    async def add_corroboration(
        self, incident_id: str, reporter_id: Optional[str], at: datetime,
    ) -> Tuple[Optional[IncidentReport], bool]:
        async with self._sessions() as session, session.begin():
            row = await session.get(IncidentRow, incident_id, with_for_update=True)
            if row is None:
                return None, False
            if reporter_id:
                seen = await session.get(IncidentReporterRow, (incident_id, reporter_id))
                if seen is not None:
                    return _incident_from_row(row), False
                row.reporters.append(IncidentReporterRow(reporter_id=reporter_id))
            await session.execute(
                update(IncidentRow)
                .where(IncidentRow.id == incident_id)
                .values(report_count=IncidentRow.report_count + 1, updated_at=at)
            )
            return await self._load(session, incident_id), True

    @transient_retry
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
        values: Dict[str, Any] = {
            "verification_status": to_status.value,
            "updated_at": at,
        }
        if escalate:
            values["escalated_at"] = func.coalesce(IncidentRow.escalated_at, at)
        if to_status == VerificationStatus.ODPEM_VERIFIED:
            values["verified_at"] = at
            values["verified_by"] = verified_by

        async with self._sessions() as session, session.begin():
            result = await session.execute(
                update(IncidentRow)
                .where(
                    IncidentRow.id == incident_id,
                    IncidentRow.verification_status.in_([s.value for s in from_statuses]),
                )
                .values(**values)
            )
            if result.rowcount != 1:
                return None
            return await self._load(session, incident_id)

    @transient_retry
    async def set_review_status(
        self, incident_id: str, status: ReportStatus, at: datetime,
    ) -> Optional[IncidentReport]:
        async with self._sessions() as session, session.begin():
            result = await session.execute(
                update(IncidentRow)
                .where(IncidentRow.id == incident_id)
                .values(review_status=status.value, updated_at=at)
            )
            if result.rowcount != 1:
                return None
            return await self._load(session, incident_id)

    @transient_retry
    async def find_candidates(
        self, incident_type: IncidentType, parish: Parish, since: datetime,
    ) -> List[IncidentReport]:
        stmt = (
            select(IncidentRow)
            .where(
                IncidentRow.incident_type == incident_type.value,
                IncidentRow.parish == parish.value,
                IncidentRow.created_at >= since,
            )
            .order_by(IncidentRow.created_at.desc())
        )
        async with self._sessions() as session:
            rows = (await session.scalars(stmt)).all()
            return [_incident_from_row(r) for r in rows]

    @transient_retry
    async def list_incidents(
        self, filters: IncidentFilters, offset: int, limit: int,
    ) -> Tuple[List[IncidentReport], int]:
        clauses = []
        if filters.parish is not None:
            clauses.append(IncidentRow.parish == filters.parish.value)
        if filters.status is not None:
            clauses.append(IncidentRow.review_status == filters.status.value)
        if filters.incident_type is not None:
            clauses.append(IncidentRow.incident_type == filters.incident_type.value)
        if filters.severity is not None:
            clauses.append(IncidentRow.severity == filters.severity.value)
        if filters.date_from is not None:
            clauses.append(IncidentRow.created_at >= filters.date_from)
        if filters.date_to is not None:
            clauses.append(IncidentRow.created_at <= filters.date_to)

        async with self._sessions() as session:
            total = await session.scalar(
                select(func.count()).select_from(IncidentRow).where(*clauses)
            )
            rows = (await session.scalars(
                select(IncidentRow)
                .where(*clauses)
                .order_by(IncidentRow.created_at.desc())
                .offset(offset)
                .limit(limit)
            )).all()
            return [_incident_from_row(r) for r in rows], int(total or 0)
