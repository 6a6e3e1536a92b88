"""
email_alert.py — Email alert delivery channel.

Delivery mechanism:
    • SMTP (STARTTLS) through smtplib, run in a worker thread
    • multipart/alternative message: plain text + HTML
    • "simulation" provider logs the message and reports success

═══════════════════════════════════════════════════════════════════════════
EMAIL TEMPLATE STRUCTURE
═══════════════════════════════════════════════════════════════════════════

    Subject: {SEVERITY} ALERT: {title}
    Body:
        ┌─────────────────────────────────────────┐
        │  JamAlert — {alert type}                 │
        │  Severity: {severity}                    │
        ├─────────────────────────────────────────┤
        │  {message}                               │
        │                                          │
        │  Affected parishes: {parish list}        │
        └─────────────────────────────────────────┘

Failure classes:
    connection refused / auth / dropped → ProviderUnavailableError
    socket timeout                      → Failed (this send only)
    recipient refused by the server     → Failed(reason)

SMTP sessions run on a bounded thread pool, so a send abandoned by the
dispatcher's timeout still holds a worker until its socket times out.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
import socket
from concurrent.futures import ThreadPoolExecutor
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from html import escape
from typing import Optional

from backend.app.alerts.channels.base import ProviderUnavailableError, parish_label
from backend.app.alerts.models import (
    AttemptState,
    Channel,
    Failed,
    NotificationPayload,
    Recipient,
    Succeeded,
)
from backend.app.core.enums import Severity

logger = logging.getLogger(__name__)

# Severity → header colour
_SEVERITY_COLOURS = {
    Severity.LOW: "#2563eb",
    Severity.MEDIUM: "#f59e0b",
    Severity.HIGH: "#dc2626",
}


def build_subject(payload: NotificationPayload) -> str:
    return f"{payload.severity.value} ALERT: {payload.title}"


def _parishes_text(payload: NotificationPayload) -> str:
    return ", ".join(parish_label(p.value) for p in payload.parishes)


def build_html_body(payload: NotificationPayload, recipient: Recipient) -> str:
    colour = _SEVERITY_COLOURS.get(payload.severity, "#f59e0b")
    return f"""
    <div style="font-family:Arial,sans-serif;max-width:600px;margin:auto;">
      <div style="background:{colour};color:white;padding:16px;border-radius:8px 8px 0 0;">
        <h2 style="margin:0;">JamAlert — {escape(payload.alert_type.value.replace('_', ' '))}</h2>
        <p style="margin:4px 0 0;">Severity: {payload.severity.value}</p>
      </div>
      <div style="border:1px solid #ddd;border-top:none;padding:16px;border-radius:0 0 8px 8px;">
        <p>Hello {escape(recipient.first_name or 'there')},</p>
        <h3>{escape(payload.title)}</h3>
        <p>{escape(payload.message)}</p>
        <hr>
        <p><strong>Affected parishes:</strong> {escape(_parishes_text(payload))}</p>
        <p style="color:#6b7280;font-size:13px;">
          In an emergency call 119 (police) or 110 (fire / ambulance).
        </p>
      </div>
    </div>
    """


def build_plain_body(payload: NotificationPayload, recipient: Recipient) -> str:
    return (
        f"JamAlert — {payload.alert_type.value.replace('_', ' ')}\n"
        f"Severity: {payload.severity.value}\n\n"
        f"Hello {recipient.first_name or 'there'},\n\n"
        f"{payload.title}\n"
        f"{payload.message}\n\n"
        f"Affected parishes: {_parishes_text(payload)}\n\n"
        "In an emergency call 119 (police) or 110 (fire / ambulance).\n"
    )


class EmailSender:
    """
    Email channel sender.

    Parameters
    ----------
    provider : str
        "simulation" or "smtp".
    smtp_host, smtp_port : str, int
        SMTP server (for provider="smtp").
    username, password : str | None
        SMTP credentials; login is skipped when unset.
    use_tls : bool
        Issue STARTTLS before login.
    from_name, from_email : str
        Envelope sender.
    timeout_seconds : float
        Socket timeout for the SMTP session.
    max_workers : int
        Upper bound on concurrent SMTP sessions (worker threads).
    """

    channel = Channel.EMAIL

    def __init__(
        self,
        *,
        provider: str = "simulation",
        smtp_host: Optional[str] = None,
        smtp_port: int = 587,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        from_name: str = "JamAlert Emergency System",
        from_email: str = "alerts@jamalert.com",
        timeout_seconds: float = 15.0,
        max_workers: int = 10,
    ):
        self.provider = provider
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.from_name = from_name
        self.from_email = from_email
        self.timeout_seconds = timeout_seconds
        self.max_workers = max_workers
        self._executor: Optional[ThreadPoolExecutor] = None

    @property
    def is_configured(self) -> bool:
        if self.provider == "simulation":
            return True
        return self.provider == "smtp" and bool(self.smtp_host)

    async def send(self, recipient: Recipient, payload: NotificationPayload) -> AttemptState:
        if not recipient.email:
            return Failed("No email address on file")

        subject = build_subject(payload)

        if self.provider == "simulation":
            logger.info(
                "[EMAIL] Alert %s → %s (%s): Subject='%s'",
                payload.alert_id, recipient.email, recipient.display_name, subject,
            )
            return Succeeded(provider_ref=f"sim-email-{payload.alert_id[:8]}-{recipient.id}")

        if self.provider == "smtp":
            message = self._build_message(recipient, payload, subject)
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(
                self._pool(), self._deliver, recipient.email, message,
            )

        return Failed(f"Unknown email provider: {self.provider}")

    def _pool(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.max_workers, thread_name_prefix="jamalert-smtp",
            )
        return self._executor

    def _build_message(
        self, recipient: Recipient, payload: NotificationPayload, subject: str,
    ) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = formataddr((self.from_name, self.from_email))
        msg["To"] = recipient.email or ""
        msg["X-Mailer"] = "JamAlert System"
        msg["X-Priority"] = "1"
        msg.attach(MIMEText(build_plain_body(payload, recipient), "plain", "utf-8"))
        msg.attach(MIMEText(build_html_body(payload, recipient), "html", "utf-8"))
        return msg

    def _deliver(self, to_address: str, message: MIMEMultipart) -> AttemptState:
        """Blocking SMTP session; runs in a worker thread."""
        if not self.smtp_host:
            raise ProviderUnavailableError(self.channel, "SMTP host is not configured")
        try:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout_seconds) as server:
                if self.use_tls:
                    server.starttls()
                if self.username and self.password:
                    server.login(self.username, self.password)
                refused = server.sendmail(self.from_email, [to_address], message.as_string())
        except smtplib.SMTPRecipientsRefused as exc:
            code, reason = exc.recipients.get(to_address, (0, b"refused"))
            return Failed(f"Recipient refused ({code}): {reason.decode(errors='replace')}")
        except (smtplib.SMTPConnectError, smtplib.SMTPAuthenticationError,
                smtplib.SMTPServerDisconnected) as exc:
            raise ProviderUnavailableError(self.channel, str(exc)) from exc
        except smtplib.SMTPException as exc:
            # SMTPException subclasses OSError; keep it ahead of the socket cases
            return Failed(f"SMTP error: {exc}")
        except socket.timeout:
            return Failed(f"SMTP session timed out after {self.timeout_seconds:g}s")
        except OSError as exc:
            raise ProviderUnavailableError(self.channel, str(exc)) from exc

        if refused:
            return Failed(f"Recipient refused: {refused}")
        return Succeeded()

    async def aclose(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None
