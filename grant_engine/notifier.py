"""
Notifier bridge.

The engine builds a ``GrantNotification`` and hands it to a ``Notifier``.
Delivery is best-effort: ``dispatch`` is the only way the engine calls a
notifier, and it never lets a failure reach the caller.
"""
import logging
import smtplib
from email.mime.text import MIMEText
from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict

from .config import Settings
from .errors import NotificationFailure

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    GRANT_CREATED = "GRANT_CREATED"
    GRANT_REVOKED = "GRANT_REVOKED"
    EXPIRY_WARNING = "EXPIRY_WARNING"


class GrantNotification(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: EventKind
    grant_id: int
    grantee_contact: Optional[str] = None
    grantee_name: str = ""
    owner_display_name: str
    resource_title: str
    access_level: Optional[str] = None
    scope: Optional[Tuple[str, ...]] = None
    duration_hours: Optional[int] = None
    hours_remaining: Optional[int] = None


class Notifier:
    def notify(self, event: GrantNotification) -> None:
        raise NotImplementedError


class LoggingNotifier(Notifier):
    """Used when no mail server is configured."""

    def notify(self, event: GrantNotification) -> None:
        logger.info(
            "[NOTIFICATION NOT SENT - NO TRANSPORT] %s grant=%s to=%s record=%r",
            event.kind.value, event.grant_id, event.grantee_contact, event.resource_title,
        )


def _scope_text(scope) -> str:
    return ", ".join(scope) if scope else "Full record"


def render(event: GrantNotification) -> Tuple[str, str]:
    """Subject and plain-text body for an event."""
    name = event.grantee_name or "Doctor"
    if event.kind is EventKind.GRANT_CREATED:
        duration = f"{event.duration_hours} hours" if event.duration_hours else "No expiry"
        subject = "MedVault - Medical Record Access Granted"
        body = (
            f"Dear Dr. {name},\n\n"
            f"Patient {event.owner_display_name} has granted you access to their medical record:\n\n"
            f"Record: {event.resource_title}\n"
            f"Permission Level: {event.access_level}\n"
            f"Shared Fields: {_scope_text(event.scope)}\n"
            f"Access Duration: {duration}\n\n"
            "Best regards,\nMedVault Team"
        )
    elif event.kind is EventKind.GRANT_REVOKED:
        subject = "MedVault - Medical Record Access Revoked"
        body = (
            f"Dear Dr. {name},\n\n"
            f"Patient {event.owner_display_name} has revoked your access to their medical record:\n\n"
            f"Record: {event.resource_title}\n\n"
            "You will no longer be able to view this record.\n\n"
            "Best regards,\nMedVault Team"
        )
    else:
        subject = "MedVault - Medical Record Access Expiring"
        body = (
            f"Dear Dr. {name},\n\n"
            "Your access to a patient's medical record will expire soon:\n\n"
            f"Patient: {event.owner_display_name}\n"
            f"Record: {event.resource_title}\n"
            f"Time Remaining: {event.hours_remaining} hours\n\n"
            "If you need continued access, please ask the patient to grant it again.\n\n"
            "Best regards,\nMedVault Team"
        )
    return subject, body


class SmtpNotifier(Notifier):
    def __init__(self, host: str, port: int = 587, user: Optional[str] = None,
                 password: Optional[str] = None, use_tls: bool = True,
                 mail_from: str = "no-reply@medvault.local", timeout: float = 10.0):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.use_tls = use_tls
        self.mail_from = mail_from
        self.timeout = timeout

    def notify(self, event: GrantNotification) -> None:
        if not event.grantee_contact:
            raise NotificationFailure(f"grant {event.grant_id}: grantee has no contact address")

        subject, body = render(event)
        msg = MIMEText(body, "plain", "utf-8")
        msg["Subject"] = subject
        msg["From"] = self.mail_from
        msg["To"] = event.grantee_contact

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                if self.use_tls:
                    server.starttls()
                if self.user:
                    server.login(self.user, self.password or "")
                server.sendmail(self.mail_from, [event.grantee_contact], msg.as_string())
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationFailure(f"{event.kind.value} to {event.grantee_contact}: {e}") from e

        logger.info("Sent %s for grant %s to %s", event.kind.value, event.grant_id, event.grantee_contact)


def build_notifier(settings: Settings) -> Notifier:
    if not settings.smtp_host:
        return LoggingNotifier()
    return SmtpNotifier(
        host=settings.smtp_host,
        port=settings.smtp_port,
        user=settings.smtp_user,
        password=settings.smtp_password,
        use_tls=settings.smtp_use_tls,
        mail_from=settings.mail_from,
    )


def dispatch(notifier: Notifier, event: GrantNotification) -> bool:
    """Deliver one event; log and swallow any failure."""
    try:
        notifier.notify(event)
        return True
    except NotificationFailure as e:
        logger.warning("Notification failed for grant %s: %s", event.grant_id, e)
    except Exception as e:
        logger.warning("Notifier error for grant %s (%s): %r", event.grant_id, event.kind.value, e, exc_info=True)
    return False
