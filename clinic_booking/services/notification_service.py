"""
Booking notifications.

Delivery is best-effort: one attempt per event, failures are logged and never
reach the booking caller. ``deliver_notification`` is the only entry point the
booking services use, so an exception raised by any dispatcher stops there.
"""
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import Any, Dict, Optional
import logging
import smtplib

from sqlalchemy.exc import SQLAlchemyError

from ..core.config import settings
from ..core.exceptions import NotFoundError
from .directory import DirectoryService

logger = logging.getLogger(__name__)

class NotificationDispatcher:
    """Interface for booking-event notifications."""

    def notify_created(self, patient_contact: str, patient_name: str, provider_name: str,
                       start: datetime, reason: str, specialty: str) -> bool:
        raise NotImplementedError

    def notify_confirmed(self, patient_contact: str, patient_name: str, provider_name: str,
                         start: datetime, reason: str, specialty: str) -> bool:
        raise NotImplementedError

    def notify_cancelled(self, patient_contact: str, patient_name: str, provider_name: str,
                         start: datetime, specialty: str) -> bool:
        raise NotImplementedError

    def notify_rejected(self, patient_contact: str, patient_name: str, provider_name: str,
                        start: datetime, specialty: str) -> bool:
        raise NotImplementedError

    def notify_rescheduled(self, patient_contact: str, patient_name: str, provider_name: str,
                           old_start: datetime, new_start: datetime, specialty: str) -> bool:
        raise NotImplementedError

def _when(value: datetime) -> str:
    return value.strftime("%A %d %B %Y, %H:%M")

def _layout(title: str, greeting: str, rows: Dict[str, str], footer: str) -> str:
    details = "".join(
        f"<tr><td style='padding:4px 12px 4px 0'><strong>{label}</strong></td><td>{value}</td></tr>"
        for label, value in rows.items()
    )
    return (
        "<html><body style='font-family:Arial,sans-serif;color:#222'>"
        f"<h2>{title}</h2>"
        f"<p>{greeting}</p>"
        f"<table>{details}</table>"
        f"<p>{footer}</p>"
        f"<p style='color:#888;font-size:12px'>{settings.EMAIL_FROM_NAME}</p>"
        "</body></html>"
    )

class EmailNotificationDispatcher(NotificationDispatcher):
    """Sends booking emails over SMTP; logs them instead when SMTP is not configured."""

    def __init__(self, host: Optional[str] = None, port: Optional[int] = None,
                 username: Optional[str] = None, password: Optional[str] = None,
                 sender: Optional[str] = None):
        self.host = host if host is not None else settings.SMTP_HOST
        self.port = port or settings.SMTP_PORT
        self.username = username if username is not None else settings.SMTP_USER
        self.password = password if password is not None else settings.SMTP_PASSWORD
        self.sender = sender or settings.EMAIL_FROM

    def send_email(self, recipient: str, subject: str, html_body: str) -> bool:
        if not self.host:
            logger.info(f"[DRY RUN EMAIL] to={recipient} subject={subject}")
            return True

        message = MIMEMultipart("alternative")
        message["Subject"] = subject
        message["From"] = formataddr((settings.EMAIL_FROM_NAME, self.sender))
        message["To"] = recipient
        message.attach(MIMEText(html_body, "html", "utf-8"))

        logger.info(f"Sending email to {recipient}: {subject}")
        with smtplib.SMTP(self.host, self.port, timeout=30) as server:
            server.starttls()
            if self.username:
                server.login(self.username, self.password or "")
            server.send_message(message)

        logger.info(f"Email sent to {recipient}")
        return True

    def notify_created(self, patient_contact, patient_name, provider_name, start, reason, specialty):
        body = _layout(
            "Appointment booked",
            f"Hello {patient_name}, your appointment request has been registered.",
            {
                "Doctor": provider_name,
                "Specialty": specialty,
                "Date": _when(start),
                "Reason": reason,
            },
            "You will receive another message once the appointment is confirmed.",
        )
        return self.send_email(patient_contact, "Your appointment has been booked", body)

    def notify_confirmed(self, patient_contact, patient_name, provider_name, start, reason, specialty):
        body = _layout(
            "Appointment confirmed",
            f"Hello {patient_name}, your appointment is confirmed.",
            {
                "Doctor": provider_name,
                "Specialty": specialty,
                "Date": _when(start),
                "Reason": reason,
            },
            "Please arrive ten minutes early.",
        )
        return self.send_email(patient_contact, "Your appointment is confirmed", body)

    def notify_cancelled(self, patient_contact, patient_name, provider_name, start, specialty):
        body = _layout(
            "Appointment cancelled",
            f"Hello {patient_name}, the following appointment has been cancelled.",
            {
                "Doctor": provider_name,
                "Specialty": specialty,
                "Date": _when(start),
            },
            "You can book a new time from your appointments page.",
        )
        return self.send_email(patient_contact, "Your appointment has been cancelled", body)

    def notify_rejected(self, patient_contact, patient_name, provider_name, start, specialty):
        body = _layout(
            "Appointment request declined",
            f"Hello {patient_name}, your appointment request could not be accepted.",
            {
                "Doctor": provider_name,
                "Specialty": specialty,
                "Date": _when(start),
            },
            "The time is free again; please choose another slot from your appointments page.",
        )
        return self.send_email(patient_contact, "Your appointment request was declined", body)

    def notify_rescheduled(self, patient_contact, patient_name, provider_name, old_start, new_start, specialty):
        body = _layout(
            "Appointment rescheduled",
            f"Hello {patient_name}, your appointment has been moved.",
            {
                "Doctor": provider_name,
                "Specialty": specialty,
                "Previous date": _when(old_start),
                "New date": _when(new_start),
            },
            "If the new time does not suit you, you can reschedule again.",
        )
        return self.send_email(patient_contact, "Your appointment has been rescheduled", body)

def deliver_notification(dispatcher: NotificationDispatcher, event: str, payload: Dict[str, Any]) -> bool:
    """Make the single delivery attempt for an event, absorbing any failure."""
    handler = getattr(dispatcher, f"notify_{event}", None)
    if handler is None:
        logger.error(f"No notification handler for event '{event}'")
        return False

    try:
        return bool(handler(**payload))
    except Exception as exc:
        logger.warning(
            f"Notification '{event}' to {payload.get('patient_contact')} failed: {exc}",
            exc_info=True
        )
        return False

def schedule_notification(dispatcher: Optional[NotificationDispatcher], background_tasks,
                          event: str, payload: Dict[str, Any]) -> None:
    """
    Hand an event to the dispatcher after the booking has committed.

    With FastAPI ``BackgroundTasks`` the attempt runs after the response is sent;
    without them it runs inline, still guarded by ``deliver_notification``.
    """
    if dispatcher is None:
        return
    if background_tasks is not None:
        background_tasks.add_task(deliver_notification, dispatcher, event, payload)
    else:
        deliver_notification(dispatcher, event, payload)

def notify_booking_event(db, dispatcher: Optional[NotificationDispatcher], background_tasks,
                         event: str, patient_id: int, doctor_id: int, **details) -> None:
    """Resolve the recipient through the directory and schedule one event."""
    if dispatcher is None:
        return
    try:
        context = DirectoryService(db).notification_context(patient_id, doctor_id)
    except NotFoundError as exc:
        logger.warning(f"Skipping '{event}' notification: {exc.detail}")
        return
    except SQLAlchemyError as exc:
        # the booking is already committed; only the email is lost
        db.rollback()
        logger.error(f"Skipping '{event}' notification, directory lookup failed: {exc}")
        return
    schedule_notification(dispatcher, background_tasks, event, {**context, **details})

email_dispatcher = EmailNotificationDispatcher()
