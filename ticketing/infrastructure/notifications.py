"""
Notification delivery (ticket confirmations, cancellation notices).

Delivery is fire-and-forget: routes schedule `deliver()` as a background
task after the response, and `deliver()` logs failures instead of raising,
so a mail outage never fails a reservation or a cancellation.
"""

import asyncio
import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Optional

from ticketing.core.config import get_settings
from ticketing.core.logging import get_logger
from ticketing.core.metrics import notification_failures

logger = get_logger(__name__)
settings = get_settings()


@dataclass(frozen=True)
class Notification:
    kind: str  # ticket_confirmation, booking_cancelled, event_cancelled
    to: str
    subject: str
    body: str


class Notifier(ABC):
    @abstractmethod
    async def send(self, notification: Notification) -> None:
        """Deliver one message. May raise; callers go through deliver()."""


class LogNotifier(Notifier):
    """Development backend: writes the message to the structured log."""

    async def send(self, notification: Notification) -> None:
        logger.info(
            "notification_logged",
            kind=notification.kind,
            to=notification.to,
            subject=notification.subject,
        )


class SmtpNotifier(Notifier):
    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
    ):
        self.host = host
        self.port = port
        self.sender = sender
        self.username = username
        self.password = password
        self.use_tls = use_tls

    def _send_sync(self, notification: Notification) -> None:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = notification.to
        message["Subject"] = notification.subject
        message.set_content(notification.body)

        with smtplib.SMTP(self.host, self.port, timeout=10) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password)
            smtp.send_message(message)

    async def send(self, notification: Notification) -> None:
        await asyncio.to_thread(self._send_sync, notification)


async def deliver(notifier: Notifier, notification: Notification) -> None:
    try:
        await notifier.send(notification)
    except Exception as e:
        notification_failures.labels(kind=notification.kind).inc()
        logger.warning("notification_failed", kind=notification.kind, to=notification.to, error=str(e))
        return
    logger.info("notification_sent", kind=notification.kind, to=notification.to)


def ticket_confirmation(email: str, event, booking) -> Notification:
    if booking.is_categorized:
        details = "\n".join(
            f"{item.quantity}x {item.category_name} - ${item.unit_price} each" for item in booking.items
        )
    else:
        details = f"{booking.quantity} ticket(s) - ${booking.unit_price} each"

    body = (
        "Thank you for booking!\n\n"
        f"Your ticket ID: {booking.ticket_id}\n"
        f"Event: {event.title}\n"
        f"Date: {event.date}\n"
        f"Venue: {event.location or 'TBA'}\n\n"
        f"Ticket Details:\n{details}\n\n"
        f"Total: ${booking.total_amount}\n\n"
        "Please present the QR code at the event entrance."
    )
    return Notification(
        kind="ticket_confirmation",
        to=email,
        subject=f"Your Ticket for {event.title}",
        body=body,
    )


def booking_cancelled(email: str, event_title: str, booking, policy: Optional[str] = None) -> Notification:
    refund_line = {
        "processed": f"A refund of ${booking.refund_amount} has been issued.",
        "pending": f"A refund of ${booking.refund_amount} is being processed.",
        "failed": "Your refund could not be issued automatically and is pending manual review.",
    }.get(booking.refund_status, "This cancellation is not eligible for a refund.")

    body = (
        f"Your booking for {event_title} (ticket {booking.ticket_id}) has been cancelled.\n\n"
        f"{refund_line}\n"
    )
    if policy:
        body += f"Refund policy applied: {policy}\n"

    return Notification(
        kind="booking_cancelled",
        to=email,
        subject=f"Booking cancelled: {event_title}",
        body=body,
    )


def event_cancelled(email: str, event_title: str, reason: Optional[str] = None) -> Notification:
    body = (
        f"{event_title} has been cancelled by the organizer.\n\n"
        "Your booking has been cancelled and a full refund is pending.\n"
    )
    if reason:
        body += f"Reason: {reason}\n"
    return Notification(
        kind="event_cancelled",
        to=email,
        subject=f"Event cancelled: {event_title}",
        body=body,
    )


_notifier: Optional[Notifier] = None


def get_notifier() -> Notifier:
    """FastAPI dependency returning the configured notifier singleton."""
    global _notifier
    if _notifier is None:
        if settings.NOTIFICATIONS_BACKEND == "smtp":
            _notifier = SmtpNotifier(
                host=settings.SMTP_HOST,
                port=settings.SMTP_PORT,
                sender=settings.MAIL_FROM,
                username=settings.SMTP_USERNAME,
                password=settings.SMTP_PASSWORD,
                use_tls=settings.SMTP_USE_TLS,
            )
        else:
            _notifier = LogNotifier()
    return _notifier
