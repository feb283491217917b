# Overview: Fire-and-forget email delivery through an in-process outbox.

"""
Mail Outbox

WHY: Customers are notified about verification, password resets, booking
and payment outcomes, but a mail outage must never fail or roll back the
business transaction that triggered the notification.

DESIGN:
- Callers commit first, then enqueue() a MailMessage. enqueue() never raises.
- A daemon worker thread drains the queue and delivers over SMTP (smtplib),
  retrying up to MAIL_MAX_ATTEMPTS before logging the failure.
- MAIL_SYNC delivers inline (CLI scripts, tests).
- MAIL_ENABLED=False records messages in outbox.sent instead of sending.
"""

from __future__ import annotations

import logging
import queue
import smtplib
import threading
from dataclasses import dataclass, field
from email.message import EmailMessage
from html import escape

logger = logging.getLogger(__name__)

_MAIL_CONFIG_KEYS = (
    "MAIL_ENABLED",
    "MAIL_SYNC",
    "MAIL_MAX_ATTEMPTS",
    "MAIL_FROM",
    "SMTP_HOST",
    "SMTP_PORT",
    "SMTP_USERNAME",
    "SMTP_PASSWORD",
    "SMTP_USE_TLS",
    "SMTP_TIMEOUT_SECONDS",
    "APP_BASE_URL",
)


@dataclass
class MailMessage:
    to: str
    subject: str
    text: str
    html: str | None = None
    tags: list[str] = field(default_factory=list)


class SmtpMailer:
    """Thin smtplib wrapper. One connection per message."""

    def __init__(self, config: dict):
        self.host = config.get("SMTP_HOST", "localhost")
        self.port = int(config.get("SMTP_PORT", 587))
        self.username = config.get("SMTP_USERNAME") or ""
        self.password = config.get("SMTP_PASSWORD") or ""
        self.use_tls = bool(config.get("SMTP_USE_TLS", True))
        self.timeout = int(config.get("SMTP_TIMEOUT_SECONDS", 15))
        self.sender = config.get("MAIL_FROM") or "no-reply@localhost"

    def build(self, message: MailMessage) -> EmailMessage:
        email = EmailMessage()
        email["From"] = self.sender
        email["To"] = message.to
        email["Subject"] = message.subject
        email.set_content(message.text)
        if message.html:
            email.add_alternative(message.html, subtype="html")
        return email

    def send(self, message: MailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            if self.use_tls:
                server.starttls()
            if self.username:
                server.login(self.username, self.password)
            server.send_message(self.build(message))


class MailOutbox:
    """In-process outbox; swap for a persistent queue to survive restarts."""

    def __init__(self):
        self._queue: queue.Queue = queue.Queue()
        self._worker: threading.Thread | None = None
        self._lock = threading.Lock()
        self._config: dict = {}
        self.sent: list[MailMessage] = []
        self.failed: list[MailMessage] = []

    def init_app(self, app) -> None:
        self._config = {key: app.config.get(key) for key in _MAIL_CONFIG_KEYS}
        app.extensions["mail_outbox"] = self

    @property
    def base_url(self) -> str:
        return (self._config.get("APP_BASE_URL") or "").rstrip("/")

    def enqueue(self, message: MailMessage | None) -> bool:
        """Queue a message for delivery. Returns False if it was dropped."""
        if message is None or not message.to:
            return False
        try:
            if not self._config.get("MAIL_ENABLED"):
                self.sent.append(message)
                logger.info("Mail disabled; recorded '%s' for %s", message.subject, message.to)
                return True
            if self._config.get("MAIL_SYNC"):
                return self._deliver(message)
            self._ensure_worker()
            self._queue.put(message)
            return True
        except Exception:
            logger.exception("Failed to enqueue mail '%s'", message.subject)
            return False

    def clear(self) -> None:
        self.sent.clear()
        self.failed.clear()

    def join(self) -> None:
        """Block until the worker has drained the queue (shutdown / CLI)."""
        self._queue.join()

    def _ensure_worker(self) -> None:
        with self._lock:
            if self._worker is None or not self._worker.is_alive():
                self._worker = threading.Thread(target=self._run, name="mail-outbox", daemon=True)
                self._worker.start()

    def _run(self) -> None:
        while True:
            message = self._queue.get()
            try:
                self._deliver(message)
            finally:
                self._queue.task_done()

    def _deliver(self, message: MailMessage) -> bool:
        attempts = max(1, int(self._config.get("MAIL_MAX_ATTEMPTS") or 1))
        mailer = SmtpMailer(self._config)
        for attempt in range(1, attempts + 1):
            try:
                mailer.send(message)
                self.sent.append(message)
                logger.info("Sent mail '%s' to %s", message.subject, message.to)
                return True
            except (smtplib.SMTPException, OSError):
                logger.exception(
                    "Mail delivery failed (attempt %s/%s) for %s", attempt, attempts, message.to
                )
        self.failed.append(message)
        return False


# =============================================================================
# MESSAGE BUILDERS
# =============================================================================

def _html(title: str, paragraphs: list[str]) -> str:
    body = "".join(f"<p>{escape(p)}</p>" for p in paragraphs)
    return (
        "<!DOCTYPE html><html><body style=\"font-family: Arial, sans-serif; color: #1f2937\">"
        f"<h2>{escape(title)}</h2>{body}"
        "<p style=\"color:#6b7280\">Gas Agency System</p></body></html>"
    )


def _message(to: str | None, subject: str, greeting_name: str | None, lines: list[str], tag: str) -> MailMessage | None:
    if not to:
        return None
    paragraphs = [f"Hello {greeting_name or 'Customer'},", *lines]
    return MailMessage(
        to=to,
        subject=subject,
        text="\n\n".join(paragraphs),
        html=_html(subject, paragraphs),
        tags=[tag],
    )


def verification_email(to: str, name: str, link: str) -> MailMessage | None:
    return _message(to, "Verify your email address", name, [
        "Thanks for registering with the gas agency.",
        f"Confirm your email address by opening this link: {link}",
        "The link expires in 24 hours.",
    ], "verify-email")


def password_reset_email(to: str, name: str, link: str) -> MailMessage | None:
    return _message(to, "Reset your password", name, [
        "We received a request to reset your password.",
        f"Reset it here: {link}",
        "The link expires in 1 hour. If you did not ask for this, ignore this email.",
    ], "password-reset")


def booking_received_email(booking) -> MailMessage | None:
    return _message(booking.user_email, f"Booking #{booking.id} received", booking.user_name, [
        f"We received your request for {booking.quantity} cylinder(s).",
        f"Payment method: {booking.payment_method}.",
        "Your booking is pending approval. We will email you when it changes.",
    ], "booking-received")


def booking_approved_email(booking) -> MailMessage | None:
    return _message(booking.user_email, f"Booking #{booking.id} approved", booking.user_name, [
        f"Your booking for {booking.quantity} cylinder(s) has been approved.",
        "A delivery partner will be assigned shortly.",
    ], "booking-approved")


def booking_cancelled_email(booking, reason: str) -> MailMessage | None:
    return _message(booking.user_email, f"Booking #{booking.id} cancelled", booking.user_name, [
        f"Your booking has been cancelled. Reason: {reason}",
        f"{booking.quantity} cylinder(s) have been returned to your annual quota.",
    ], "booking-cancelled")


def delivery_assigned_email(booking, partner, scheduled: str | None) -> MailMessage | None:
    lines = [f"{partner.name} ({partner.phone}) will deliver your booking."]
    if scheduled:
        lines.append(f"Scheduled for: {scheduled}.")
    return _message(booking.user_email, f"Delivery assigned for booking #{booking.id}", booking.user_name, lines, "delivery-assigned")


def out_for_delivery_email(booking, partner) -> MailMessage | None:
    lines = ["Your cylinder is out for delivery."]
    if partner is not None:
        lines.append(f"Delivery partner: {partner.name} ({partner.phone}).")
    return _message(booking.user_email, f"Booking #{booking.id} is out for delivery", booking.user_name, lines, "out-for-delivery")


def delivered_email(booking) -> MailMessage | None:
    return _message(booking.user_email, f"Booking #{booking.id} delivered", booking.user_name, [
        f"Your booking for {booking.quantity} cylinder(s) has been delivered.",
        "Thank you for choosing us.",
    ], "delivered")


def payment_confirmed_email(booking, payment) -> MailMessage | None:
    return _message(booking.user_email, f"Payment confirmed for booking #{booking.id}", booking.user_name, [
        f"We confirmed your UPI payment of Rs. {payment.amount}.",
        f"Transaction ID: {payment.upi_txn_id}.",
    ], "payment-confirmed")


def payment_rejected_email(booking, payment) -> MailMessage | None:
    return _message(booking.user_email, f"Payment issue for booking #{booking.id}", booking.user_name, [
        "We could not verify your UPI payment.",
        f"Reason: {payment.failure_reason}",
        "You can retry the payment from your bookings page.",
    ], "payment-rejected")


def contact_reply_email(message, reply_body: str) -> MailMessage | None:
    user = message.user
    if user is None:
        return None
    return _message(user.email, f"Re: {message.subject}", user.name, [
        "Our support team replied to your message:",
        reply_body,
    ], "contact-reply")


def custom_booking_email(booking, subject: str, body: str) -> MailMessage | None:
    return _message(booking.user_email, subject, booking.user_name, [body], "admin-custom")
