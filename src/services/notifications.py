"""Reservation confirmation emails.

``SendGridNotificationSender`` posts to the SendGrid v3 Mail Send endpoint
with a bounded timeout.  When no API key is configured the
``LoggingNotificationSender`` is used instead: it writes the message to the
log and reports success, which keeps local development and demos working.

Email delivery is best-effort from the reservation's point of view — callers
catch ``NotificationError`` and report ``emailStatus: "failed"`` rather than
undoing the reservation.
"""

from __future__ import annotations

import html
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass

import httpx

from src.config import (
    EMAIL_FROM,
    NOTIFICATION_TIMEOUT_SECONDS,
    PICKUP_WINDOW_DAYS,
    SENDGRID_API_KEY,
    SENDGRID_BASE_URL,
)
from src.services.metrics import metrics

logger = logging.getLogger(__name__)

LIBRARY_HOURS = "Monday - Friday, 8:00 AM - 5:00 PM"


class NotificationError(Exception):
    """Raised when a confirmation email could not be delivered."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


@dataclass(frozen=True)
class ReservationNotice:
    """Everything the confirmation email needs to say."""

    reservation_id: str
    book_title: str
    author: str
    location: str
    student_name: str
    student_id: str
    pickup_deadline: str
    pickup_days: int = PICKUP_WINDOW_DAYS

    @property
    def subject(self) -> str:
        return f"Book Reservation Confirmed - {self.book_title}"

    def text_body(self) -> str:
        return (
            f"Hello {self.student_name}!\n\n"
            "Your book reservation has been confirmed.\n\n"
            "Reservation Details:\n"
            f"Reservation ID: {self.reservation_id}\n"
            f"Book Title: {self.book_title}\n"
            f"Author: {self.author or 'N/A'}\n"
            f"Location: {self.location or 'Library'}\n"
            f"Student ID: {self.student_id}\n\n"
            "Please pick up your book at the library circulation desk "
            f"by {self.pickup_deadline} (within {self.pickup_days} days).\n"
            "Bring your student ID and this reservation ID.\n\n"
            f"Library Hours: {LIBRARY_HOURS}\n\n"
            "Thank you for using UBLC Library Services!\n"
            "University of Batangas Lipa Campus\n"
            "Library Services Department\n"
        )

    def html_body(self) -> str:
        esc = html.escape
        return (
            "<html><body style=\"font-family: Arial, sans-serif; color: #333;\">"
            "<h2 style=\"color: #8B0000;\">Book Reservation Confirmed</h2>"
            f"<p>Hello <strong>{esc(self.student_name)}</strong>,</p>"
            "<p>Your book reservation has been <strong>successfully confirmed</strong>.</p>"
            "<ul>"
            f"<li><strong>Reservation ID:</strong> {esc(self.reservation_id)}</li>"
            f"<li><strong>Book Title:</strong> {esc(self.book_title)}</li>"
            f"<li><strong>Author:</strong> {esc(self.author or 'N/A')}</li>"
            f"<li><strong>Location:</strong> {esc(self.location or 'Library')}</li>"
            f"<li><strong>Student ID:</strong> {esc(self.student_id)}</li>"
            "</ul>"
            "<p>Please pick up your book at the library circulation desk "
            f"<strong>by {esc(self.pickup_deadline)}</strong>. "
            "Bring your student ID and this reservation ID.</p>"
            f"<p><strong>Library Hours:</strong> {LIBRARY_HOURS}</p>"
            "<p>University of Batangas Lipa Campus<br>Library Services Department</p>"
            "</body></html>"
        )


class NotificationSender(ABC):
    @abstractmethod
    def send_reservation_confirmation(self, to: str, notice: ReservationNotice) -> None:
        """Deliver the confirmation to *to* or raise ``NotificationError``."""


class LoggingNotificationSender(NotificationSender):
    """Stand-in used when no email provider is configured."""

    def send_reservation_confirmation(self, to: str, notice: ReservationNotice) -> None:
        logger.info(
            "Email (not sent, SENDGRID_API_KEY unset) to=%s subject=%r reservation=%s",
            to, notice.subject, notice.reservation_id,
        )


class SendGridNotificationSender(NotificationSender):
    """Send confirmation emails through the SendGrid v3 REST API."""

    def __init__(
        self,
        api_key: str | None = None,
        *,
        sender: str | None = None,
        base_url: str | None = None,
        timeout: float = NOTIFICATION_TIMEOUT_SECONDS,
    ):
        self._sender = sender or EMAIL_FROM
        self._client = httpx.Client(
            base_url=base_url or SENDGRID_BASE_URL,
            headers={
                "Authorization": f"Bearer {(api_key or SENDGRID_API_KEY or '').strip()}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
        )

    def send_reservation_confirmation(self, to: str, notice: ReservationNotice) -> None:
        payload = {
            "personalizations": [{"to": [{"email": to}]}],
            "from": {"email": self._sender},
            "subject": notice.subject,
            "content": [
                {"type": "text/plain", "value": notice.text_body()},
                {"type": "text/html", "value": notice.html_body()},
            ],
        }
        t0 = time.perf_counter()
        try:
            response = self._client.post("/v3/mail/send", json=payload)
        except httpx.HTTPError as exc:
            metrics.record_failure(
                "sendgrid", "mail_send",
                error_type=type(exc).__name__,
                latency_ms=(time.perf_counter() - t0) * 1000,
            )
            raise NotificationError(f"SendGrid request failed: {exc}") from exc

        elapsed = (time.perf_counter() - t0) * 1000
        if response.status_code >= 400:
            metrics.record_failure(
                "sendgrid", "mail_send",
                error_type=f"{response.status_code // 100}xx", latency_ms=elapsed,
            )
            raise NotificationError(
                f"SendGrid error {response.status_code}: {response.text}",
                status_code=response.status_code,
            )

        metrics.record_success("sendgrid", "mail_send", latency_ms=elapsed)
        logger.info("Confirmation email for %s sent to %s", notice.reservation_id, to)
