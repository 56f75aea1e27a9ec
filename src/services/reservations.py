"""Reservation execution shared by the chat dialogue and the REST endpoint.

Order of operations for one reservation:

1. ``decrement_copy``  — atomic and conditional; any failure aborts with no
   side effects (``BookNotFoundError``, ``OutOfStockError``,
   ``InventoryUnavailableError`` propagate to the caller)
2. ``log_reservation`` — best-effort; failure is logged and reported
3. confirmation email  — best-effort; failure is logged and reported
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from src.config import PICKUP_WINDOW_DAYS
from src.models import Book, Reservation, StudentIdentity
from src.services.inventory import InventoryError, InventoryStore
from src.services.notifications import (
    NotificationError,
    NotificationSender,
    ReservationNotice,
)

logger = logging.getLogger(__name__)

PICKUP_DATE_FORMAT = "%B %d, %Y"


@dataclass
class ReservationReceipt:
    reservation: Reservation
    book: Book  # state after the decrement
    email_status: str  # "sent" | "failed" | "skipped"
    logged: bool

    @property
    def pickup_deadline_text(self) -> str:
        return self.reservation.pickup_deadline.strftime(PICKUP_DATE_FORMAT)


class ReservationService:
    def __init__(
        self,
        inventory: InventoryStore,
        notifier: NotificationSender | None,
        *,
        pickup_days: int = PICKUP_WINDOW_DAYS,
    ) -> None:
        self.inventory = inventory
        self.notifier = notifier
        self.pickup_days = pickup_days

    def reserve(self, book: Book, student: StudentIdentity) -> ReservationReceipt:
        reservation = Reservation.create(book, student, pickup_days=self.pickup_days)
        updated = self.inventory.decrement_copy(book.book_id)
        reservation.book = updated

        logged = True
        try:
            self.inventory.log_reservation(reservation)
        except InventoryError as exc:
            logged = False
            logger.warning(
                "Error logging reservation %s (continuing): %s",
                reservation.reservation_id, exc,
            )

        receipt = ReservationReceipt(
            reservation=reservation, book=updated, email_status="skipped", logged=logged,
        )
        receipt.email_status = self._notify(receipt)

        logger.info(
            "Reservation created: id=%s book=%s student=%s email=%s logged=%s",
            reservation.reservation_id, updated.book_id, student.student_id,
            receipt.email_status, logged,
        )
        return receipt

    def _notify(self, receipt: ReservationReceipt) -> str:
        if self.notifier is None:
            return "skipped"
        reservation = receipt.reservation
        notice = ReservationNotice(
            reservation_id=reservation.reservation_id,
            book_title=receipt.book.title,
            author=receipt.book.author,
            location=receipt.book.location,
            student_name=reservation.student.name,
            student_id=reservation.student.student_id,
            pickup_deadline=receipt.pickup_deadline_text,
            pickup_days=self.pickup_days,
        )
        try:
            self.notifier.send_reservation_confirmation(reservation.student.email, notice)
        except NotificationError as exc:
            logger.warning(
                "Failed to send confirmation email for %s: %s", reservation.reservation_id, exc,
            )
            return "failed"
        except Exception:
            # The copy is already taken; an email bug must not surface as a failed reservation
            logger.exception("Unexpected email error for %s", reservation.reservation_id)
            return "failed"
        return "sent"
