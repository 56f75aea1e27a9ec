"""Reservation dialogue engine — advances a session by exactly one turn.

States and transitions
──────────────────────
  IDLE ──(intent + title)──────────────▶ COLLECTING_INFO
  IDLE ──(intent, no title)────────────▶ IDLE            asks which book
  COLLECTING_INFO ──(incomplete info)──▶ COLLECTING_INFO re-asks
  COLLECTING_INFO ──(complete info)────▶ AWAITING_CONFIRMATION
  AWAITING_CONFIRMATION ──(yes)────────▶ CONFIRMED | NOT_FOUND | UNAVAILABLE
  AWAITING_CONFIRMATION ──(no)─────────▶ COLLECTING_INFO
  AWAITING_CONFIRMATION ──(other)──────▶ AWAITING_CONFIRMATION re-asks
  any reservation step ──("cancel")───▶ ABANDONED

Terminal outcomes set ``TurnResult.clear_session``; the caller deletes the
session in the same turn, so a repeated "yes" starts over from IDLE.

Confirmation tokens are matched exactly after trimming, case folding and
dropping trailing ``.``/``!``.  "yes please" is *not* a confirmation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from src.intent import IntentStrategy, KeywordIntentStrategy, parse_student_details
from src.models import Book, Session, Step, StudentIdentity, find_by_title
from src.services.inventory import (
    BookNotFoundError,
    InventoryStore,
    InventoryUnavailableError,
    OutOfStockError,
)
from src.services.metrics import metrics
from src.services.reservations import ReservationService

logger = logging.getLogger(__name__)

AFFIRMATIVE_TOKENS = frozenset({"yes", "y", "confirm"})
NEGATIVE_TOKENS = frozenset({"no", "n", "change", "wrong"})
ABANDON_TOKENS = frozenset({"cancel"})

REQUIRED_FIELDS_TEXT = "1. **Student ID:**\n2. **Full Name:**\n3. **Email Address:**"
FREE_TEXT_FORMAT_HINT = "You can also type them as: **ID, Full Name, Email**"


class DialogueOutcome(str, Enum):
    NEEDS_BOOK = "needs_book"
    STARTED = "started"
    NEEDS_INFO = "needs_info"
    NEEDS_CONFIRMATION = "needs_confirmation"
    CONFIRMED = "confirmed"
    NOT_FOUND = "not_found"
    UNAVAILABLE = "unavailable"
    ABANDONED = "abandoned"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_OUTCOMES


_TERMINAL_OUTCOMES = frozenset(
    {
        DialogueOutcome.CONFIRMED,
        DialogueOutcome.NOT_FOUND,
        DialogueOutcome.UNAVAILABLE,
        DialogueOutcome.ABANDONED,
    }
)


@dataclass
class TurnResult:
    """The reply for one turn plus the structured flags returned to the caller."""

    reply: str
    source: str = "reservation"
    outcome: DialogueOutcome | None = None
    requires_student_info: bool = False
    requires_confirmation: bool = False
    reservation_intent: bool = False
    reservation_complete: bool = False
    reservation_id: str | None = None
    book: Book | None = None
    student: StudentIdentity | None = None
    email_status: str | None = None
    note: str | None = None

    @property
    def clear_session(self) -> bool:
        return self.outcome is not None and self.outcome.is_terminal


def normalize_token(message: str) -> str:
    return (message or "").strip().lower().rstrip(".!").strip()


class ReservationDialogue:
    """The reservation state machine.

    ``handle`` returns ``None`` only when the session is idle and the message
    shows no reservation intent; every other turn is owned by the engine.
    """

    def __init__(
        self,
        inventory: InventoryStore,
        reservations: ReservationService,
        strategy: IntentStrategy | None = None,
    ) -> None:
        self.inventory = inventory
        self.reservations = reservations
        self.strategy = strategy or KeywordIntentStrategy()

    def owns_turn(self, session: Session, message: str) -> bool:
        return session.in_reservation or self.strategy.classify_intent(message)

    def handle(
        self,
        session: Session,
        message: str,
        student: StudentIdentity | None,
        catalog: list[Book],
    ) -> TurnResult | None:
        if session.in_reservation:
            token = normalize_token(message)
            if token in ABANDON_TOKENS:
                return self._abandon(session)
            if session.step is Step.COLLECTING_INFO:
                return self._collect_info(session, message, student, catalog)
            if session.step is Step.AWAITING_CONFIRMATION:
                return self._confirm(session, token)
            logger.warning(
                "Session %s in reservation flow without a step; treating as idle",
                session.session_id,
            )

        if not self.strategy.classify_intent(message):
            return None
        return self._start(session, message, catalog)

    # ── IDLE ─────────────────────────────────────────────────────────

    def _start(self, session: Session, message: str, catalog: list[Book]) -> TurnResult:
        title = self.strategy.resolve_entity(message, catalog)
        if not title:
            examples = "\n".join(f'• "{book.title}"' for book in catalog[:3])
            reply = "Which book would you like to reserve?"
            if examples:
                reply += f" You can say:\n{examples}\n• Or any other book title"
            return TurnResult(
                reply=reply,
                outcome=DialogueOutcome.NEEDS_BOOK,
                reservation_intent=True,
            )

        session.begin_reservation(title)
        book = find_by_title(catalog, title)
        reply = f'I can reserve **"{title}"** for you!\n\nFirst, I need:\n{REQUIRED_FIELDS_TEXT}'
        if book is not None:
            reply += f"\n\n{book.copies_available} copies available"
        logger.info("Session %s: reservation started for %r", session.session_id, title)
        return TurnResult(
            reply=reply,
            outcome=DialogueOutcome.STARTED,
            requires_student_info=True,
            reservation_intent=True,
            book=book,
        )

    # ── COLLECTING_INFO ──────────────────────────────────────────────

    def _collect_info(
        self,
        session: Session,
        message: str,
        student: StudentIdentity | None,
        catalog: list[Book],
    ) -> TurnResult:
        title = session.slots.book_title
        candidate = student if student is not None and student.is_complete else None
        if candidate is None:
            candidate = parse_student_details(message)

        if candidate is None:
            return self._ask_for_info(
                f'To reserve **"{title}"**, I need:\n\n{REQUIRED_FIELDS_TEXT}\n\n{FREE_TEXT_FORMAT_HINT}'
            )

        problem = candidate.email_error()
        if problem:
            return self._ask_for_info(
                f"{problem} Please check it and send your details again:\n\n{REQUIRED_FIELDS_TEXT}"
            )

        session.record_student(candidate)
        reply = (
            f"Thank you, {candidate.name}!\n\n"
            f'I have your request to reserve **"{title}"**.\n\n'
            "**Please confirm your details:**\n"
            f"• Student ID: {candidate.student_id}\n"
            f"• Full Name: {candidate.name}\n"
            f"• Email: {candidate.email}\n\n"
            'Is this correct? Reply **yes** to confirm or **no** to correct your details.'
        )
        return TurnResult(
            reply=reply,
            outcome=DialogueOutcome.NEEDS_CONFIRMATION,
            requires_confirmation=True,
            book=find_by_title(catalog, title),
            student=candidate,
        )

    @staticmethod
    def _ask_for_info(reply: str) -> TurnResult:
        return TurnResult(
            reply=reply,
            outcome=DialogueOutcome.NEEDS_INFO,
            requires_student_info=True,
            reservation_intent=True,
        )

    # ── AWAITING_CONFIRMATION ────────────────────────────────────────

    def _confirm(self, session: Session, token: str) -> TurnResult:
        if token in AFFIRMATIVE_TOKENS:
            return self._complete(session)

        if token in NEGATIVE_TOKENS:
            session.reset_student()
            return TurnResult(
                reply=f"Okay! Please send your correct details:\n\n{REQUIRED_FIELDS_TEXT}",
                outcome=DialogueOutcome.NEEDS_INFO,
                requires_student_info=True,
            )

        return TurnResult(
            reply="Please reply **yes** to confirm or **no** to update your information.",
            outcome=DialogueOutcome.NEEDS_CONFIRMATION,
            requires_confirmation=True,
            student=session.slots.student,
        )

    def _complete(self, session: Session) -> TurnResult:
        title = session.slots.book_title
        student = session.slots.student

        book = find_by_title(self.inventory.list_books(), title)
        if book is None:
            return self._finish(
                DialogueOutcome.NOT_FOUND,
                f'Sorry, I cannot find the book "{title}" in our catalog anymore.',
                student=student,
            )
        if book.copies_available < 1:
            return self._finish(
                DialogueOutcome.UNAVAILABLE,
                f'Sorry, "{book.title}" is currently unavailable. No copies are left to reserve.',
                book=book, student=student,
            )

        try:
            receipt = self.reservations.reserve(book, student)
        except OutOfStockError:
            return self._finish(
                DialogueOutcome.UNAVAILABLE,
                f'Sorry, the last copy of "{book.title}" was just reserved by someone else.',
                book=book, student=student,
            )
        except BookNotFoundError:
            return self._finish(
                DialogueOutcome.NOT_FOUND,
                f'Sorry, I cannot find the book "{title}" in our catalog anymore.',
                student=student,
            )
        except InventoryUnavailableError as exc:
            logger.error("Session %s: reservation write failed: %s", session.session_id, exc)
            metrics.record_outcome(DialogueOutcome.FAILED.value)
            return TurnResult(
                reply=(
                    "Sorry, I couldn't complete your reservation because the library "
                    "system is not responding. Nothing was reserved.\n\n"
                    "Reply **yes** to try again in a moment."
                ),
                outcome=DialogueOutcome.FAILED,
                requires_confirmation=True,
                book=book,
                student=student,
                note="Inventory update failed",
            )

        reservation = receipt.reservation
        reply = (
            "**RESERVATION CONFIRMED!**\n\n"
            f"Book: {receipt.book.title}\n"
            f"Student: {student.name}\n"
            f"Student ID: {student.student_id}\n"
            f"Email: {student.email}\n"
            f"Reservation ID: {reservation.reservation_id}\n"
            f"Pick up by: {receipt.pickup_deadline_text}"
        )
        if receipt.book.location:
            reply += f" ({receipt.book.location})"
        if receipt.email_status == "failed":
            reply += (
                "\n\nWe couldn't send the confirmation email, "
                "so please keep your reservation ID."
            )
        return self._finish(
            DialogueOutcome.CONFIRMED,
            reply,
            book=receipt.book,
            student=student,
            reservation_complete=True,
            reservation_id=reservation.reservation_id,
            email_status=receipt.email_status,
        )

    # ── Terminal ─────────────────────────────────────────────────────

    def _abandon(self, session: Session) -> TurnResult:
        logger.info("Session %s: reservation abandoned", session.session_id)
        return self._finish(
            DialogueOutcome.ABANDONED,
            "Okay, I've cancelled that reservation request. "
            "Let me know if there's anything else I can help with.",
        )

    @staticmethod
    def _finish(outcome: DialogueOutcome, reply: str, **fields) -> TurnResult:
        metrics.record_outcome(outcome.value)
        return TurnResult(reply=reply, outcome=outcome, **fields)
