"""Domain model: books, students, sessions and reservations.

The session model carries the reservation state machine's data.  Its three
mutators (``begin_reservation``, ``record_student``, ``reset_student``) are
the only way to move between steps, so the per-step invariants hold after
every transition:

* ``COLLECTING_INFO``       → a book title is set, no student yet
* ``AWAITING_CONFIRMATION`` → a book title and a complete student are set
"""

from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from src.config import PICKUP_WINDOW_DAYS, SESSION_HISTORY_LIMIT


class Flow(str, Enum):
    NONE = "none"
    RESERVATION = "reservation"


class Step(str, Enum):
    NONE = "none"
    COLLECTING_INFO = "collecting_info"
    AWAITING_CONFIRMATION = "awaiting_confirmation"


def _utcnow() -> datetime:
    return datetime.now(UTC)


# ── Catalog ──────────────────────────────────────────────────────────


@dataclass
class Book:
    """One catalog entry as stored in the inventory."""

    book_id: str
    title: str
    author: str = ""
    copies_available: int = 0
    location: str = ""
    category: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "bookId": self.book_id,
            "title": self.title,
            "author": self.author,
            "copiesAvailable": self.copies_available,
            "location": self.location,
            "category": self.category,
        }


def find_by_title(catalog: list[Book], title: str) -> Book | None:
    """Return the catalog entry whose title matches *title* exactly."""
    for book in catalog:
        if book.title == title:
            return book
    return None


# ── Student identity ─────────────────────────────────────────────────


def email_error(email: str | None) -> str | None:
    """Return an error message if *email* looks invalid, else ``None``.

    The check is deliberately loose: an ``@`` with something before it and a
    ``.`` somewhere after it, followed by at least one character.
    """
    if not email or not email.strip():
        return "No email address was provided."
    email = email.strip()
    local, at, domain = email.partition("@")
    if not at or not local or "@" in domain or " " in email:
        return f'"{email}" does not look like a valid email address.'
    dot = domain.rfind(".")
    if dot <= 0 or dot == len(domain) - 1:
        return f'"{email}" does not look like a valid email address.'
    return None


@dataclass(frozen=True)
class StudentIdentity:
    student_id: str = ""
    name: str = ""
    email: str = ""

    @property
    def is_complete(self) -> bool:
        return all(v and v.strip() for v in (self.student_id, self.name, self.email))

    def email_error(self) -> str | None:
        return email_error(self.email)

    def to_dict(self) -> dict[str, str]:
        return {"studentId": self.student_id, "name": self.name, "email": self.email}


# ── Session ──────────────────────────────────────────────────────────


def new_session_id() -> str:
    """Generate an opaque session token, e.g. ``session_1760870400000_3f9a1c0be``."""
    return f"session_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


@dataclass
class Turn:
    role: str  # "user" | "assistant"
    text: str
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass
class ReservationSlots:
    book_title: str | None = None
    student: StudentIdentity | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "bookTitle": self.book_title,
            "studentInfo": self.student.to_dict() if self.student else None,
        }


@dataclass
class Session:
    """Per-conversation state, kept in memory by the session store."""

    session_id: str
    flow: Flow = Flow.NONE
    step: Step = Step.NONE
    slots: ReservationSlots = field(default_factory=ReservationSlots)
    history: list[Turn] = field(default_factory=list)
    created_at: datetime = field(default_factory=_utcnow)
    history_limit: int = SESSION_HISTORY_LIMIT

    @property
    def in_reservation(self) -> bool:
        return self.flow is Flow.RESERVATION

    def add_turn(self, role: str, text: str) -> None:
        """Append a turn, rolling the oldest ones off past ``history_limit``."""
        self.history.append(Turn(role=role, text=text))
        overflow = len(self.history) - self.history_limit
        if overflow > 0:
            del self.history[:overflow]

    def recent_turns(self, count: int) -> list[Turn]:
        return self.history[-count:] if count > 0 else []

    # ── State transitions ────────────────────────────────────────────

    def begin_reservation(self, book_title: str) -> None:
        if not book_title:
            raise ValueError("A reservation needs a resolved book title")
        self.flow = Flow.RESERVATION
        self.step = Step.COLLECTING_INFO
        self.slots = ReservationSlots(book_title=book_title, student=None)

    def record_student(self, student: StudentIdentity) -> None:
        if self.step is not Step.COLLECTING_INFO or not self.slots.book_title:
            raise ValueError("Student details can only be recorded while collecting info")
        if not student.is_complete:
            raise ValueError("Student identity is incomplete")
        self.slots.student = student
        self.step = Step.AWAITING_CONFIRMATION

    def reset_student(self) -> None:
        if not self.slots.book_title:
            raise ValueError("No reservation in progress")
        self.slots.student = None
        self.step = Step.COLLECTING_INFO

    def describe(self) -> dict[str, Any]:
        """Introspection view used by the session-info endpoint."""
        return {
            "id": self.session_id,
            "currentFlow": self.flow.value,
            "step": self.step.value,
            "data": self.slots.to_dict(),
            "createdAt": self.created_at.isoformat(),
            "historyLength": len(self.history),
        }


# ── Reservation ──────────────────────────────────────────────────────

_reservation_id_lock = threading.Lock()
_last_reservation_millis = 0


def new_reservation_id() -> str:
    """Return ``RES-<epoch millis>``, strictly increasing within the process."""
    global _last_reservation_millis
    with _reservation_id_lock:
        millis = max(int(time.time() * 1000), _last_reservation_millis + 1)
        _last_reservation_millis = millis
    return f"RES-{millis}"


@dataclass
class Reservation:
    reservation_id: str
    book: Book
    student: StudentIdentity
    created_at: datetime = field(default_factory=_utcnow)
    status: str = "reserved"
    pickup_days: int = PICKUP_WINDOW_DAYS

    @classmethod
    def create(cls, book: Book, student: StudentIdentity, **kwargs: Any) -> Reservation:
        return cls(reservation_id=new_reservation_id(), book=book, student=student, **kwargs)

    @property
    def pickup_deadline(self) -> datetime:
        return self.created_at + timedelta(days=self.pickup_days)


@dataclass
class ReservationRecord:
    """A row read back from the reservations log."""

    reservation_id: str
    book_id: str
    title: str
    student_name: str
    student_email: str
    timestamp: str
    status: str

    def to_dict(self) -> dict[str, str]:
        return {
            "reservationId": self.reservation_id,
            "bookId": self.book_id,
            "title": self.title,
            "studentName": self.student_name,
            "studentEmail": self.student_email,
            "timestamp": self.timestamp,
            "status": self.status,
        }
