"""Book inventory store interface and the in-memory implementation.

The inventory is the single owner of copy counts.  ``decrement_copy`` is the
only mutation and it is conditional: it checks the count and writes the new
value as one atomic step, so two sessions racing for the last copy cannot
both win.
"""

from __future__ import annotations

import copy
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from zoneinfo import ZoneInfo

from src.models import Book, Reservation, ReservationRecord

logger = logging.getLogger(__name__)

RESERVATION_LOG_TZ = ZoneInfo("Asia/Manila")

# Substituted whenever the remote catalog cannot be read
FALLBACK_CATALOG: tuple[Book, ...] = (
    Book(
        book_id="B001",
        title="Programming in C",
        author="Dennis Ritchie",
        copies_available=5,
        location="2nd Floor - Section A",
        category="Programming",
    ),
    Book(
        book_id="B002",
        title="Data Structures and Algorithms",
        author="Robert Sedgewick",
        copies_available=3,
        location="2nd Floor - Section A",
        category="Computer Science",
    ),
    Book(
        book_id="B003",
        title="Python Programming",
        author="Mark Lutz",
        copies_available=9,
        location="2nd Floor - Section A",
        category="Programming",
    ),
)


def fallback_catalog() -> list[Book]:
    """Return a fresh, mutable copy of the fixed fallback catalog."""
    return [copy.copy(book) for book in FALLBACK_CATALOG]


def format_log_timestamp(moment: datetime) -> str:
    """Render *moment* the way reservation log rows store it (Manila time)."""
    return moment.astimezone(RESERVATION_LOG_TZ).strftime("%m/%d/%Y, %I:%M:%S %p")


# ── Errors ───────────────────────────────────────────────────────────


class InventoryError(Exception):
    """Base class for inventory failures."""


class BookNotFoundError(InventoryError):
    def __init__(self, book_id: str):
        self.book_id = book_id
        super().__init__(f"Book not found: {book_id}")


class OutOfStockError(InventoryError):
    def __init__(self, book_id: str):
        self.book_id = book_id
        super().__init__(f"No copies available for book: {book_id}")


class InventoryUnavailableError(InventoryError):
    """The backing datastore could not be reached for a write."""


# ── Interface ────────────────────────────────────────────────────────


class InventoryStore(ABC):
    """Narrow interface the reservation core uses to talk to the catalog."""

    @abstractmethod
    def list_books(self) -> list[Book]:
        """Return a fresh snapshot of the whole catalog, in catalog order."""

    @abstractmethod
    def decrement_copy(self, book_id: str) -> Book:
        """Atomically take one copy of *book_id* and return the updated book.

        Raises ``BookNotFoundError``, ``OutOfStockError`` or
        ``InventoryUnavailableError``; nothing is written in those cases.
        """

    @abstractmethod
    def log_reservation(self, reservation: Reservation) -> None:
        """Append *reservation* to the reservations log."""

    @abstractmethod
    def list_reservations(self) -> list[ReservationRecord]:
        """Return every logged reservation, oldest first."""

    def get_book(self, book_id: str) -> Book | None:
        for book in self.list_books():
            if book.book_id == book_id:
                return book
        return None

    def find_books(self, query: str) -> list[Book]:
        """Title / author / category substring match, or an exact id match."""
        if not query or not query.strip():
            return []
        term = query.strip().lower()
        return [
            book for book in self.list_books()
            if term in book.title.lower()
            or term in book.author.lower()
            or term in book.category.lower()
            or book.book_id.lower() == term
        ]


# ── In-memory implementation ─────────────────────────────────────────


class InMemoryInventory(InventoryStore):
    """Thread-safe inventory held in process memory.

    Used when no spreadsheet is configured, and as the test double.
    """

    def __init__(self, books: list[Book] | None = None) -> None:
        source = books if books is not None else fallback_catalog()
        self._books: dict[str, Book] = {b.book_id: copy.copy(b) for b in source}
        self._reservations: list[ReservationRecord] = []
        self._lock = threading.Lock()

    def list_books(self) -> list[Book]:
        with self._lock:
            return [copy.copy(b) for b in self._books.values()]

    def decrement_copy(self, book_id: str) -> Book:
        with self._lock:
            book = self._books.get(book_id)
            if book is None:
                raise BookNotFoundError(book_id)
            if book.copies_available < 1:
                raise OutOfStockError(book_id)
            book.copies_available -= 1
            logger.info(
                "Decremented copy for %s. New count: %d", book_id, book.copies_available,
            )
            return copy.copy(book)

    def log_reservation(self, reservation: Reservation) -> None:
        record = ReservationRecord(
            reservation_id=reservation.reservation_id,
            book_id=reservation.book.book_id,
            title=reservation.book.title or "N/A",
            student_name=reservation.student.name,
            student_email=reservation.student.email,
            timestamp=format_log_timestamp(reservation.created_at),
            status="Active",
        )
        with self._lock:
            self._reservations.append(record)

    def list_reservations(self) -> list[ReservationRecord]:
        with self._lock:
            return list(self._reservations)
