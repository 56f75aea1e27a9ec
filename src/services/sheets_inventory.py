"""Google Sheets–backed inventory store (via gspread).

Sheet layout
────────────
``Books``         row 1 headers, then ``A:F`` = book id, title, author,
                  copies available, shelf location, category
``Reservations``  ``A:G`` = reservation id, book id, title, student name,
                  student email, timestamp (Asia/Manila), status

Reads degrade to the fixed fallback catalog when the spreadsheet cannot be
reached.  Writes never degrade: a failed decrement raises
``InventoryUnavailableError`` so the reservation is reported as failed.

Sheets has no compare-and-swap, so decrements are serialized by a writer lock
and re-read the row immediately before writing.  The guarantee holds within
one process; running several instances against the same sheet needs an
external writer.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any

import gspread
from gspread.utils import rowcol_to_a1

from src.config import (
    GOOGLE_PRIVATE_KEY,
    GOOGLE_SERVICE_ACCOUNT_EMAIL,
    GOOGLE_SERVICE_ACCOUNT_FILE,
    GOOGLE_SHEET_ID,
)
from src.models import Book, Reservation, ReservationRecord
from src.services.inventory import (
    BookNotFoundError,
    InventoryStore,
    InventoryUnavailableError,
    OutOfStockError,
    fallback_catalog,
    format_log_timestamp,
)
from src.services.metrics import metrics

logger = logging.getLogger(__name__)

WS_BOOKS = "Books"
WS_RESERVATIONS = "Reservations"
BOOKS_RANGE = "A2:F"
RESERVATIONS_RANGE = "A2:G"
COPIES_COLUMN = 4  # D
FIRST_DATA_ROW = 2  # row 1 holds the headers

_TOKEN_URI = "https://oauth2.googleapis.com/token"


def sheets_configured() -> bool:
    """True when a sheet id and some form of service-account credential exist."""
    has_creds = bool(GOOGLE_SERVICE_ACCOUNT_FILE) or bool(
        GOOGLE_SERVICE_ACCOUNT_EMAIL and GOOGLE_PRIVATE_KEY
    )
    return bool(GOOGLE_SHEET_ID) and has_creds


def _authorize() -> gspread.Client:
    if GOOGLE_SERVICE_ACCOUNT_FILE:
        return gspread.service_account(filename=GOOGLE_SERVICE_ACCOUNT_FILE)
    return gspread.service_account_from_dict(
        {
            "type": "service_account",
            "client_email": GOOGLE_SERVICE_ACCOUNT_EMAIL,
            "private_key": GOOGLE_PRIVATE_KEY,
            "token_uri": _TOKEN_URI,
        }
    )


def _to_int(value: Any) -> int:
    try:
        return max(int(str(value).strip()), 0)
    except (TypeError, ValueError):
        return 0


def _cell(row: list[Any], index: int) -> str:
    return str(row[index]).strip() if index < len(row) and row[index] is not None else ""


def _row_to_book(row: list[Any]) -> Book:
    return Book(
        book_id=_cell(row, 0),
        title=_cell(row, 1),
        author=_cell(row, 2),
        copies_available=_to_int(_cell(row, 3)),
        location=_cell(row, 4),
        category=_cell(row, 5),
    )


class SheetsInventory(InventoryStore):
    """Inventory store reading and writing a Google Sheets spreadsheet."""

    def __init__(
        self,
        spreadsheet: gspread.Spreadsheet | None = None,
        *,
        sheet_id: str | None = None,
    ) -> None:
        # Opened lazily so an unreachable sheet never blocks startup
        self._spreadsheet = spreadsheet
        self._sheet_id = sheet_id or GOOGLE_SHEET_ID
        self._open_lock = threading.Lock()
        self._write_lock = threading.Lock()

    # ── Internal helpers ─────────────────────────────────────────────

    def _worksheet(self, title: str) -> gspread.Worksheet:
        if self._spreadsheet is None:
            with self._open_lock:
                if self._spreadsheet is None:
                    self._spreadsheet = _authorize().open_by_key(self._sheet_id)
        return self._spreadsheet.worksheet(title)

    def _read_book_rows(self) -> list[list[Any]]:
        t0 = time.perf_counter()
        try:
            rows = self._worksheet(WS_BOOKS).get_values(BOOKS_RANGE)
        except Exception as exc:
            metrics.record_failure(
                "sheets", "read_books",
                error_type=type(exc).__name__,
                latency_ms=(time.perf_counter() - t0) * 1000,
            )
            raise
        metrics.record_success(
            "sheets", "read_books", latency_ms=(time.perf_counter() - t0) * 1000,
        )
        return rows

    # ── InventoryStore API ───────────────────────────────────────────

    def list_books(self) -> list[Book]:
        try:
            rows = self._read_book_rows()
        except Exception as exc:
            logger.warning("Google Sheets read failed, using fallback catalog: %s", exc)
            return fallback_catalog()

        books = [_row_to_book(row) for row in rows if any(str(c).strip() for c in row)]
        logger.debug("Loaded %d books from Google Sheets", len(books))
        return books

    def decrement_copy(self, book_id: str) -> Book:
        with self._write_lock:
            try:
                rows = self._read_book_rows()
            except Exception as exc:
                raise InventoryUnavailableError(
                    f"Could not read inventory before decrement: {exc}"
                ) from exc

            for offset, row in enumerate(rows):
                book = _row_to_book(row)
                if book.book_id != book_id:
                    continue
                if book.copies_available < 1:
                    raise OutOfStockError(book_id)

                book.copies_available -= 1
                cell = rowcol_to_a1(FIRST_DATA_ROW + offset, COPIES_COLUMN)
                t0 = time.perf_counter()
                try:
                    self._worksheet(WS_BOOKS).update(
                        range_name=cell,
                        values=[[book.copies_available]],
                        value_input_option="RAW",
                    )
                except Exception as exc:
                    metrics.record_failure(
                        "sheets", "decrement_copy",
                        error_type=type(exc).__name__,
                        latency_ms=(time.perf_counter() - t0) * 1000,
                    )
                    raise InventoryUnavailableError(
                        f"Failed to update book availability: {exc}"
                    ) from exc

                metrics.record_success(
                    "sheets", "decrement_copy",
                    latency_ms=(time.perf_counter() - t0) * 1000,
                )
                logger.info(
                    "Decremented copy for %s. New count: %d", book_id, book.copies_available,
                )
                return book

        raise BookNotFoundError(book_id)

    def log_reservation(self, reservation: Reservation) -> None:
        row = [
            reservation.reservation_id,
            reservation.book.book_id,
            reservation.book.title or "N/A",
            reservation.student.name,
            reservation.student.email,
            format_log_timestamp(reservation.created_at),
            "Active",
        ]
        t0 = time.perf_counter()
        try:
            self._worksheet(WS_RESERVATIONS).append_row(row, value_input_option="RAW")
        except Exception as exc:
            metrics.record_failure(
                "sheets", "log_reservation",
                error_type=type(exc).__name__,
                latency_ms=(time.perf_counter() - t0) * 1000,
            )
            raise InventoryUnavailableError(f"Failed to log reservation: {exc}") from exc
        metrics.record_success(
            "sheets", "log_reservation", latency_ms=(time.perf_counter() - t0) * 1000,
        )
        logger.info("Reservation %s logged to Google Sheets", reservation.reservation_id)

    def list_reservations(self) -> list[ReservationRecord]:
        try:
            rows = self._worksheet(WS_RESERVATIONS).get_values(RESERVATIONS_RANGE)
        except Exception as exc:
            raise InventoryUnavailableError(f"Failed to read reservations: {exc}") from exc

        return [
            ReservationRecord(
                reservation_id=_cell(row, 0),
                book_id=_cell(row, 1),
                title=_cell(row, 2),
                student_name=_cell(row, 3),
                student_email=_cell(row, 4),
                timestamp=_cell(row, 5),
                status=_cell(row, 6),
            )
            for row in rows
            if _cell(row, 0)
        ]
