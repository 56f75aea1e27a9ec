"""Reservation intent detection and book-title resolution.

Both checks are plain keyword/substring heuristics.  They sit behind the
``IntentStrategy`` protocol so the dialogue engine and the router never call
them directly and a real NLU component can replace them later.

Known limitation: there is no negation handling, so "I don't want to
reserve anything" still counts as reservation intent.
"""

from __future__ import annotations

import re
from typing import Protocol

from src.models import Book, StudentIdentity

RESERVATION_KEYWORDS: tuple[str, ...] = (
    "reserve",
    "borrow",
    "check out",
    "book me",
    "i want to reserve",
    "can i get",
    "i need",
    "get me",
)

# (phrases, canonical title) — tried in order after a direct catalog hit fails
TITLE_ALIASES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("programming in c", "programming c"), "Programming in C"),
    (("data structure", "algorithms"), "Data Structures and Algorithms"),
    (("python",), "Python Programming"),
    (("software engineering",), "Software Engineering"),
    (("database",), "Introduction to Database Systems"),
)

_RESERVE_PHRASE_RE = re.compile(r"reserve\s+(.+)", re.IGNORECASE)
_TRAILING_PUNCT = " \t.,!?;:\"'"

# "2220122, Maria Santos, 2220122@ub.edu.ph"
_STUDENT_DETAILS_RE = re.compile(r"(\d+),\s*(.*?),\s*([\w.+-]+@[\w.-]+\.\w+)")


def has_reservation_intent(text: str) -> bool:
    """True if *text* contains any reservation keyword (case-insensitive)."""
    lowered = (text or "").lower()
    return any(keyword in lowered for keyword in RESERVATION_KEYWORDS)


def extract_book_title(text: str, catalog: list[Book]) -> str | None:
    """Resolve *text* to a single catalog title, or ``None``.

    Resolution order:
      1. a catalog title appears verbatim in the message (catalog order wins)
      2. a hard-coded alias phrase appears in the message
      3. the phrase after "reserve" overlaps a catalog title in either direction

    Aliases resolve to their canonical title even if the current catalog does
    not list it; the confirmation step reports such a book as not found.
    """
    lowered = (text or "").lower()
    if not lowered.strip():
        return None

    for book in catalog:
        if book.title and book.title.lower() in lowered:
            return book.title

    for phrases, title in TITLE_ALIASES:
        if any(phrase in lowered for phrase in phrases):
            return title

    match = _RESERVE_PHRASE_RE.search(lowered)
    if match:
        candidate = match.group(1).strip(_TRAILING_PUNCT)
        if candidate:
            for book in catalog:
                title = book.title.lower()
                if title and (title in candidate or candidate in title):
                    return book.title

    return None


def parse_student_details(text: str) -> StudentIdentity | None:
    """Parse ``ID, Full Name, Email`` typed as free text, or return ``None``."""
    match = _STUDENT_DETAILS_RE.search(text or "")
    if not match:
        return None
    student = StudentIdentity(
        student_id=match.group(1),
        name=match.group(2).strip(),
        email=match.group(3),
    )
    return student if student.is_complete else None


# ── Strategy interface ───────────────────────────────────────────────


class IntentStrategy(Protocol):
    def classify_intent(self, text: str) -> bool: ...

    def resolve_entity(self, text: str, catalog: list[Book]) -> str | None: ...


class KeywordIntentStrategy:
    """Default strategy backed by the keyword and substring heuristics above."""

    def classify_intent(self, text: str) -> bool:
        return has_reservation_intent(text)

    def resolve_entity(self, text: str, catalog: list[Book]) -> str | None:
        return extract_book_title(text, catalog)
