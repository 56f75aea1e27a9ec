"""Rule-based replies used when the completion provider fails or is not configured."""

from __future__ import annotations

from src.knowledge import search_knowledge
from src.models import Book

LIBRARY_HOURS_REPLY = "Library hours: Monday-Friday 8:00 AM - 5:00 PM, Saturday 9:00 AM - 12:00 PM"
POLICIES_REPLY = (
    "Library policies: 7-day loan, 2 books maximum, P10/day late fee, "
    "reservations held for 3 days."
)
DEFAULT_REPLY = (
    "I'm here to help with UBLC library services! I can assist with book "
    "reservations, library information, and book searches."
)

_PROGRAMMING_WORDS = ("programming", "code")
_HOURS_WORDS = ("hour", "time", "open")
_CATALOG_WORDS = ("available", "catalog", "book list", "books")
_POLICY_WORDS = ("rule", "policy", "late", "fine", "loan")


def _mentions(text: str, words: tuple[str, ...]) -> bool:
    return any(w in text for w in words)


def _is_programming_book(book: Book) -> bool:
    return (
        book.category == "Programming"
        or "Programming" in book.title
        or "Python" in book.title
    )


def fallback_reply(message: str, catalog: list[Book]) -> str:
    """Pick a canned reply for *message*; the first matching rule wins."""
    text = message.lower()

    if _mentions(text, _PROGRAMMING_WORDS):
        books = [b for b in catalog if _is_programming_book(b)][:5]
        if books:
            listing = "\n".join(f"• {b.title} ({b.copies_available} available)" for b in books)
            return f"We have programming books including:\n{listing}"
        return "We have programming books: Programming in C, Python Programming, Data Structures and Algorithms."

    if _mentions(text, _HOURS_WORDS):
        return LIBRARY_HOURS_REPLY

    if _mentions(text, _CATALOG_WORDS):
        categories = list(dict.fromkeys(b.category for b in catalog if b.category))
        if categories:
            return f"Available categories: {', '.join(categories)}"
        return "We have books in Programming, Computer Science, Database, Networking and more."

    if _mentions(text, _POLICY_WORDS):
        return POLICIES_REPLY

    matches = search_knowledge(message)
    if matches:
        section = matches[0]
        return f"**{section['heading']}**\n{section['body']}"

    return DEFAULT_REPLY
