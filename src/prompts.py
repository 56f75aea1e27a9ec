"""Prompt for the general-chat completion call."""

from datetime import UTC, datetime

from src.knowledge import get_full_knowledge
from src.models import Book, Turn

CHAT_PROMPT_TEMPLATE = """You are **UBLC Library Assistant**, a helpful AI for the University of Batangas Lipa Campus library.

## Current Date
Today is **{current_date}** ({current_day_of_week}).

## Your Role
You help students with:
1. **Finding books** in the catalog below and checking how many copies are available
2. **Reserving books**: students say "reserve [book title]" and the reservation system takes over
3. **Answering questions** about library hours, borrowing rules and services

## Book Catalog
{catalog}

## Conversation Guidelines
- Be friendly, professional and UBLC-focused.
- Keep answers short: 2-3 short paragraphs at most.
- Only mention books that appear in the catalog above, with their real copy counts.
- If a student wants a book, tell them to type **reserve** followed by the title.
- Never ask for or repeat student IDs, names or emails here; the reservation flow collects them.
- If you don't know something, say so and suggest asking at the circulation desk.

## Library Knowledge Base
---
{knowledge}
---
"""


def _format_catalog(catalog: list[Book]) -> str:
    if not catalog:
        return "(The catalog is currently unavailable.)"
    return "\n".join(
        f"• {book.title} by {book.author or 'Unknown'} ({book.copies_available} available)"
        for book in catalog
    )


def build_chat_prompt(
    message: str,
    catalog: list[Book],
    history: list[Turn],
    max_turns: int = 3,
) -> str:
    """Build the full completion prompt.

    *history* holds the turns before the current message; only the last
    ``max_turns`` of them are included.
    """
    now = datetime.now(UTC)
    prompt = CHAT_PROMPT_TEMPLATE.format(
        current_date=now.strftime("%d %B %Y"),
        current_day_of_week=now.strftime("%A"),
        catalog=_format_catalog(catalog),
        knowledge=get_full_knowledge(),
    )

    recent = history[-max_turns:] if max_turns > 0 else []
    if recent:
        lines = "\n".join(f"{turn.role}: {turn.text}" for turn in recent)
        prompt += f"\nRecent conversation:\n{lines}\n"
    return prompt + f"\nUser: {message}\nAssistant:"
