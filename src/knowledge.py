"""Library knowledge base.

Loads KNOWLEDGE_BASE.md once at import time.  The full text is embedded in
the chat prompt (it's small) and ``search_knowledge`` does keyword matching
over its ``###`` sections for the rule-based fallback replies.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

logger = logging.getLogger(__name__)

_KB_PATH = Path(__file__).resolve().parent.parent / "KNOWLEDGE_BASE.md"


def _load_knowledge_base() -> str:
    """Read the full KNOWLEDGE_BASE.md file."""
    try:
        return _KB_PATH.read_text(encoding="utf-8")
    except FileNotFoundError:
        logger.error("KNOWLEDGE_BASE.md not found at %s", _KB_PATH)
        return ""


def _split_into_sections(content: str) -> list[dict[str, str]]:
    """Split the markdown into Q&A sections.

    Returns a list of dicts like:
      {"heading": "What are the library hours?", "body": "Monday to Friday..."}
    """
    sections: list[dict[str, str]] = []
    parts = re.split(r"###\s+(.+?)(?=\n)", content)

    # parts[0] is the preamble, then alternating heading/body pairs
    for i in range(1, len(parts), 2):
        heading = parts[i].strip()
        body = parts[i + 1].strip() if i + 1 < len(parts) else ""
        # Drop the trailing --- separator and any following ## heading
        body = re.split(r"\n---\s*(?:\n|$)", body)[0].strip()
        sections.append({"heading": heading, "body": body})

    return sections


_FULL_KNOWLEDGE: str = _load_knowledge_base()
_SECTIONS: list[dict[str, str]] = _split_into_sections(_FULL_KNOWLEDGE)


def get_full_knowledge() -> str:
    """Return the complete knowledge base (used for prompt injection)."""
    return _FULL_KNOWLEDGE


def search_knowledge(
    query: str,
    limit: int = 1,
    sections: list[dict[str, str]] | None = None,
) -> list[dict[str, str]]:
    """Return up to *limit* sections ranked by keyword overlap with *query*.

    Words of three characters or fewer are ignored; a query word that appears
    in a section heading scores a bonus.  Returns ``[]`` when nothing matches.
    """
    candidates = _SECTIONS if sections is None else sections
    words = {w.strip("?.,!") for w in query.lower().split()}
    words = {w for w in words if len(w) > 3}
    if not candidates or not words:
        return []

    scored: list[tuple[int, int, dict[str, str]]] = []
    for position, section in enumerate(candidates):
        heading = section["heading"].lower()
        text = f"{heading} {section['body'].lower()}"
        score = sum(1 for w in words if w in text)
        score += sum(2 for w in words if w in heading)
        if score > 0:
            scored.append((score, -position, section))

    scored.sort(key=lambda item: (item[0], item[1]), reverse=True)
    return [section for _, _, section in scored[:limit]]
