"""UBLC Library Assistant — a chat assistant for a campus library.

Architecture Overview
=====================

Each chat turn runs through a small **LangGraph** state machine:

1. **router** — sends the turn to the reservation dialogue when the session is
   mid-reservation or the message shows reservation intent, otherwise to chat.

2. **reservation** — the reservation state machine: resolve a book title,
   collect the student's ID, name and email, confirm, then decrement the
   inventory, log the reservation and email a confirmation.

3. **chat** — general questions answered by Claude (via LangChain), with a
   prompt carrying the live catalog and the library knowledge base.  Any
   provider failure falls back to rule-based replies.

Routing: router → reservation → END, or router → chat → END

Key Design Decisions
--------------------
- **Sessions**: held in memory with per-session locks (one turn at a time per
  conversation) and LRU + idle-TTL eviction.
- **Inventory**: Google Sheets via gspread when configured, otherwise an
  in-memory catalog.  The copy decrement is conditional and serialized, so
  two students can never take the same last copy.
- **Best-effort side effects**: once a copy is taken, failures to log the
  reservation or send the email are reported, never rolled back.
- **Dual Interface**: FastAPI server (production) + CLI chat loop (development/testing).

Package Structure
-----------------
- ``src/agent.py`` — LangGraph turn pipeline and ``LibraryAssistant`` facade
- ``src/dialogue.py`` — reservation state machine
- ``src/intent.py`` — reservation intent, title and student-detail extraction
- ``src/models.py`` — books, students, sessions and reservations
- ``src/config.py`` — Centralized configuration from environment variables
- ``src/prompts.py`` — chat prompt with catalog and knowledge base
- ``src/knowledge.py`` / ``src/fallback.py`` — knowledge base and rule-based replies
- ``src/server.py`` — FastAPI application
- ``src/main.py`` — CLI chat interface
- ``src/services/`` — inventory, email, completion, sessions, metrics
- ``src/api/`` — FastAPI routes and Pydantic schemas
"""
