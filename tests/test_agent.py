"""Tests for the turn graph and the LibraryAssistant facade.

Covers:
  - Router decisions (reservation vs chat)
  - Chat node provenance (ai vs fallback)
  - Full multi-turn reservation scenario through handle_turn
  - Session clearing, recovery and introspection
"""

from __future__ import annotations

from unittest.mock import patch

import pytest

from src.agent import (
    FALLBACK_NOTE,
    NO_PROVIDER_NOTE,
    RECOVERY_REPLY,
    TurnState,
    _make_chat_node,
    _make_router_node,
    create_library_assistant,
    route_turn,
)
from src.dialogue import ReservationDialogue
from src.models import Session
from src.services.completion import CompletionError
from src.services.inventory import InMemoryInventory
from src.services.notifications import LoggingNotificationSender
from src.services.reservations import ReservationService

# ── Nodes ────────────────────────────────────────────────────────────


@pytest.fixture
def dialogue(inventory):
    return ReservationDialogue(inventory, ReservationService(inventory, None))


class TestRouter:
    def test_reservation_intent_routes_to_reservation(self, dialogue):
        router = _make_router_node(dialogue)
        state: TurnState = {"session": Session(session_id="s"), "message": "reserve Python Programming"}
        assert router(state) == {"route": "reservation"}

    def test_plain_question_routes_to_chat(self, dialogue):
        router = _make_router_node(dialogue)
        state: TurnState = {"session": Session(session_id="s"), "message": "what are your hours"}
        assert router(state) == {"route": "chat"}

    def test_mid_reservation_routes_to_reservation(self, dialogue):
        session = Session(session_id="s")
        session.begin_reservation("Python Programming")
        router = _make_router_node(dialogue)
        assert router({"session": session, "message": "hello"}) == {"route": "reservation"}

    def test_route_turn_defaults_to_chat(self):
        assert route_turn({}) == "chat"


class TestChatNode:
    def _state(self, catalog, message="What are the library hours?"):
        session = Session(session_id="s")
        session.add_turn("user", message)
        return {"session": session, "message": message, "catalog": catalog}

    def test_provider_reply_is_tagged_ai(self, catalog, make_provider):
        provider = make_provider(reply="We open at 8 AM.")
        result = _make_chat_node(provider)(self._state(catalog))["result"]
        assert result.reply == "We open at 8 AM."
        assert result.source == "ai"
        assert "User: What are the library hours?" in provider.prompts[0]

    def test_provider_failure_uses_fallback(self, catalog, make_provider):
        provider = make_provider(error=CompletionError("RateLimitError: 429"))
        result = _make_chat_node(provider)(self._state(catalog))["result"]
        assert result.source == "fallback"
        assert result.note == FALLBACK_NOTE
        assert "8:00 AM - 5:00 PM" in result.reply

    def test_no_provider_uses_fallback(self, catalog):
        result = _make_chat_node(None)(self._state(catalog))["result"]
        assert result.source == "fallback"
        assert result.note == NO_PROVIDER_NOTE


# ── LibraryAssistant ─────────────────────────────────────────────────


class TestHandleTurn:
    def test_blank_message_is_rejected(self, assistant):
        with pytest.raises(ValueError):
            assistant.handle_turn("   ")

    def test_new_session_id_is_generated(self, assistant):
        turn = assistant.handle_turn("hello")
        assert turn.session_id.startswith("session_")
        assert turn.source == "ai"

    def test_unknown_session_id_is_adopted(self, assistant):
        turn = assistant.handle_turn("hello", session_id="session_custom")
        assert turn.session_id == "session_custom"
        assert assistant.session_info("session_custom")["historyLength"] == 2

    def test_chat_history_is_passed_to_provider(self, assistant, provider):
        assistant.handle_turn("first question", session_id="s1")
        assistant.handle_turn("second question", session_id="s1")
        prompt = provider.prompts[-1]
        assert "user: first question" in prompt
        assert "assistant: Hello from the library assistant!" in prompt
        assert "user: second question" not in prompt
        assert prompt.endswith("User: second question\nAssistant:")

    def test_end_to_end_reservation(self, assistant, inventory, student, notifier):
        before = inventory.get_book("B001").copies_available

        first = assistant.handle_turn("reserve Programming in C")
        sid = first.session_id
        assert first.result.requires_student_info
        assert first.result.reservation_intent
        info = assistant.session_info(sid)
        assert info["currentFlow"] == "reservation"
        assert info["step"] == "collecting_info"

        second = assistant.handle_turn("here are my details", student=student, session_id=sid)
        assert second.result.requires_confirmation
        assert assistant.session_info(sid)["step"] == "awaiting_confirmation"

        third = assistant.handle_turn("yes", session_id=sid)
        assert third.result.reservation_complete
        assert third.result.reservation_id.startswith("RES-")
        assert third.session_id is None
        assert inventory.get_book("B001").copies_available == before - 1
        assert assistant.session_info(sid) is None
        assert len(notifier.sent) == 1

    def test_repeated_yes_starts_fresh_idle_session(self, assistant, inventory, student):
        first = assistant.handle_turn("reserve Programming in C")
        sid = first.session_id
        assistant.handle_turn("details", student=student, session_id=sid)
        assistant.handle_turn("yes", session_id=sid)
        count = inventory.get_book("B001").copies_available

        again = assistant.handle_turn("yes", session_id=sid)
        assert again.result.outcome is None
        assert again.source == "ai"
        assert again.session_id == sid
        assert assistant.session_info(sid)["currentFlow"] == "none"
        assert inventory.get_book("B001").copies_available == count

    def test_unexpected_error_returns_recovery_reply(self, assistant, inventory):
        with patch.object(inventory, "list_books", side_effect=RuntimeError("boom")):
            turn = assistant.handle_turn("hello", session_id="s1")
        assert turn.reply == RECOVERY_REPLY
        assert turn.session_id is None
        assert turn.source == "error-recovery"

    def test_clear_session(self, assistant):
        assistant.handle_turn("hello", session_id="s1")
        assert assistant.clear_session("s1") is True
        assert assistant.clear_session("s1") is False
        assert assistant.clear_session(None) is False


class TestCreateLibraryAssistant:
    def test_defaults_without_integrations(self):
        with patch("src.agent.sheets_configured", return_value=False), \
             patch("src.agent.SENDGRID_API_KEY", None), \
             patch("src.agent.ANTHROPIC_API_KEY", None):
            assistant = create_library_assistant()
        assert isinstance(assistant.inventory, InMemoryInventory)
        assert isinstance(assistant.reservations.notifier, LoggingNotificationSender)
        assert assistant.provider is None

    def test_uses_anthropic_when_key_present(self):
        with patch("src.agent.sheets_configured", return_value=False), \
             patch("src.agent.ANTHROPIC_API_KEY", "sk-test"), \
             patch("src.agent.AnthropicCompletionProvider") as mock_provider:
            assistant = create_library_assistant()
        assert assistant.provider is mock_provider.return_value
