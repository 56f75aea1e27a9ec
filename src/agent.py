"""LangGraph turn pipeline and the assistant facade for the UBLC Library.

Architecture:
  Every inbound message runs through a small LangGraph StateGraph with
  three nodes:

    1. **router**       — decides who owns the turn: the reservation
                          dialogue (mid-reservation, or reservation intent
                          detected) or general chat
    2. **reservation**  — advances the reservation state machine one step
    3. **chat**         — asks the completion provider for a reply, falling
                          back to the rule-based replies on any failure

  Routing:
    router → (reservation?) → reservation → (handled?) → END
                                          → (not ours?) → chat → END
    router → (chat?)        → chat → END

  Memory:
    The graph is compiled without a checkpointer.  Conversation state lives
    in the session store, and ``LibraryAssistant.handle_turn`` runs the
    whole graph while holding that session's lock, so two turns of the
    same conversation never interleave.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from langgraph.graph import END, StateGraph
from typing_extensions import TypedDict

from src.config import ANTHROPIC_API_KEY, SENDGRID_API_KEY
from src.dialogue import ReservationDialogue, TurnResult
from src.fallback import fallback_reply
from src.intent import IntentStrategy
from src.models import Book, Session, StudentIdentity, new_session_id
from src.prompts import build_chat_prompt
from src.services.completion import (
    AnthropicCompletionProvider,
    CompletionError,
    TextCompletionProvider,
)
from src.services.inventory import InMemoryInventory, InventoryStore
from src.services.notifications import (
    LoggingNotificationSender,
    NotificationSender,
    SendGridNotificationSender,
)
from src.services.reservations import ReservationService
from src.services.session_store import InMemorySessionStore, SessionStore
from src.services.sheets_inventory import SheetsInventory, sheets_configured

logger = logging.getLogger(__name__)

RECOVERY_REPLY = "I'm here to help with UBLC library services! How can I assist you today?"
FALLBACK_NOTE = "Using rule-based fallback after completion failure"
NO_PROVIDER_NOTE = "Using rule-based replies (no completion provider configured)"


# ── State schema ─────────────────────────────────────────────────────


class TurnState(TypedDict, total=False):
    """The state that flows through the graph for one turn.

    ``route`` is set by the router node and read by the conditional edge.
    ``result`` is set by whichever node produced the reply.
    """

    session: Session
    message: str
    student: StudentIdentity | None
    catalog: list[Book]
    route: str
    result: TurnResult | None


# ── Nodes ────────────────────────────────────────────────────────────


def _make_router_node(dialogue: ReservationDialogue):
    def router_node(state: TurnState) -> dict:
        owned = dialogue.owns_turn(state["session"], state["message"])
        route = "reservation" if owned else "chat"
        logger.debug("Router: session %s → %s", state["session"].session_id, route)
        return {"route": route}

    return router_node


def _make_reservation_node(dialogue: ReservationDialogue):
    def reservation_node(state: TurnState) -> dict:
        result = dialogue.handle(
            state["session"], state["message"], state.get("student"), state["catalog"],
        )
        return {"result": result}

    return reservation_node


def _make_chat_node(provider: TextCompletionProvider | None):
    """Create the chat node.

    Provider errors never reach the caller: they are logged and the turn is
    answered from the rule-based replies instead.
    """

    def chat_node(state: TurnState) -> dict:
        message = state["message"]
        catalog = state["catalog"]

        if provider is None:
            return {
                "result": TurnResult(
                    reply=fallback_reply(message, catalog),
                    source="fallback",
                    note=NO_PROVIDER_NOTE,
                )
            }

        # The current user turn is already in the history; the prompt adds it separately
        prior_turns = state["session"].history[:-1]
        prompt = build_chat_prompt(message, catalog, prior_turns)
        try:
            reply = provider.complete(prompt)
        except CompletionError as exc:
            logger.warning("Completion failed, using fallback reply: %s", exc)
            return {
                "result": TurnResult(
                    reply=fallback_reply(message, catalog),
                    source="fallback",
                    note=FALLBACK_NOTE,
                )
            }
        return {"result": TurnResult(reply=reply, source="ai")}

    return chat_node


# ── Conditional edges ────────────────────────────────────────────────


def route_turn(state: TurnState) -> str:
    return "reservation" if state.get("route") == "reservation" else "chat"


def reservation_handled(state: TurnState) -> str:
    return END if state.get("result") is not None else "chat"


# ── Graph assembly ───────────────────────────────────────────────────


def create_turn_graph(
    dialogue: ReservationDialogue,
    provider: TextCompletionProvider | None,
):
    """Build and compile the per-turn graph.

    Returns a compiled graph that can be invoked with:
        graph.invoke({"session": s, "message": "...", "student": None, "catalog": books})
    """
    graph = StateGraph(TurnState)

    graph.add_node("router", _make_router_node(dialogue))
    graph.add_node("reservation", _make_reservation_node(dialogue))
    graph.add_node("chat", _make_chat_node(provider))

    graph.set_entry_point("router")
    graph.add_conditional_edges(
        "router", route_turn, {"reservation": "reservation", "chat": "chat"},
    )
    graph.add_conditional_edges(
        "reservation", reservation_handled, {"chat": "chat", END: END},
    )
    graph.add_edge("chat", END)

    return graph.compile()


# ── Assistant facade ─────────────────────────────────────────────────


@dataclass
class TurnResponse:
    reply: str
    session_id: str | None
    source: str
    result: TurnResult | None = None


class LibraryAssistant:
    """Runs chat turns against a session store, inventory and completion provider."""

    def __init__(
        self,
        store: SessionStore,
        inventory: InventoryStore,
        reservations: ReservationService,
        provider: TextCompletionProvider | None = None,
        strategy: IntentStrategy | None = None,
    ) -> None:
        self.store = store
        self.inventory = inventory
        self.reservations = reservations
        self.provider = provider
        self.dialogue = ReservationDialogue(inventory, reservations, strategy)
        self.graph = create_turn_graph(self.dialogue, provider)

    def handle_turn(
        self,
        message: str,
        student: StudentIdentity | None = None,
        session_id: str | None = None,
    ) -> TurnResponse:
        """Process one user message.

        Raises ``ValueError`` for a missing or blank message.  Any other
        failure is logged and answered with a generic recovery reply.
        """
        if not message or not message.strip():
            raise ValueError("Message is required")

        try:
            return self._run_turn(message, student, session_id or new_session_id())
        except Exception:
            logger.exception("Unexpected error while handling a chat turn")
            return TurnResponse(reply=RECOVERY_REPLY, session_id=None, source="error-recovery")

    def _run_turn(
        self,
        message: str,
        student: StudentIdentity | None,
        session_id: str,
    ) -> TurnResponse:
        with self.store.session(session_id) as session:
            session.add_turn("user", message)
            catalog = self.inventory.list_books()

            state = self.graph.invoke(
                {
                    "session": session,
                    "message": message,
                    "student": student,
                    "catalog": catalog,
                }
            )
            result: TurnResult = state["result"]

            if result.clear_session:
                self.store.clear(session_id)
                logger.info(
                    "Session %s finished with outcome %s", session_id, result.outcome.value,
                )
            else:
                session.add_turn("assistant", result.reply)

        # A cleared session is reported as None so the caller starts fresh
        return TurnResponse(
            reply=result.reply,
            session_id=None if result.clear_session else session_id,
            source=result.source,
            result=result,
        )

    def clear_session(self, session_id: str | None) -> bool:
        return self.store.clear(session_id)

    def session_info(self, session_id: str) -> dict | None:
        session = self.store.get(session_id)
        return session.describe() if session else None


# ── Wiring ───────────────────────────────────────────────────────────


def _create_inventory() -> InventoryStore:
    if sheets_configured():
        logger.info("Inventory: Google Sheets")
        return SheetsInventory()
    logger.warning("Inventory: Google Sheets not configured, using the in-memory fallback catalog")
    return InMemoryInventory()


def _create_notifier() -> NotificationSender:
    if SENDGRID_API_KEY:
        logger.info("Notifications: SendGrid")
        return SendGridNotificationSender()
    logger.warning("Notifications: SENDGRID_API_KEY not set, emails will only be logged")
    return LoggingNotificationSender()


def _create_provider() -> TextCompletionProvider | None:
    if not ANTHROPIC_API_KEY:
        logger.warning("Completion: ANTHROPIC_API_KEY not set, using rule-based replies only")
        return None
    return AnthropicCompletionProvider()


def create_library_assistant(
    store: SessionStore | None = None,
    inventory: InventoryStore | None = None,
    notifier: NotificationSender | None = None,
    provider: TextCompletionProvider | None = None,
) -> LibraryAssistant:
    """Assemble the assistant, choosing implementations from configuration."""
    inventory = inventory or _create_inventory()
    notifier = notifier or _create_notifier()
    if provider is None:
        provider = _create_provider()
    assistant = LibraryAssistant(
        store=store or InMemorySessionStore(),
        inventory=inventory,
        reservations=ReservationService(inventory, notifier),
        provider=provider,
    )
    logger.debug(
        "Library assistant ready — inventory: %s, notifier: %s, provider: %s",
        type(inventory).__name__, type(notifier).__name__,
        type(provider).__name__ if provider else None,
    )
    return assistant
