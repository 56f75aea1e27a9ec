"""Tests for the reservation dialogue state machine.

Covers:
  - Each transition (start, collect info, confirm, correct, abandon)
  - The confirmation token policy
  - Terminal outcomes against a changing inventory
  - Concurrent confirmations racing for the last copy
"""

from __future__ import annotations

import threading
from unittest.mock import patch

import pytest

from src.dialogue import DialogueOutcome, ReservationDialogue, normalize_token
from src.models import Book, Session, Step, StudentIdentity
from src.services.inventory import InMemoryInventory, InventoryUnavailableError
from src.services.reservations import ReservationService

# ── Helpers ──────────────────────────────────────────────────────────


def _dialogue(inventory, notifier=None) -> ReservationDialogue:
    return ReservationDialogue(inventory, ReservationService(inventory, notifier))


def _turn(dialogue, session, message, student=None):
    return dialogue.handle(session, message, student, dialogue.inventory.list_books())


def _assert_step_invariants(session: Session):
    if session.step is Step.AWAITING_CONFIRMATION:
        assert session.slots.book_title
        assert session.slots.student is not None and session.slots.student.is_complete
    if session.step is Step.COLLECTING_INFO:
        assert session.slots.book_title
        assert session.slots.student is None


@pytest.fixture
def dialogue(inventory):
    return _dialogue(inventory)


@pytest.fixture
def session():
    return Session(session_id="session_test")


@pytest.fixture
def awaiting(dialogue, session, student):
    """A session that has reached AWAITING_CONFIRMATION for Python Programming."""
    _turn(dialogue, session, "reserve Python Programming")
    _turn(dialogue, session, "here you go", student)
    assert session.step is Step.AWAITING_CONFIRMATION
    return session


# ── IDLE ─────────────────────────────────────────────────────────────


class TestStart:
    def test_non_reservation_message_is_not_handled(self, dialogue, session):
        assert _turn(dialogue, session, "What are the library hours?") is None
        assert session.step is Step.NONE

    def test_reserve_with_title_starts_collecting(self, dialogue, session):
        result = _turn(dialogue, session, "reserve Programming in C")
        assert result.outcome is DialogueOutcome.STARTED
        assert result.requires_student_info
        assert result.reservation_intent
        assert "Student ID" in result.reply and "Email" in result.reply
        assert "5 copies available" in result.reply
        assert result.book.book_id == "B001"
        assert session.step is Step.COLLECTING_INFO
        assert session.slots.book_title == "Programming in C"

    def test_reserve_without_title_asks_which_book(self, dialogue, session):
        result = _turn(dialogue, session, "I want to reserve a book")
        assert result.outcome is DialogueOutcome.NEEDS_BOOK
        assert "Which book" in result.reply
        assert '"Programming in C"' in result.reply
        assert session.step is Step.NONE
        assert not result.clear_session

    def test_alias_missing_from_catalog_still_starts(self, dialogue, session):
        result = _turn(dialogue, session, "reserve the database book")
        assert result.outcome is DialogueOutcome.STARTED
        assert result.book is None
        assert "copies available" not in result.reply


# ── COLLECTING_INFO ──────────────────────────────────────────────────


class TestCollectInfo:
    def test_structured_student_moves_to_confirmation(self, dialogue, session, student):
        _turn(dialogue, session, "reserve Python Programming")
        result = _turn(dialogue, session, "ok", student)
        assert result.outcome is DialogueOutcome.NEEDS_CONFIRMATION
        assert result.requires_confirmation
        assert "Maria Santos" in result.reply and "yes" in result.reply
        assert session.step is Step.AWAITING_CONFIRMATION

    def test_free_text_details_are_parsed(self, dialogue, session):
        _turn(dialogue, session, "reserve Python Programming")
        result = _turn(dialogue, session, "2220122, Maria Santos, 2220122@ub.edu.ph")
        assert result.outcome is DialogueOutcome.NEEDS_CONFIRMATION
        assert session.slots.student.student_id == "2220122"

    def test_incomplete_structured_student_falls_back_to_text(self, dialogue, session):
        _turn(dialogue, session, "reserve Python Programming")
        partial = StudentIdentity(student_id="2220122", name="", email="")
        result = _turn(dialogue, session, "2220122, Maria Santos, m@ub.edu.ph", partial)
        assert result.outcome is DialogueOutcome.NEEDS_CONFIRMATION
        assert session.slots.student.name == "Maria Santos"

    def test_missing_info_re_prompts(self, dialogue, session):
        _turn(dialogue, session, "reserve Python Programming")
        result = _turn(dialogue, session, "my name is Maria")
        assert result.outcome is DialogueOutcome.NEEDS_INFO
        assert result.requires_student_info
        assert "Python Programming" in result.reply
        assert session.step is Step.COLLECTING_INFO

    def test_invalid_email_re_prompts_with_reason(self, dialogue, session):
        _turn(dialogue, session, "reserve Python Programming")
        bad = StudentIdentity(student_id="1", name="Maria", email="maria-at-ub")
        result = _turn(dialogue, session, "here", bad)
        assert result.outcome is DialogueOutcome.NEEDS_INFO
        assert "does not look like a valid email" in result.reply
        assert session.step is Step.COLLECTING_INFO

    def test_reservation_keywords_mid_flow_stay_in_flow(self, dialogue, session):
        _turn(dialogue, session, "reserve Python Programming")
        result = _turn(dialogue, session, "reserve Programming in C")
        assert result.outcome is DialogueOutcome.NEEDS_INFO
        assert session.slots.book_title == "Python Programming"


# ── AWAITING_CONFIRMATION ────────────────────────────────────────────


class TestConfirmationTokens:
    @pytest.mark.parametrize(
        ("raw", "token"),
        [("  YES  ", "yes"), ("Yes!", "yes"), ("confirm.", "confirm"), ("yes please", "yes please")],
    )
    def test_normalize_token(self, raw, token):
        assert normalize_token(raw) == token

    @pytest.mark.parametrize("token", ["yes", "Y", "Confirm", "YES."])
    def test_affirmative_tokens_confirm(self, dialogue, awaiting, token):
        result = _turn(dialogue, awaiting, token)
        assert result.outcome is DialogueOutcome.CONFIRMED

    @pytest.mark.parametrize("token", ["no", "N", "change", "Wrong!"])
    def test_negative_tokens_go_back_to_collecting(self, dialogue, awaiting, token):
        result = _turn(dialogue, awaiting, token)
        assert result.outcome is DialogueOutcome.NEEDS_INFO
        assert awaiting.step is Step.COLLECTING_INFO
        assert awaiting.slots.student is None
        assert awaiting.slots.book_title == "Python Programming"

    @pytest.mark.parametrize("token", ["yes please", "maybe", "correct", "what are the hours?"])
    def test_unrecognized_token_re_prompts(self, dialogue, awaiting, token):
        result = _turn(dialogue, awaiting, token)
        assert result.outcome is DialogueOutcome.NEEDS_CONFIRMATION
        assert result.requires_confirmation
        assert awaiting.step is Step.AWAITING_CONFIRMATION

    def test_cancel_abandons_from_any_step(self, dialogue, session):
        _turn(dialogue, session, "reserve Python Programming")
        result = _turn(dialogue, session, "Cancel")
        assert result.outcome is DialogueOutcome.ABANDONED
        assert result.clear_session


# ── Terminal outcomes ────────────────────────────────────────────────


class TestCompletion:
    def test_confirm_decrements_and_notifies(self, inventory, session, student, make_notifier):
        notifier = make_notifier()
        dialogue = _dialogue(inventory, notifier)
        _turn(dialogue, session, "reserve Python Programming")
        _turn(dialogue, session, "x", student)
        result = _turn(dialogue, session, "yes")

        assert result.outcome is DialogueOutcome.CONFIRMED
        assert result.clear_session
        assert result.reservation_complete
        assert result.reservation_id.startswith("RES-")
        assert result.email_status == "sent"
        assert result.reservation_id in result.reply
        assert inventory.get_book("B003").copies_available == 8
        assert notifier.sent[0][0] == student.email
        assert len(inventory.list_reservations()) == 1

    def test_email_failure_still_confirms(self, inventory, session, student, make_notifier):
        from src.services.notifications import NotificationError

        dialogue = _dialogue(inventory, make_notifier(error=NotificationError("down")))
        _turn(dialogue, session, "reserve Python Programming")
        _turn(dialogue, session, "x", student)
        result = _turn(dialogue, session, "yes")
        assert result.outcome is DialogueOutcome.CONFIRMED
        assert result.email_status == "failed"
        assert "keep your reservation ID" in result.reply

    def test_zero_copies_is_unavailable_without_decrement(self, session, student):
        inventory = InMemoryInventory(
            [Book(book_id="B001", title="Programming in C", copies_available=0)]
        )
        dialogue = _dialogue(inventory)
        with patch.object(inventory, "decrement_copy", wraps=inventory.decrement_copy) as spy:
            _turn(dialogue, session, "reserve Programming in C")
            _turn(dialogue, session, "x", student)
            result = _turn(dialogue, session, "yes")
        assert result.outcome is DialogueOutcome.UNAVAILABLE
        assert result.clear_session
        spy.assert_not_called()

    def test_book_removed_from_catalog_is_not_found(self, session, student):
        inventory = InMemoryInventory(
            [Book(book_id="B003", title="Python Programming", copies_available=2)]
        )
        dialogue = _dialogue(inventory)
        _turn(dialogue, session, "reserve Python Programming")
        _turn(dialogue, session, "x", student)
        with patch.object(inventory, "list_books", return_value=[]):
            result = _turn(dialogue, session, "yes")
        assert result.outcome is DialogueOutcome.NOT_FOUND
        assert result.clear_session

    def test_alias_not_in_catalog_ends_not_found(self, dialogue, session, student):
        _turn(dialogue, session, "reserve the database book")
        _turn(dialogue, session, "x", student)
        result = _turn(dialogue, session, "yes")
        assert result.outcome is DialogueOutcome.NOT_FOUND

    def test_inventory_write_failure_keeps_session_for_retry(self, inventory, awaiting, dialogue):
        with patch.object(
            inventory, "decrement_copy", side_effect=InventoryUnavailableError("sheets down"),
        ):
            result = _turn(dialogue, awaiting, "yes")
        assert result.outcome is DialogueOutcome.FAILED
        assert not result.clear_session
        assert result.requires_confirmation
        assert awaiting.step is Step.AWAITING_CONFIRMATION

        retry = _turn(dialogue, awaiting, "yes")
        assert retry.outcome is DialogueOutcome.CONFIRMED

    def test_outcomes_are_recorded_as_metrics(self, dialogue, awaiting):
        with patch("src.dialogue.metrics") as mock_metrics:
            _turn(dialogue, awaiting, "yes")
        mock_metrics.record_outcome.assert_called_once_with("confirmed")


# ── Invariants ───────────────────────────────────────────────────────


def test_step_invariants_hold_after_every_transition(dialogue, session, student):
    script = [
        ("hello", None),
        ("reserve Python Programming", None),
        ("I forgot my id", None),
        ("here", StudentIdentity(student_id="1", name="A", email="bad")),
        ("here", student),
        ("hmm", None),
        ("no", None),
        ("2220122, Maria Santos, 2220122@ub.edu.ph", None),
        ("yes", None),
    ]
    for message, who in script:
        result = _turn(dialogue, session, message, who)
        _assert_step_invariants(session)
        if result is not None and result.clear_session:
            break
    assert result.outcome is DialogueOutcome.CONFIRMED


def test_concurrent_confirmations_for_last_copy(student):
    inventory = InMemoryInventory(
        [Book(book_id="B001", title="Programming in C", copies_available=1)]
    )
    dialogue = _dialogue(inventory)
    sessions = [Session(session_id="session_a"), Session(session_id="session_b")]
    for s in sessions:
        _turn(dialogue, s, "reserve Programming in C")
        _turn(dialogue, s, "x", student)

    barrier = threading.Barrier(2)
    outcomes = []

    def confirm(s):
        barrier.wait()
        outcomes.append(_turn(dialogue, s, "yes").outcome)

    threads = [threading.Thread(target=confirm, args=(s,)) for s in sessions]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count(DialogueOutcome.CONFIRMED) == 1
    assert outcomes.count(DialogueOutcome.UNAVAILABLE) == 1
    assert inventory.get_book("B001").copies_available == 0
