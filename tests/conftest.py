"""Shared test fixtures for the UBLC Library test suite."""

from __future__ import annotations

import os

import pytest


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any imports, so config.py reads a predictable
    environment: no spreadsheet, no email provider, metrics off.
    """
    os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key-123")
    os.environ["GOOGLE_SHEET_ID"] = ""
    os.environ["GOOGLE_SERVICE_ACCOUNT_FILE"] = ""
    os.environ["SENDGRID_API_KEY"] = ""
    os.environ["METRICS_ENABLED"] = "false"
    os.environ.pop("AWS_EXECUTION_ENV", None)


class RecordingNotifier:
    """Notification sender that remembers what it was asked to send."""

    def __init__(self, error: Exception | None = None):
        self.sent: list[tuple[str, object]] = []
        self.error = error

    def send_reservation_confirmation(self, to, notice):
        if self.error is not None:
            raise self.error
        self.sent.append((to, notice))


class StubProvider:
    """Completion provider returning a canned reply (or raising)."""

    def __init__(self, reply: str = "Hello from the library assistant!", error: Exception | None = None):
        self.reply = reply
        self.error = error
        self.prompts: list[str] = []

    def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.reply


@pytest.fixture
def catalog():
    from src.services.inventory import fallback_catalog

    return fallback_catalog()


@pytest.fixture
def inventory():
    from src.services.inventory import InMemoryInventory

    return InMemoryInventory()


@pytest.fixture
def make_notifier():
    """Factory for recording notifiers; pass ``error=`` to make sends fail."""
    return RecordingNotifier


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_provider():
    return StubProvider


@pytest.fixture
def provider():
    return StubProvider()


@pytest.fixture
def student():
    from src.models import StudentIdentity

    return StudentIdentity(student_id="2220122", name="Maria Santos", email="2220122@ub.edu.ph")


@pytest.fixture
def make_assistant(inventory, notifier, provider):
    """Factory for a fully wired assistant backed by in-memory fakes."""
    from src.agent import LibraryAssistant
    from src.services.reservations import ReservationService
    from src.services.session_store import InMemorySessionStore

    def _make(*, inventory=inventory, notifier=notifier, provider=provider, store=None):
        return LibraryAssistant(
            store=store or InMemorySessionStore(),
            inventory=inventory,
            reservations=ReservationService(inventory, notifier),
            provider=provider,
        )

    return _make


@pytest.fixture
def assistant(make_assistant):
    return make_assistant()
