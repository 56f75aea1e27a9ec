"""Pydantic schemas for the FastAPI endpoints.

JSON field names are camelCase on the wire; Python code uses the snake_case
attribute names (``populate_by_name``).
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.models import StudentIdentity


def _timestamp() -> str:
    return datetime.now(UTC).isoformat()


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Chat ─────────────────────────────────────────────────────────────


class StudentPayload(_CamelModel):
    """Student identity supplied by the caller (e.g. from a logged-in frontend)."""

    student_id: str | None = None
    name: str | None = None
    email: str | None = None

    def to_identity(self) -> StudentIdentity:
        # Stored verbatim; missing fields leave the identity incomplete
        return StudentIdentity(
            student_id=self.student_id or "",
            name=self.name or "",
            email=self.email or "",
        )


class ChatRequest(_CamelModel):
    """Incoming chat message.

    ``message`` is optional here so a missing message is reported with the
    same 400 body as a blank one.
    """

    message: str | None = Field(None, description="The user's message")
    student: StudentPayload | None = None
    session_id: str | None = Field(
        None,
        max_length=100,
        description="Session token from a previous response; omit to start a new conversation",
    )


class ChatResponse(_CamelModel):
    success: bool = True
    response: str = Field(..., description="The assistant's reply")
    session_id: str | None = None
    source: str = Field(..., description="reservation | ai | fallback | error-recovery")
    requires_student_info: bool = False
    requires_confirmation: bool = False
    reservation_intent: bool = False
    reservation_complete: bool = False
    reservation_id: str | None = None
    reservation_outcome: str | None = None
    book: dict[str, Any] | None = None
    student: dict[str, str] | None = None
    email_status: str | None = None
    note: str | None = None
    timestamp: str = Field(default_factory=_timestamp)


class ClearSessionRequest(_CamelModel):
    session_id: str | None = None


class ClearSessionResponse(_CamelModel):
    success: bool = True
    message: str = "Session cleared"
    timestamp: str = Field(default_factory=_timestamp)


class SessionInfoResponse(_CamelModel):
    success: bool
    session: dict[str, Any] | None = None
    message: str | None = None


class ErrorResponse(_CamelModel):
    success: bool = False
    error: str
    timestamp: str = Field(default_factory=_timestamp)


# ── Books & reservations ─────────────────────────────────────────────


class BooksResponse(_CamelModel):
    success: bool = True
    count: int
    books: list[dict[str, Any]]


class ReserveRequest(_CamelModel):
    book_id: str | None = None
    student_id: str | None = None
    student_name: str | None = None
    student_email: str | None = None


class ReserveDetails(_CamelModel):
    book_id: str
    book_title: str
    author: str
    location: str
    student_id: str
    student_name: str
    student_email: str
    reservation_date: str
    pickup_deadline: str
    email_status: str
    pickup_note: str


class BatchReservationItem(_CamelModel):
    book_id: str | None = None


class BatchReserveRequest(_CamelModel):
    reservations: list[BatchReservationItem] | None = None


class BatchReservationResult(_CamelModel):
    book_id: str | None
    success: bool
    message: str | None = None
    error: str | None = None


class BatchReserveResponse(_CamelModel):
    success: bool = True
    results: list[BatchReservationResult]
    message: str


class ReserveResponse(_CamelModel):
    success: bool = True
    reservation_id: str
    message: str
    details: ReserveDetails


class ReservationLookupResponse(_CamelModel):
    success: bool = True
    reservation: dict[str, str]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    service: str = "ublc-library-assistant"
