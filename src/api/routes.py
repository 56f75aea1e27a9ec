"""FastAPI route definitions for the UBLC Library assistant API."""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from src.agent import LibraryAssistant
from src.api.schemas import (
    BatchReservationResult,
    BatchReserveRequest,
    BatchReserveResponse,
    BooksResponse,
    ChatRequest,
    ChatResponse,
    ClearSessionRequest,
    ClearSessionResponse,
    ErrorResponse,
    HealthResponse,
    ReservationLookupResponse,
    ReserveDetails,
    ReserveRequest,
    ReserveResponse,
    SessionInfoResponse,
)
from src.models import StudentIdentity, email_error
from src.services.inventory import (
    BookNotFoundError,
    InventoryError,
    InventoryUnavailableError,
    OutOfStockError,
)

logger = logging.getLogger(__name__)

router = APIRouter()

RECENT_RESERVATIONS = 5


def _get_assistant(request: Request) -> LibraryAssistant:
    """Retrieve the assistant built during the FastAPI lifespan (see ``server.py``)."""
    assistant = getattr(request.app.state, "assistant", None)
    if assistant is None:
        raise HTTPException(
            status_code=503,
            detail="The assistant is still starting up. Please try again in a moment.",
        )
    return assistant


def _error(status_code: int, message: str) -> JSONResponse:
    body = ErrorResponse(error=message).model_dump(by_alias=True)
    return JSONResponse(status_code=status_code, content=body)


# ── Health ───────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse()


# ── Chat ─────────────────────────────────────────────────────────────


@router.post("/chat", response_model=ChatResponse)
async def chat(request: ChatRequest, http_request: Request):
    """Send one message to the library assistant.

    Pass the ``sessionId`` from the previous response to continue a
    conversation; omit it to start a new one.  ``handle_turn`` blocks (it
    may call the completion provider, the spreadsheet and the email API),
    so it runs in a worker thread to keep the event loop responsive.
    """
    assistant = _get_assistant(http_request)
    if not request.message or not request.message.strip():
        return _error(400, "Message is required")

    student = request.student.to_identity() if request.student else None
    turn = await asyncio.to_thread(
        assistant.handle_turn, request.message, student, request.session_id,
    )

    result = turn.result
    if result is None:
        return ChatResponse(response=turn.reply, session_id=turn.session_id, source=turn.source)

    return ChatResponse(
        response=turn.reply,
        session_id=turn.session_id,
        source=turn.source,
        requires_student_info=result.requires_student_info,
        requires_confirmation=result.requires_confirmation,
        reservation_intent=result.reservation_intent,
        reservation_complete=result.reservation_complete,
        reservation_id=result.reservation_id,
        reservation_outcome=result.outcome.value if result.outcome else None,
        book=result.book.to_dict() if result.book else None,
        student=result.student.to_dict() if result.student else None,
        email_status=result.email_status,
        note=result.note,
    )


@router.post("/chat/clear-session", response_model=ClearSessionResponse)
async def clear_session(request: ClearSessionRequest, http_request: Request):
    """Forget a conversation.  Succeeds whether or not the session existed."""
    assistant = _get_assistant(http_request)
    removed = assistant.clear_session(request.session_id)
    logger.debug("Clear session %s (existed=%s)", request.session_id, removed)
    return ClearSessionResponse()


@router.get(
    "/chat/session-info/{session_id}",
    response_model=SessionInfoResponse,
    response_model_exclude_none=True,
)
async def session_info(session_id: str, http_request: Request):
    """Inspect a session without creating it."""
    assistant = _get_assistant(http_request)
    info = assistant.session_info(session_id)
    if info is None:
        return SessionInfoResponse(success=False, message="Session not found")
    return SessionInfoResponse(success=True, session=info)


# ── Books ────────────────────────────────────────────────────────────


@router.get("/books", response_model=BooksResponse)
async def list_books(http_request: Request):
    assistant = _get_assistant(http_request)
    books = await asyncio.to_thread(assistant.inventory.list_books)
    return BooksResponse(count=len(books), books=[b.to_dict() for b in books])


@router.get("/books/search", response_model=BooksResponse)
async def search_books(http_request: Request, q: str = ""):
    """Search by title, author or category substring, or by exact book id."""
    assistant = _get_assistant(http_request)
    books = await asyncio.to_thread(assistant.inventory.find_books, q)
    return BooksResponse(count=len(books), books=[b.to_dict() for b in books])


# ── Direct reservations ──────────────────────────────────────────────


@router.post("/reserve", response_model=ReserveResponse)
async def reserve(request: ReserveRequest, http_request: Request):
    """Reserve a book by id without going through the chat dialogue."""
    assistant = _get_assistant(http_request)
    fields = (request.book_id, request.student_id, request.student_name, request.student_email)
    if not all(f and f.strip() for f in fields):
        return _error(400, "bookId, studentId, studentName, and studentEmail are required")
    if email_error(request.student_email):
        return _error(400, "Invalid email format")

    book_id = request.book_id.strip()
    book = await asyncio.to_thread(assistant.inventory.get_book, book_id)
    if book is None:
        return _error(404, "Book not found")
    if book.copies_available < 1:
        return _error(400, "No copies available")

    student = StudentIdentity(
        student_id=request.student_id.strip(),
        name=request.student_name.strip(),
        email=request.student_email.strip(),
    )
    try:
        receipt = await asyncio.to_thread(assistant.reservations.reserve, book, student)
    except OutOfStockError:
        return _error(400, "No copies available")
    except BookNotFoundError:
        return _error(404, "Book not found")
    except InventoryUnavailableError as exc:
        logger.error("Direct reservation for %s failed: %s", book_id, exc)
        return _error(503, "Failed to update book availability")

    reservation = receipt.reservation
    return ReserveResponse(
        reservation_id=reservation.reservation_id,
        message=f'Successfully reserved "{receipt.book.title}"',
        details=ReserveDetails(
            book_id=receipt.book.book_id,
            book_title=receipt.book.title,
            author=receipt.book.author,
            location=receipt.book.location,
            student_id=student.student_id,
            student_name=student.name,
            student_email=student.email,
            reservation_date=reservation.created_at.isoformat(),
            pickup_deadline=receipt.pickup_deadline_text,
            email_status=receipt.email_status,
            pickup_note=(
                f"Please pick up within {assistant.reservations.pickup_days} days "
                "at the library front desk"
            ),
        ),
    )


@router.get("/reserve")
async def reservation_info(http_request: Request):
    """Usage help plus the most recent reservations."""
    assistant = _get_assistant(http_request)
    try:
        records = await asyncio.to_thread(assistant.inventory.list_reservations)
    except InventoryError as exc:
        logger.warning("Could not read reservations: %s", exc)
        return _error(503, "Reservations are temporarily unavailable")

    return {
        "success": True,
        "message": "UBLC Library Reservation System",
        "instructions": "Send POST request with bookId, studentId, studentName, and studentEmail",
        "example": {
            "method": "POST",
            "url": "/api/reserve",
            "body": {
                "bookId": "B001",
                "studentId": "2220123",
                "studentName": "Maria Santos",
                "studentEmail": "2220123@ub.edu.ph",
            },
        },
        "recentReservations": [r.to_dict() for r in records[-RECENT_RESERVATIONS:]],
    }


@router.post("/reserve/batch", response_model=BatchReserveResponse, response_model_exclude_none=True)
async def reserve_batch(request: BatchReserveRequest, http_request: Request):
    """Decrement one copy per entry, e.g. for an external automation replaying reservations.

    Entries are processed in order and independently: a failed entry is
    reported in ``results`` and does not stop the rest.
    """
    assistant = _get_assistant(http_request)
    if request.reservations is None:
        return _error(400, "reservations array is required")

    results: list[BatchReservationResult] = []
    for item in request.reservations:
        book_id = (item.book_id or "").strip()
        if not book_id:
            results.append(
                BatchReservationResult(book_id=item.book_id, success=False, error="bookId is required")
            )
            continue
        try:
            await asyncio.to_thread(assistant.inventory.decrement_copy, book_id)
        except InventoryError as exc:
            logger.warning("Batch decrement for %s failed: %s", book_id, exc)
            results.append(BatchReservationResult(book_id=book_id, success=False, error=str(exc)))
        else:
            results.append(
                BatchReservationResult(book_id=book_id, success=True, message="Updated successfully")
            )

    return BatchReserveResponse(
        results=results,
        message=f"Processed {len(request.reservations)} reservations",
    )


@router.get("/reserve/{reservation_id}", response_model=ReservationLookupResponse)
async def get_reservation(reservation_id: str, http_request: Request):
    assistant = _get_assistant(http_request)
    try:
        records = await asyncio.to_thread(assistant.inventory.list_reservations)
    except InventoryError as exc:
        logger.warning("Could not read reservations: %s", exc)
        return _error(503, "Reservations are temporarily unavailable")

    for record in records:
        if record.reservation_id == reservation_id:
            return ReservationLookupResponse(reservation=record.to_dict())
    return _error(404, "Reservation not found")
