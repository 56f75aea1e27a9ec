"""FastAPI server for the UBLC Library assistant.

Run with:
    uv run uvicorn src.server:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.agent import create_library_assistant
from src.api.routes import router
from src.api.schemas import ErrorResponse
from src.config import CORS_ORIGINS, SERVER_HOST, SERVER_PORT
from src.services.metrics import metrics

# ── Logging ──────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan: initialise / tear-down shared resources ────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Start-up: build the assistant once and store it in app state."""
    logger.info("Building library assistant…")
    application.state.assistant = create_library_assistant()
    logger.info("Assistant ready.")
    yield
    # Shutdown: push any buffered metrics; sessions are in-memory only
    metrics.flush()


# ── FastAPI application ──────────────────────────────────────────────
app = FastAPI(
    title="UBLC Library Assistant",
    description=(
        "Chat assistant for the University of Batangas Lipa Campus library — "
        "book reservations, catalog search and library information."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

# ── CORS (needed for the browser frontend) ──────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Request-ID middleware ────────────────────────────────────────────
@app.middleware("http")
async def add_request_id(request: Request, call_next) -> Response:
    """Attach a unique request ID to every request for log correlation."""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    logger.info(
        "[%s] %s %s", request_id, request.method, request.url.path,
    )
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ── Validation errors use the same body as every other 400 ──────────
@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    fields = {str(err["loc"][-1]) for err in exc.errors() if err.get("loc")}
    message = "Message is required" if "message" in fields else "Invalid request body"
    logger.info(
        "[%s] Rejected request body: %s",
        getattr(request.state, "request_id", "?"), exc.errors(),
    )
    return JSONResponse(status_code=400, content=ErrorResponse(error=message).model_dump())


# ── Register routes ──────────────────────────────────────────────────
app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "UBLC Library Assistant",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/health",
        "endpoints": {
            "chat": "/api/chat",
            "books": "/api/books",
            "reserve": "/api/reserve",
        },
    }


# ── CLI entry point ──────────────────────────────────────────────────

if __name__ == "__main__":
    logger.info("Starting UBLC Library API server on %s:%d", SERVER_HOST, SERVER_PORT)
    uvicorn.run(
        "src.server:app",
        host=SERVER_HOST,
        port=SERVER_PORT,
        reload=True,
    )
