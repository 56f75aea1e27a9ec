"""Centralized configuration for the UBLC Library Assistant.

Secret resolution order (per variable):
  1. Environment variable / ``.env`` file  (local dev)
  2. AWS SSM Parameter Store SecureString  (when ``AWS_EXECUTION_ENV`` is set)

The SSM paths follow the convention ``/ublc-library/<VARIABLE_NAME>``.

Unlike a hard dependency, every integration here is optional: a missing
Anthropic key means replies come from the rule-based fallback, a missing
spreadsheet id means the in-memory catalog is used, and a missing SendGrid key
means confirmation emails are only logged.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# ── Feature flag: running on AWS? ────────────────────────────────────
_ON_AWS = bool(os.getenv("AWS_EXECUTION_ENV"))


# ── Secret resolution ────────────────────────────────────────────────

def _get_ssm_parameter(name: str) -> str | None:
    """Fetch a SecureString from SSM Parameter Store.

    Returns ``None`` if the parameter does not exist or boto3 is
    unavailable.  Errors are logged but never raised so that local-dev
    fallback still works.
    """
    try:
        import boto3  # noqa: PLC0415 — lazy import to avoid boto3 dep in tests

        ssm = boto3.client("ssm")
        resp = ssm.get_parameter(Name=f"/ublc-library/{name}", WithDecryption=True)
        return resp["Parameter"]["Value"]
    except Exception:
        logger.debug("SSM lookup for %s failed (expected locally)", name)
        return None


def _optional_secret(name: str) -> str | None:
    """Return a secret from env-var or SSM, or ``None`` when it is not set."""
    value = os.getenv(name)
    if value and not value.startswith("your_"):
        return value.strip()

    if _ON_AWS:
        return _get_ssm_parameter(name)
    return None


# ── Text completion (Anthropic) ──────────────────────────────────────
ANTHROPIC_API_KEY: str | None = _optional_secret("ANTHROPIC_API_KEY")
COMPLETION_MODEL_NAME: str = os.getenv("COMPLETION_MODEL_NAME", "claude-haiku-4-5")
COMPLETION_TIMEOUT_SECONDS: float = float(os.getenv("COMPLETION_TIMEOUT_SECONDS", "10"))
COMPLETION_MAX_RETRIES: int = int(os.getenv("COMPLETION_MAX_RETRIES", "1"))

# ── Google Sheets inventory ──────────────────────────────────────────
GOOGLE_SHEET_ID: str | None = _optional_secret("GOOGLE_SHEET_ID")
GOOGLE_SERVICE_ACCOUNT_FILE: str | None = os.getenv("GOOGLE_SERVICE_ACCOUNT_FILE")
GOOGLE_SERVICE_ACCOUNT_EMAIL: str | None = _optional_secret("GOOGLE_SERVICE_ACCOUNT_EMAIL")
# Private keys pasted into .env usually carry literal "\n" sequences
GOOGLE_PRIVATE_KEY: str | None = (
    (_optional_secret("GOOGLE_PRIVATE_KEY") or "").replace("\\n", "\n") or None
)

# ── Email (SendGrid) ─────────────────────────────────────────────────
SENDGRID_API_KEY: str | None = _optional_secret("SENDGRID_API_KEY")
SENDGRID_BASE_URL: str = "https://api.sendgrid.com"
EMAIL_FROM: str = os.getenv("EMAIL_FROM", "library@ublc.edu.ph")
NOTIFICATION_TIMEOUT_SECONDS: float = float(os.getenv("NOTIFICATION_TIMEOUT_SECONDS", "10"))

# ── Sessions & reservations ──────────────────────────────────────────
SESSION_MAX_ENTRIES: int = int(os.getenv("SESSION_MAX_ENTRIES", "1000"))
SESSION_TTL_SECONDS: float = float(os.getenv("SESSION_TTL_SECONDS", "3600"))
SESSION_HISTORY_LIMIT: int = int(os.getenv("SESSION_HISTORY_LIMIT", "50"))
PICKUP_WINDOW_DAYS: int = int(os.getenv("PICKUP_WINDOW_DAYS", "3"))

# ── Server ──────────────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = int(os.getenv("SERVER_PORT", "8000"))
CORS_ORIGINS: list[str] = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
).split(",")
