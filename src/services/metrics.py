"""CloudWatch custom metrics emitter with background batching.

Two kinds of data points are published:

* per-call metrics (count, latency, errors) for every external dependency
  the assistant talks to — ``anthropic``, ``sheets`` and ``sendgrid``
* reservation dialogue outcomes (confirmed, unavailable, not found, …) so
  the conversion rate of the chat flow can be graphed

Metrics are buffered in memory and flushed by a daemon thread every
``FLUSH_INTERVAL_SECONDS``.  Unless ``METRICS_ENABLED=true`` the buffer is
only logged at DEBUG level and never leaves the process.

Usage
-----
>>> from src.services.metrics import metrics
>>> metrics.record_success("sheets", "read_books", latency_ms=123.4)
>>> metrics.record_failure("anthropic", "complete", error_type="RateLimitError")
>>> metrics.record_outcome("confirmed")
"""

from __future__ import annotations

import atexit
import logging
import os
import threading
import time
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

NAMESPACE = "UblcLibrary"
FLUSH_INTERVAL_SECONDS = 60
MAX_BATCH_SIZE = 1_000  # CloudWatch API limit per PutMetricData call


class MetricsClient:
    """Batched CloudWatch metrics publisher."""

    def __init__(self) -> None:
        self._enabled = os.getenv("METRICS_ENABLED", "false").lower() == "true"
        self._buffer: list[dict[str, Any]] = []
        self._lock = threading.Lock()
        self._cw_client = None

        if self._enabled:
            self._start_flush_thread()

    def _get_cw_client(self):
        if self._cw_client is None:
            import boto3

            self._cw_client = boto3.client("cloudwatch")
        return self._cw_client

    # ── Dependency calls ─────────────────────────────────────────────

    def record_success(self, service: str, operation: str, latency_ms: float) -> None:
        """Record a successful call to an external dependency."""
        now = datetime.now(UTC)
        self._append(
            _datum(
                "ExternalAPI/RequestCount", 1, "Count", now,
                Service=service, Status="success",
            )
        )
        self._append(
            _datum(
                "ExternalAPI/Latency", latency_ms, "Milliseconds", now,
                Service=service, Operation=operation,
            )
        )
        logger.debug("Metric: %s %s success latency=%.1fms", service, operation, latency_ms)

    def record_failure(
        self,
        service: str,
        operation: str,
        error_type: str,
        latency_ms: float = 0,
    ) -> None:
        """Record a failed call; latency is only published when known."""
        now = datetime.now(UTC)
        self._append(
            _datum(
                "ExternalAPI/RequestCount", 1, "Count", now,
                Service=service, Status="failure",
            )
        )
        self._append(
            _datum(
                "ExternalAPI/ErrorCount", 1, "Count", now,
                Service=service, ErrorType=error_type,
            )
        )
        if latency_ms > 0:
            self._append(
                _datum(
                    "ExternalAPI/Latency", latency_ms, "Milliseconds", now,
                    Service=service, Operation=operation,
                )
            )
        logger.debug(
            "Metric: %s %s failure error=%s latency=%.1fms",
            service, operation, error_type, latency_ms,
        )

    # ── Dialogue outcomes ────────────────────────────────────────────

    def record_outcome(self, outcome: str) -> None:
        """Count one terminal (or failed) reservation dialogue outcome."""
        self._append(
            _datum("Reservation/Outcome", 1, "Count", datetime.now(UTC), Outcome=outcome)
        )
        logger.debug("Metric: reservation outcome=%s", outcome)

    # ── Flushing ─────────────────────────────────────────────────────

    def flush(self) -> int:
        """Send buffered metrics to CloudWatch.  Returns count sent."""
        with self._lock:
            if not self._buffer:
                return 0
            batch = self._buffer[:]
            self._buffer.clear()

        if not self._enabled:
            logger.debug("Metrics flush skipped (not enabled): %d items", len(batch))
            return 0

        sent = 0
        try:
            cw = self._get_cw_client()
            for i in range(0, len(batch), MAX_BATCH_SIZE):
                chunk = batch[i : i + MAX_BATCH_SIZE]
                cw.put_metric_data(Namespace=NAMESPACE, MetricData=chunk)
                sent += len(chunk)
            logger.info("Flushed %d metrics to CloudWatch", sent)
        except Exception:
            logger.exception("Failed to flush metrics to CloudWatch")
        return sent

    def _append(self, metric_data: dict[str, Any]) -> None:
        with self._lock:
            self._buffer.append(metric_data)

    def _start_flush_thread(self) -> None:
        def _loop():
            while True:
                time.sleep(FLUSH_INTERVAL_SECONDS)
                try:
                    self.flush()
                except Exception:
                    logger.exception("Metrics flush thread error")

        t = threading.Thread(target=_loop, daemon=True, name="metrics-flush")
        t.start()
        atexit.register(self.flush)
        logger.info("Metrics flush thread started (interval=%ds)", FLUSH_INTERVAL_SECONDS)


def _datum(
    name: str, value: float, unit: str, timestamp: datetime, **dimensions: str,
) -> dict[str, Any]:
    return {
        "MetricName": name,
        "Dimensions": [{"Name": k, "Value": v} for k, v in dimensions.items()],
        "Timestamp": timestamp,
        "Value": value,
        "Unit": unit,
    }


# ── Module-level singleton ──────────────────────────────────────────
metrics = MetricsClient()
