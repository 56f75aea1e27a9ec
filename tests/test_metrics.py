"""Tests for the CloudWatch metrics client."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

from src.services.metrics import MetricsClient


def _dimensions(metric: dict) -> dict[str, str]:
    return {d["Name"]: d["Value"] for d in metric["Dimensions"]}


class TestMetricsRecording:
    """Verify that the record_* methods buffer the right data."""

    def _make_client(self, *, enabled: bool = False) -> MetricsClient:
        with patch.dict("os.environ", {"METRICS_ENABLED": str(enabled).lower()}):
            return MetricsClient()

    def test_record_success_appends_two_data_points(self):
        client = self._make_client()
        client.record_success("sheets", "read_books", latency_ms=123.4)
        assert len(client._buffer) == 2
        names = {m["MetricName"] for m in client._buffer}
        assert names == {"ExternalAPI/RequestCount", "ExternalAPI/Latency"}

    def test_record_failure_without_latency(self):
        client = self._make_client()
        client.record_failure("anthropic", "complete", error_type="RateLimitError")
        names = {m["MetricName"] for m in client._buffer}
        assert names == {"ExternalAPI/RequestCount", "ExternalAPI/ErrorCount"}

    def test_record_failure_with_latency_appends_three_data_points(self):
        client = self._make_client()
        client.record_failure("sendgrid", "mail_send", error_type="4xx", latency_ms=500.0)
        assert len(client._buffer) == 3

    def test_failure_dimensions_include_error_type(self):
        client = self._make_client()
        client.record_failure("sheets", "decrement_copy", error_type="APIError")
        error_metric = next(
            m for m in client._buffer if m["MetricName"] == "ExternalAPI/ErrorCount"
        )
        assert _dimensions(error_metric) == {"Service": "sheets", "ErrorType": "APIError"}

    def test_record_outcome(self):
        client = self._make_client()
        client.record_outcome("unavailable")
        [metric] = client._buffer
        assert metric["MetricName"] == "Reservation/Outcome"
        assert metric["Unit"] == "Count"
        assert _dimensions(metric) == {"Outcome": "unavailable"}


class TestMetricsFlush:
    """Verify flush behaviour with and without CloudWatch enabled."""

    def test_flush_when_disabled_sends_nothing_and_clears(self):
        with patch.dict("os.environ", {"METRICS_ENABLED": "false"}):
            client = MetricsClient()
        client.record_outcome("confirmed")
        assert client.flush() == 0
        assert client._buffer == []

    def test_flush_when_enabled_calls_put_metric_data(self):
        with patch.dict("os.environ", {"METRICS_ENABLED": "true"}):
            client = MetricsClient()

        mock_cw = MagicMock()
        client._cw_client = mock_cw

        client.record_success("sheets", "read_books", latency_ms=100.0)
        client.record_outcome("confirmed")
        sent = client.flush()

        assert sent == 3
        call_args = mock_cw.put_metric_data.call_args
        assert call_args[1]["Namespace"] == "UblcLibrary"
        assert len(call_args[1]["MetricData"]) == 3

    def test_flush_error_is_logged_not_raised(self):
        with patch.dict("os.environ", {"METRICS_ENABLED": "true"}):
            client = MetricsClient()
        client._cw_client = MagicMock()
        client._cw_client.put_metric_data.side_effect = RuntimeError("throttled")
        client.record_outcome("confirmed")
        assert client.flush() == 0

    def test_flush_empty_buffer_returns_zero(self):
        with patch.dict("os.environ", {"METRICS_ENABLED": "true"}):
            client = MetricsClient()
        assert client.flush() == 0
