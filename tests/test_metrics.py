"""Tests for the CloudWatch metrics client."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

from booking_agent.services.metrics import MAX_BATCH_SIZE, NAMESPACE, MetricsClient


def _dims(point) -> dict[str, str]:
    return {d["Name"]: d["Value"] for d in point["Dimensions"]}


class TestRecording:
    def test_record_success_buffers_count_and_latency(self):
        client = MetricsClient(enabled=False)
        client.record_success("anthropic", "generate", latency_ms=812.0)
        assert {m["MetricName"] for m in client._buffer} == {"Dependency/CallCount", "Dependency/Latency"}

    def test_record_failure_without_latency(self):
        client = MetricsClient(enabled=False)
        client.record_failure("tool", "create_appointment", error_type="slot_taken")
        assert {m["MetricName"] for m in client._buffer} == {"Dependency/CallCount", "Dependency/ErrorCount"}

    def test_record_failure_with_latency(self):
        client = MetricsClient(enabled=False)
        client.record_failure("tool", "create_appointment", error_type="timeout", latency_ms=20_000)
        assert client.pending() == 3

    def test_failure_dimensions(self):
        client = MetricsClient(enabled=False)
        client.record_failure("anthropic", "generate", error_type="RateLimitError")
        error = next(m for m in client._buffer if m["MetricName"] == "Dependency/ErrorCount")
        assert _dims(error) == {"Dependency": "anthropic", "Operation": "generate", "ErrorType": "RateLimitError"}

    def test_outcome_is_dimensioned_by_tenant(self):
        client = MetricsClient(enabled=False)
        client.record_outcome("tenant-a", "appointment_created")
        [point] = client._buffer
        assert point["MetricName"] == "Booking/appointment_created"
        assert _dims(point) == {"Tenant": "tenant-a"}

    def test_enabled_from_environment(self):
        with patch.dict("os.environ", {"METRICS_ENABLED": "false"}):
            assert MetricsClient()._enabled is False


class TestFlush:
    def test_disabled_flush_discards(self):
        client = MetricsClient(enabled=False)
        client.record_outcome("tenant-a", "appointment_cancelled")
        assert client.flush() == 0
        assert client.pending() == 0

    def test_empty_flush(self):
        assert MetricsClient(enabled=False).flush() == 0

    def test_enabled_flush_sends_in_batches(self):
        with patch.object(MetricsClient, "_start_flush_thread"):
            client = MetricsClient(enabled=True)
        cw = MagicMock()
        client._cw_client = cw
        for _ in range(MAX_BATCH_SIZE):
            client.record_success("tool", "get_business_info", latency_ms=1.0)

        assert client.flush() == 2 * MAX_BATCH_SIZE
        assert cw.put_metric_data.call_count == 2
        assert cw.put_metric_data.call_args.kwargs["Namespace"] == NAMESPACE

    def test_cloudwatch_error_is_logged_not_raised(self):
        with patch.object(MetricsClient, "_start_flush_thread"):
            client = MetricsClient(enabled=True)
        client._cw_client = MagicMock()
        client._cw_client.put_metric_data.side_effect = RuntimeError("throttled")
        client.record_outcome("tenant-a", "appointment_created")
        assert client.flush() == 0
