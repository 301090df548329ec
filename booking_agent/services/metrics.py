"""CloudWatch custom metrics with background batching.

Two families are published under the ``BookingAgent`` namespace:

* ``Dependency/*`` — one count + latency per call to the model provider
  or a tool handler, with an error count on failure.
* ``Booking/*``    — business outcomes (appointment created, slot taken,
  cancelled), dimensioned by tenant.

Data points are buffered in memory and pushed by a daemon thread every
``FLUSH_INTERVAL_SECONDS``.  Unless ``METRICS_ENABLED=true`` nothing is
sent; the points only show up in DEBUG logs.

>>> from booking_agent.services.metrics import metrics
>>> metrics.record_success("anthropic", "generate", latency_ms=812.0)
>>> metrics.record_outcome("tenant-1", "appointment_created")
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

NAMESPACE = "BookingAgent"
FLUSH_INTERVAL_SECONDS = 60
MAX_BATCH_SIZE = 1_000  # PutMetricData limit


def _dims(**pairs: str) -> list[dict[str, str]]:
    return [{"Name": name, "Value": value} for name, value in pairs.items()]


class MetricsClient:
    """Buffered CloudWatch publisher shared by the whole process."""

    def __init__(self, enabled: bool | None = None) -> None:
        if enabled is None:
            enabled = os.getenv("METRICS_ENABLED", "false").lower() == "true"
        self._enabled = enabled
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

    def record_success(self, dependency: str, operation: str, latency_ms: float) -> None:
        now = datetime.now(UTC)
        self._point("Dependency/CallCount", _dims(Dependency=dependency, Status="success"), 1, "Count", now)
        self._point(
            "Dependency/Latency",
            _dims(Dependency=dependency, Operation=operation),
            latency_ms,
            "Milliseconds",
            now,
        )
        logger.debug("Metric: %s %s ok %.1fms", dependency, operation, latency_ms)

    def record_failure(
        self,
        dependency: str,
        operation: str,
        error_type: str,
        latency_ms: float = 0,
    ) -> None:
        now = datetime.now(UTC)
        self._point("Dependency/CallCount", _dims(Dependency=dependency, Status="failure"), 1, "Count", now)
        self._point(
            "Dependency/ErrorCount",
            _dims(Dependency=dependency, Operation=operation, ErrorType=error_type),
            1,
            "Count",
            now,
        )
        if latency_ms > 0:
            self._point(
                "Dependency/Latency",
                _dims(Dependency=dependency, Operation=operation),
                latency_ms,
                "Milliseconds",
                now,
            )
        logger.debug("Metric: %s %s failed (%s) %.1fms", dependency, operation, error_type, latency_ms)

    # ── Business outcomes ────────────────────────────────────────────

    def record_outcome(self, tenant_id: str, outcome: str) -> None:
        self._point(
            f"Booking/{outcome}",
            _dims(Tenant=tenant_id),
            1,
            "Count",
            datetime.now(UTC),
        )
        logger.debug("Metric: tenant=%s outcome=%s", tenant_id, outcome)

    # ── Flushing ─────────────────────────────────────────────────────

    def pending(self) -> int:
        with self._lock:
            return len(self._buffer)

    def flush(self) -> int:
        """Push buffered points to CloudWatch; returns how many were sent."""
        with self._lock:
            if not self._buffer:
                return 0
            batch = self._buffer[:]
            self._buffer.clear()

        if not self._enabled:
            logger.debug("Metrics disabled, discarding %d points", len(batch))
            return 0

        sent = 0
        try:
            cw = self._get_cw_client()
            for i in range(0, len(batch), MAX_BATCH_SIZE):
                chunk = batch[i : i + MAX_BATCH_SIZE]
                cw.put_metric_data(Namespace=NAMESPACE, MetricData=chunk)
                sent += len(chunk)
            logger.info("Flushed %d metric points", sent)
        except Exception:
            logger.exception("Failed to flush metrics to CloudWatch")
        return sent

    def _point(self, name: str, dimensions: list[dict[str, str]], value: float, unit: str, ts: datetime) -> None:
        with self._lock:
            self._buffer.append(
                {"MetricName": name, "Dimensions": dimensions, "Timestamp": ts, "Value": value, "Unit": unit}
            )

    def _start_flush_thread(self) -> None:
        def _loop():
            while True:
                time.sleep(FLUSH_INTERVAL_SECONDS)
                try:
                    self.flush()
                except Exception:
                    logger.exception("Metrics flush thread error")

        threading.Thread(target=_loop, daemon=True, name="metrics-flush").start()
        atexit.register(self.flush)
        logger.info("Metrics flush thread started (interval=%ds)", FLUSH_INTERVAL_SECONDS)


metrics = MetricsClient()
