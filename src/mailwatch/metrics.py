"""Prometheus metrics instrumentation for the sync service.

Metrics exported:
- mailwatch_notifications_total: Counter of inbound push notifications by outcome
- mailwatch_source_api_calls_total: Counter of Gmail API calls
- mailwatch_cursor_saves_total: Counter of cursor write operations
- mailwatch_records_total: Counter of change records by outcome
- mailwatch_artifact_writes_total: Counter of best-effort artifact writes
- mailwatch_notifier_sends_total: Counter of downstream notifications
- mailwatch_errors_total: Counter of errors by type
- mailwatch_reconcile_latency_seconds: Histogram of reconcile pass latency

All metrics carry an ``endpoint_identity`` label (``gmail:user:<address>``).
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram

notifications_total = Counter(
    "mailwatch_notifications_total",
    "Total number of inbound push notifications handled",
    labelnames=["endpoint_identity", "status"],
)

source_api_calls_total = Counter(
    "mailwatch_source_api_calls_total",
    "Total number of Gmail API calls",
    labelnames=["endpoint_identity", "api_method", "status"],
)

cursor_saves_total = Counter(
    "mailwatch_cursor_saves_total",
    "Total number of cursor write operations",
    labelnames=["endpoint_identity", "status"],
)

records_total = Counter(
    "mailwatch_records_total",
    "Change records seen by the reconciler, by outcome",
    labelnames=["endpoint_identity", "outcome"],
)

artifact_writes_total = Counter(
    "mailwatch_artifact_writes_total",
    "Best-effort artifact writes",
    labelnames=["endpoint_identity", "kind", "status"],
)

notifier_sends_total = Counter(
    "mailwatch_notifier_sends_total",
    "Downstream notification attempts",
    labelnames=["endpoint_identity", "status"],
)

errors_total = Counter(
    "mailwatch_errors_total",
    "Total number of errors by type",
    labelnames=["endpoint_identity", "error_type", "operation"],
)

reconcile_latency_seconds = Histogram(
    "mailwatch_reconcile_latency_seconds",
    "Latency of a full reconcile pass in seconds",
    labelnames=["endpoint_identity"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
)


class SyncMetrics:
    """Metrics collector bound to one mailbox identity."""

    def __init__(self, endpoint_identity: str) -> None:
        self._endpoint_identity = endpoint_identity

    def record_notification(self, status: str) -> None:
        """Record an inbound notification ("success", "decode_error", "error")."""
        notifications_total.labels(
            endpoint_identity=self._endpoint_identity,
            status=status,
        ).inc()

    def record_source_api_call(self, api_method: str, status: str) -> None:
        """Record a Gmail API call.

        Args:
            api_method: API method name (e.g., "history.list", "messages.get")
            status: Call status ("success", "error", "not_found", "expired")
        """
        source_api_calls_total.labels(
            endpoint_identity=self._endpoint_identity,
            api_method=api_method,
            status=status,
        ).inc()

    def record_cursor_save(self, status: str) -> None:
        cursor_saves_total.labels(
            endpoint_identity=self._endpoint_identity,
            status=status,
        ).inc()

    def record_record(self, outcome: str) -> None:
        """Record a change record outcome.

        Args:
            outcome: "processed", "fetch_missing", "fetch_error", "extract_error"
                or "skipped_headerless"
        """
        records_total.labels(
            endpoint_identity=self._endpoint_identity,
            outcome=outcome,
        ).inc()

    def record_artifact_write(self, kind: str, status: str) -> None:
        artifact_writes_total.labels(
            endpoint_identity=self._endpoint_identity,
            kind=kind,
            status=status,
        ).inc()

    def record_notifier_send(self, status: str) -> None:
        notifier_sends_total.labels(
            endpoint_identity=self._endpoint_identity,
            status=status,
        ).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        errors_total.labels(
            endpoint_identity=self._endpoint_identity,
            error_type=error_type,
            operation=operation,
        ).inc()

    def observe_reconcile(self, latency: float) -> None:
        reconcile_latency_seconds.labels(
            endpoint_identity=self._endpoint_identity,
        ).observe(latency)


def get_error_type(exc: Exception) -> str:
    """Extract error type from exception.

    Args:
        exc: Exception instance

    Returns:
        Error type string for metrics labeling
    """
    exc_type = type(exc).__name__

    # Map common exception types to semantic error types
    if "HTTPStatus" in exc_type or "HTTP" in exc_type:
        return "http_error"
    if "Timeout" in exc_type:
        return "timeout"
    if "ConnectionError" in exc_type or "ConnectError" in exc_type:
        return "connection_error"
    if "JSON" in exc_type or "Parse" in exc_type or "Decode" in exc_type:
        return "parse_error"
    if "ValueError" in exc_type or "ValidationError" in exc_type:
        return "validation_error"

    return exc_type.lower()
