"""
Prometheus metrics for the channel service.

This module provides:
- HTTP request counter (method, path, status)
- Request latency histogram (method, path)
- Channel request outcome counter (channel_type, result)
- Outbound send counter (channel_type, status)

Metrics are stored in-memory using prometheus-client.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST


# =============================================================================
# Metric Definitions
# =============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path", "status"]
)

request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)

# result: handled, ignored, error
channel_requests_total = Counter(
    "channel_requests_total",
    "Channel webhook request outcomes",
    labelnames=["channel_type", "result"]
)

# status: wired, errored
channel_sends_total = Counter(
    "channel_sends_total",
    "Outbound message send outcomes",
    labelnames=["channel_type", "status"]
)


# =============================================================================
# Helper Functions
# =============================================================================

def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Record an HTTP request in metrics.

    Channel UUIDs are collapsed so each channel route yields one label value
    (e.g. /c/ws/<uuid>/receive -> /c/ws/{uuid}/receive).
    """
    normalized_path = path.split("?")[0]
    parts = normalized_path.split("/")
    if len(parts) >= 5 and parts[1] == "c":
        parts[3] = "{uuid}"
        normalized_path = "/".join(parts)

    http_requests_total.labels(
        method=method,
        path=normalized_path,
        status=str(status)
    ).inc()

    request_latency_seconds.labels(
        method=method,
        path=normalized_path
    ).observe(latency_seconds)


def record_channel_outcome(channel_type: str, result: str) -> None:
    """
    Record a channel request outcome.

    Args:
        channel_type: Handler channel type, e.g. "WS"
        result: "handled", "ignored" or "error"
    """
    channel_requests_total.labels(channel_type=channel_type, result=result).inc()


def record_send_outcome(channel_type: str, status: str) -> None:
    channel_sends_total.labels(channel_type=channel_type, status=status).inc()


def get_metrics() -> bytes:
    """Generate Prometheus exposition format metrics."""
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
