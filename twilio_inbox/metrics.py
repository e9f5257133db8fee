"""
In-process Prometheus counters, scraped from GET /metrics.
"""

from typing import Tuple

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest


http_requests_total = Counter(
    "http_requests_total", "HTTP requests by route and status", ["method", "path", "status"]
)

# stored, method_not_allowed, not_configured, invalid_body, invalid_signature,
# signature_error, contact_error, message_error, server_error
webhook_requests_total = Counter(
    "webhook_requests_total", "Webhook callbacks by outcome", ["result"]
)

request_latency_seconds = Histogram(
    "request_latency_seconds", "Request handling time", ["method", "path"]
)


def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """Count the request and observe its latency under the route template."""
    http_requests_total.labels(method, path, str(status)).inc()
    request_latency_seconds.labels(method, path).observe(latency_seconds)


def record_webhook_outcome(result: str) -> None:
    webhook_requests_total.labels(result).inc()


def render_metrics() -> Tuple[bytes, str]:
    """Exposition body and its content type."""
    return generate_latest(), CONTENT_TYPE_LATEST
