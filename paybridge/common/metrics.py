"""Prometheus metric definitions shared across services."""

from prometheus_client import Counter, Histogram, generate_latest
from starlette.responses import Response


checkout_attempts_total = Counter(
    "checkout_attempts_total",
    "Checkout attempts by payment method and outcome",
    ["service", "payment_method", "outcome"],
)
checkout_latency_seconds = Histogram(
    "checkout_latency_seconds",
    "Checkout end-to-end latency seconds",
    ["service", "payment_method"],
)
gateway_request_seconds = Histogram(
    "gateway_request_seconds",
    "Outbound gateway call latency seconds",
    ["operation", "status_code"],
)
retries_total = Counter("retries_total", "Retry count", ["service", "dependency"])
webhook_events_total = Counter(
    "webhook_events_total",
    "Webhook deliveries by event type and outcome",
    ["service", "event_type", "outcome"],
)
duplicate_events_skipped_total = Counter(
    "duplicate_events_skipped_total",
    "Duplicate webhook deliveries skipped",
    ["service"],
)
rejected_transitions_total = Counter(
    "rejected_transitions_total",
    "Payment status transitions refused by the status lattice",
    ["service", "from_status", "to_status"],
)
http_requests_total = Counter(
    "http_requests_total",
    "HTTP request count",
    ["service", "route", "method", "status_code"],
)
http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration seconds",
    ["service", "route", "method"],
)


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")
