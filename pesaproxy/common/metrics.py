"""Prometheus metric definitions for the proxy."""

from prometheus_client import Counter, Histogram, generate_latest
from starlette.responses import Response


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["service", "route", "method", "status_code"],
)
http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration seconds",
    ["service", "route", "method"],
)
gateway_requests_total = Counter(
    "gateway_requests_total",
    "Outbound gateway calls by endpoint and outcome",
    ["service", "endpoint", "outcome"],
)
gateway_request_duration_seconds = Histogram(
    "gateway_request_duration_seconds",
    "Outbound gateway call duration seconds",
    ["service", "endpoint"],
)
payments_created_total = Counter("payments_created_total", "Orders accepted by the gateway", ["service"])
ipn_received_total = Counter(
    "ipn_received_total",
    "IPN deliveries by processing outcome",
    ["service", "outcome"],
)
payment_status_observed_total = Counter(
    "payment_status_observed_total",
    "Status observations by source and classified status",
    ["service", "source", "status"],
)
status_mismatch_total = Counter(
    "status_mismatch_total",
    "Observations contradicting an already terminal status",
    ["service", "source"],
)


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")
