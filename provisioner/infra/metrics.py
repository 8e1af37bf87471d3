"""Prometheus metrics export."""

from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Request metrics
request_count = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

request_duration = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
)

# Provisioning metrics
provisioning_operations_total = Counter(
    "provisioning_operations_total",
    "Total tenant lifecycle operations",
    ["operation", "status"],
)

provisioning_operation_duration = Histogram(
    "provisioning_operation_duration_seconds",
    "Tenant lifecycle operation duration in seconds",
    ["operation"],
    buckets=(0.1, 0.5, 1, 2.5, 5, 10, 30, 60, 120, 300, 600),
)

compensation_failures_total = Counter(
    "provisioning_compensation_failures_total",
    "Rollback actions that failed",
    ["action"],
)

proxy_registration_failures_total = Counter(
    "proxy_registration_failures_total",
    "Best-effort reverse proxy registrations that failed",
)

# Port allocation
ports_allocated = Gauge(
    "ports_allocated",
    "Ports currently allocated to tenants",
)

# Circuit breaker metrics
circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=half_open, 2=open)",
    ["service"],
)

circuit_breaker_rejections_total = Counter(
    "circuit_breaker_rejections_total",
    "Calls rejected by an open circuit breaker",
    ["service"],
)


def get_metrics_response() -> Response:
    """Get Prometheus metrics as HTTP response."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
