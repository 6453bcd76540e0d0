"""Prometheus metrics for the control plane.

Usage::

    from idp_control_plane.app.observability.metrics import RECLAMATION_STACKS_TOTAL

    RECLAMATION_STACKS_TOTAL.labels(outcome="deleted").inc()
"""

from __future__ import annotations

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

# ---------------------------------------------------------------------------
# HTTP request metrics
# ---------------------------------------------------------------------------

HTTP_REQUESTS_TOTAL = Counter(
    "http_server_requests_total",
    "Total HTTP requests by method, path pattern, and status code.",
    labelnames=["method", "path", "status"],
    registry=REGISTRY,
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "http_server_request_duration_seconds",
    "HTTP request latency in seconds.",
    labelnames=["method", "path"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
    registry=REGISTRY,
)

HTTP_REQUESTS_IN_FLIGHT = Gauge(
    "http_server_requests_in_flight",
    "Number of HTTP requests currently being processed.",
    registry=REGISTRY,
)

# ---------------------------------------------------------------------------
# Provisioning metrics
# ---------------------------------------------------------------------------

DEPLOYMENT_LAUNCHES_TOTAL = Counter(
    "idp_deployment_launches_total",
    "Detached deployment trigger sequences by outcome.",
    labelnames=["outcome"],
    registry=REGISTRY,
)

# ---------------------------------------------------------------------------
# Reclamation metrics
# ---------------------------------------------------------------------------

RECLAMATION_PASSES_TOTAL = Counter(
    "idp_reclamation_passes_total",
    "Reclamation passes by origin and whether they hit the pass timeout.",
    labelnames=["origin", "timed_out"],
    registry=REGISTRY,
)

RECLAMATION_STACKS_TOTAL = Counter(
    "idp_reclamation_stacks_total",
    "Stacks handled by reclamation passes, by outcome.",
    labelnames=["outcome"],
    registry=REGISTRY,
)


def metrics_text() -> tuple[bytes, str]:
    """Generate Prometheus exposition text and content-type header."""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
