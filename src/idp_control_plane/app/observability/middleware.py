"""Observability middleware for the FastAPI app.

Provides:
- ``RequestIdMiddleware`` -- accepts or generates ``X-Request-ID``, stores it
  in ``request_id_ctx`` and on ``request.state``, echoes it on the response.
- ``MetricsMiddleware`` -- Prometheus HTTP counters and latency histogram.
- ``RequestLoggingMiddleware`` -- one structured log line per request.
"""

from __future__ import annotations

import re
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from .logging import get_logger, request_id_ctx
from .metrics import (
    HTTP_REQUEST_DURATION_SECONDS,
    HTTP_REQUESTS_IN_FLIGHT,
    HTTP_REQUESTS_TOTAL,
)

logger = get_logger(__name__)

# Allowed request-ID format: 8-128 chars of alphanumerics or dashes.
_VALID_REQUEST_ID = re.compile(r"^[a-zA-Z0-9\-]{8,128}$")

# Collapse the (org, project, stack) path segments for metric labels.
_PATH_NORMALIZERS = [
    (
        re.compile(r"^/api/(workloads|workflows)/ws/[^/]+/[^/]+/[^/]+/deployments/[^/]+/logs$"),
        r"/api/\1/ws/{org}/{project}/{stack}/deployments/{id}/logs",
    ),
    (
        re.compile(r"^/api/(workloads|workflows)/[^/]+/[^/]+/[^/]+/deployments/[^/]+/logs$"),
        r"/api/\1/{org}/{project}/{stack}/deployments/{id}/logs",
    ),
    (
        re.compile(r"^/api/(workloads|workflows)/[^/]+/[^/]+/[^/]+$"),
        r"/api/\1/{org}/{project}/{stack}",
    ),
]


def _normalize_path(path: str) -> str:
    """Collapse high-cardinality path segments for metric labels."""
    for pattern, replacement in _PATH_NORMALIZERS:
        normalized, count = pattern.subn(replacement, path)
        if count:
            return normalized
    return path


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Generate or accept X-Request-ID and propagate via contextvars.

    Malformed incoming IDs are replaced with a fresh UUID.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint,
    ) -> Response:
        incoming_id = request.headers.get("x-request-id", "")
        if incoming_id and _VALID_REQUEST_ID.match(incoming_id):
            rid = incoming_id
        else:
            rid = str(uuid.uuid4())

        request.state.request_id = rid
        token = request_id_ctx.set(rid)
        try:
            response = await call_next(request)
        finally:
            request_id_ctx.reset(token)

        response.headers["X-Request-ID"] = rid
        return response


class MetricsMiddleware(BaseHTTPMiddleware):
    """Record Prometheus HTTP metrics for every request."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint,
    ) -> Response:
        path = _normalize_path(request.url.path)
        method = request.method

        HTTP_REQUESTS_IN_FLIGHT.inc()
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            HTTP_REQUESTS_TOTAL.labels(method=method, path=path, status="500").inc()
            raise
        finally:
            duration = time.perf_counter() - start
            HTTP_REQUESTS_IN_FLIGHT.dec()
            HTTP_REQUEST_DURATION_SECONDS.labels(method=method, path=path).observe(duration)

        HTTP_REQUESTS_TOTAL.labels(
            method=method, path=path, status=str(response.status_code),
        ).inc()
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every completed request with method, path, status, and duration."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint,
    ) -> Response:
        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000

        logger.info(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=round(duration_ms, 2),
        )
        return response
