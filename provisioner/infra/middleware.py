"""Request ID and access-log middleware."""

import logging
import time
import uuid
from typing import Callable
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from provisioner.infra.metrics import request_count, request_duration

logger = logging.getLogger("provisioner.request")

# Probe and scrape traffic is logged at DEBUG
QUIET_PATHS = frozenset({"/health", "/health/live", "/health/ready", "/metrics"})


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Propagate ``X-Request-ID``, generating one when the caller sent none."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        response = await call_next(request)

        response.headers["X-Request-ID"] = request_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Log one line per request and record request metrics.

    Requests under ``/tenants/{tenant_id}`` carry the tenant ID as a log
    field. Metrics are labelled by route template, not raw path.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        started = time.monotonic()
        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "Request failed",
                extra=self._fields(request, started, error=str(e)),
                exc_info=True,
            )
            raise

        route = request.scope.get("route")
        endpoint = getattr(route, "path", "unmatched")
        elapsed = time.monotonic() - started
        request_count.labels(method=request.method, endpoint=endpoint, status=str(response.status_code)).inc()
        request_duration.labels(method=request.method, endpoint=endpoint).observe(elapsed)

        level = logging.DEBUG if request.url.path in QUIET_PATHS else logging.INFO
        logger.log(level, "Request completed", extra=self._fields(request, started, status_code=response.status_code))

        response.headers["X-Response-Time-Ms"] = str(int(elapsed * 1000))
        return response

    @staticmethod
    def _fields(request: Request, started: float, **extra) -> dict:
        fields = {
            "request_id": getattr(request.state, "request_id", "unknown"),
            "method": request.method,
            "path": request.url.path,
            "duration_ms": int((time.monotonic() - started) * 1000),
        }
        tenant_id = request.path_params.get("tenant_id")
        if tenant_id:
            fields["tenant_id"] = tenant_id
        fields.update(extra)
        return fields
