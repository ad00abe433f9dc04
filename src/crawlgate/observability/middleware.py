"""Observability middleware for FastAPI.

This module provides middleware for request timing and metrics collection.
"""

import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from crawlgate.observability.metrics import HTTP_REQUEST_DURATION, HTTP_REQUESTS_TOTAL


def _is_dynamic_segment(part: str) -> bool:
    if part.startswith("job_") or part.isdigit():
        return True
    # UUID-like ids: long, alphanumeric with dashes, and containing a digit.
    # Queue names ("web-scraping") have no digits and stay as they are.
    compact = part.replace("-", "")
    return len(part) > 8 and compact.isalnum() and any(c.isdigit() for c in compact)


def _normalize_path(path: str) -> str:
    """Normalize path to avoid high-cardinality metrics.

    Replaces job ids and other dynamic segments with a placeholder.
    """
    parts = [part for part in path.strip("/").split("/") if part]
    normalized = ["{id}" if _is_dynamic_segment(part) else part for part in parts]
    return "/" + "/".join(normalized)


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware to collect HTTP request metrics."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        # Skip metrics endpoint to avoid self-referential metrics
        if request.url.path == "/metrics":
            return await call_next(request)

        start_time = time.monotonic()
        status_code = 500  # Default to error if exception occurs

        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            duration = time.monotonic() - start_time
            endpoint = _normalize_path(request.url.path)

            HTTP_REQUEST_DURATION.labels(
                method=request.method,
                endpoint=endpoint,
                status_code=str(status_code),
            ).observe(duration)

            HTTP_REQUESTS_TOTAL.labels(
                method=request.method,
                endpoint=endpoint,
                status_code=str(status_code),
            ).inc()
