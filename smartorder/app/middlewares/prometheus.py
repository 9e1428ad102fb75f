"""Prometheus middleware for HTTP request metrics."""

from __future__ import annotations

import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from ..routes_metrics import (
    http_errors_total,
    http_request_duration_seconds,
    http_requests_total,
)

# Scrapes and long-lived streams would drown the latency histogram.
UNTIMED_PATHS = {"/metrics", "/api/tables/map/stream"}


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Count requests by route template and time the short-lived ones."""

    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        route = request.scope.get("route")
        route_path = route.path if route else request.url.path
        status = str(response.status_code)
        http_requests_total.labels(path=route_path, method=request.method, status=status).inc()
        if response.status_code >= 400:
            http_errors_total.labels(status=status).inc()
        if route_path not in UNTIMED_PATHS:
            http_request_duration_seconds.labels(
                path=route_path, method=request.method
            ).observe(time.perf_counter() - start)
        return response
