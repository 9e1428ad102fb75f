# routes_metrics.py

"""Prometheus metrics and /metrics endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

# Counters
http_requests_total = Counter(
    "http_requests_total", "Total HTTP requests", ["path", "method", "status"]
)

http_errors_total = Counter("http_errors_total", "Total HTTP errors", ["status"])
http_errors_total.labels(status="0").inc(0)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency by route template",
    ["path", "method"],
)

db_query_seconds = Histogram(
    "db_query_seconds", "Document store SQL statement latency", ["store"]
)

slow_queries_total = Counter(
    "slow_queries_total", "SQL statements slower than the slow-query threshold", ["store"]
)

orders_created_total = Counter("orders_created_total", "Total orders created")
orders_created_total.inc(0)

orders_settled_total = Counter(
    "orders_settled_total", "Total orders completed by settlement", ["method"]
)
orders_settled_total.labels(method="cash").inc(0)

orders_cancelled_total = Counter("orders_cancelled_total", "Total orders cancelled")
orders_cancelled_total.inc(0)

payments_total = Counter(
    "payments_total", "Payment records by resulting status", ["status"]
)
payments_total.labels(status="PENDING").inc(0)

gateway_errors_total = Counter(
    "gateway_errors_total", "Payment gateway failures", ["reason"]
)
gateway_errors_total.labels(reason="network").inc(0)

consistency_warnings_total = Counter(
    "consistency_warnings_total",
    "Tables found diverging from their orders",
    ["field"],
)
consistency_warnings_total.labels(field="bill_total").inc(0)

tables_open = Gauge("tables_open", "Tables currently not vacant")
tables_open.set(0)

sse_clients_gauge = Gauge(
    "sse_clients_gauge", "Current number of connected SSE clients"
)
sse_clients_gauge.set(0)

router = APIRouter()


@router.get("/metrics")
async def metrics_endpoint(request: Request) -> Response:
    """Expose Prometheus metrics."""
    services = getattr(request.app.state, "services", None)
    if services is not None:
        stats = await services.tables.stats()
        tables_open.set(stats["total"] - stats["vacant"])
    data = generate_latest()
    return Response(data, media_type=CONTENT_TYPE_LATEST)
