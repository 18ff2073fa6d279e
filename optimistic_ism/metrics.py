"""Prometheus metrics for the optimistic ISM.

Metrics goals:
- low-cardinality labels (outcome codes only, never message ids or callers)
- visibility into the lifecycle: pre-verifications, verifications, removals,
  and fraud flags
"""
from __future__ import annotations

import os
import time
from typing import Callable, Optional

from fastapi import Request
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest


def _env_bool(name: str, default: bool = True) -> bool:
    v = (os.getenv(name, "") or "").strip().lower()
    if not v:
        return default
    return v in ("1", "true", "yes", "on")


# ---------------------------
# Core metric objects
# ---------------------------
PRE_VERIFY_TOTAL = Counter(
    "oism_pre_verify_total",
    "Total pre-verification attempts",
    ["outcome"],
)
VERIFY_TOTAL = Counter(
    "oism_verify_total",
    "Total finalize-verify attempts",
    ["outcome"],
)
REMOVALS_TOTAL = Counter(
    "oism_removals_total",
    "Total messages removed by watcher quorum",
)
FRAUD_FLAGS_TOTAL = Counter(
    "oism_fraud_flags_total",
    "Total accepted watcher fraud flags",
)
HTTP_REQUESTS_TOTAL = Counter(
    "oism_http_requests_total",
    "Total HTTP requests received",
    ["method", "route", "status"],
)
HTTP_REQUEST_LATENCY_SECONDS = Histogram(
    "oism_http_request_latency_seconds",
    "HTTP request latency in seconds",
    ["method", "route"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2, 5),
)


def record_pre_verify(outcome: str) -> None:
    PRE_VERIFY_TOTAL.labels(outcome=str(outcome)).inc()


def record_verify(outcome: str) -> None:
    VERIFY_TOTAL.labels(outcome=str(outcome)).inc()


def record_removal() -> None:
    REMOVALS_TOTAL.inc()


def record_fraud_flag() -> None:
    FRAUD_FLAGS_TOTAL.inc()


def instrument_fastapi(app, authorize: Optional[Callable] = None) -> None:
    """Attach /metrics endpoint and request middleware to a FastAPI app.

    authorize: callable(request) -> bool. If provided and returns False, /metrics returns 403.
    """
    if not _env_bool("OISM_METRICS_ENABLED", True):
        return

    @app.middleware("http")
    async def _metrics_middleware(request: Request, call_next):
        start = time.time()
        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
            return response
        finally:
            route = request.scope.get("route")
            route_path = getattr(route, "path", None) or request.url.path
            HTTP_REQUESTS_TOTAL.labels(method=request.method, route=route_path, status=str(status)).inc()
            HTTP_REQUEST_LATENCY_SECONDS.labels(method=request.method, route=route_path).observe(time.time() - start)

    @app.get("/metrics")
    async def metrics_endpoint(request: Request):
        if authorize is not None and not authorize(request):
            return Response(status_code=403, content="FORBIDDEN")
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
