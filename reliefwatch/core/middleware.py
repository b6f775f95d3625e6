"""
Request middleware — correlation IDs and alert-store tagging.

Every request runs inside a logging context that carries the request ID
plus the store's view of the feed at the moment the request arrived
(demo_mode, degraded, refreshing). Pipeline logs written while a manual
refresh or demo toggle is served are therefore attributable to the
request and the dataset it ran against.

Response headers:
    X-Request-ID       echoed or generated correlation ID
    X-Process-Time     handler time
    X-Demo-Mode        dataset the store serves after the request
    X-Feed-Degraded    "true" while fallback alerts are shown
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Dict

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from reliefwatch.core.logging_config import reset_request_context, set_request_context

logger = logging.getLogger(__name__)

# Probes and docs are polled constantly and carry no pipeline work
_QUIET_PREFIXES = ("/docs", "/redoc", "/openapi", "/favicon", "/health/live")


def _flag(value: bool) -> str:
    return "true" if value else "false"


def store_context(request: Request) -> Dict[str, Any]:
    """Snapshot of the alert store for log tagging; empty before startup."""
    services = getattr(request.app.state, "services", None)
    store = getattr(services, "store", None)
    if store is None:
        return {}
    return {
        "demo_mode": store.demo_mode,
        "degraded": store.degraded,
        "refreshing": store.refreshing,
        "alert_count": len(store.alerts),
    }


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Tag each request with a correlation ID and the alert-store state.

    The dashboard polls the map and alert endpoints frequently, so 2xx
    responses log at DEBUG; 4xx/5xx surface at WARNING and above.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:16]
        path = request.url.path
        before = store_context(request)

        token = set_request_context(
            request_id=request_id,
            endpoint=path,
            method=request.method,
            **before,
        )
        start = time.perf_counter()
        try:
            try:
                response = await call_next(request)
            except Exception:
                logger.error(
                    "%s %s → 500 (%.1fms)",
                    request.method, path, (time.perf_counter() - start) * 1000,
                    extra={"status_code": 500, **before},
                )
                raise

            duration_ms = (time.perf_counter() - start) * 1000
            after = store_context(request)

            response.headers["X-Request-ID"] = request_id
            response.headers["X-Process-Time"] = f"{duration_ms:.1f}ms"
            if after:
                response.headers["X-Demo-Mode"] = _flag(after["demo_mode"])
                response.headers["X-Feed-Degraded"] = _flag(after["degraded"])

            if not path.startswith(_QUIET_PREFIXES):
                level = logging.WARNING if response.status_code >= 400 else logging.DEBUG
                if before and after and before["demo_mode"] != after["demo_mode"]:
                    level = max(level, logging.INFO)
                logger.log(
                    level,
                    "%s %s → %d (%.1fms) demo=%s",
                    request.method, path, response.status_code, duration_ms,
                    after.get("demo_mode", "-"),
                    extra={
                        "duration_ms": duration_ms,
                        "status_code": response.status_code,
                        **after,
                    },
                )
            return response
        finally:
            reset_request_context(token)
