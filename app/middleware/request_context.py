"""Request middleware: correlation ID binding, structured access log, HTTP metrics."""

from __future__ import annotations

from time import perf_counter
from typing import Any
from uuid import uuid4

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from app.metrics import DEFAULT_METRICS_REGISTRY, MetricsRegistry

CORRELATION_ID_HEADER = "X-Correlation-ID"
SENSITIVE_KEYS = {"authorization", "client_secret", "code", "cookie", "password", "token"}
REDACTED = "***REDACTED***"

logger = structlog.get_logger(__name__)


def _is_sensitive_key(key: str) -> bool:
    """Return True when key likely carries credential material."""
    normalized = key.lower().replace("-", "_")
    return normalized in SENSITIVE_KEYS or "token" in normalized or "secret" in normalized


def _redact_query(values: dict[str, Any]) -> dict[str, Any]:
    """Redact credential-like query parameter values."""
    return {key: REDACTED if _is_sensitive_key(key) else value for key, value in values.items()}


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind a correlation ID, emit one log line and record metrics per request."""

    def __init__(self, app, registry: MetricsRegistry = DEFAULT_METRICS_REGISTRY) -> None:
        super().__init__(app)
        self._registry = registry

    async def dispatch(self, request: Request, call_next) -> Response:
        """Wrap the request in correlation context and measure it."""
        correlation_id = request.headers.get(CORRELATION_ID_HEADER, "").strip() or str(uuid4())
        request.state.correlation_id = correlation_id
        structlog.contextvars.bind_contextvars(correlation_id=correlation_id)

        start = perf_counter()
        query_params = _redact_query(dict(request.query_params.items()))
        try:
            response = await call_next(request)
        except Exception:
            self._record(request, 500, perf_counter() - start)
            logger.exception(
                "request_completed",
                method=request.method,
                path=request.url.path,
                query_params=query_params,
                status_code=500,
                duration_ms=round((perf_counter() - start) * 1000, 2),
            )
            structlog.contextvars.unbind_contextvars("correlation_id")
            raise

        duration_seconds = perf_counter() - start
        self._record(request, response.status_code, duration_seconds)
        event_logger = logger.warning if response.status_code >= 400 else logger.info
        event_logger(
            "request_completed",
            method=request.method,
            path=request.url.path,
            query_params=query_params,
            status_code=response.status_code,
            duration_ms=round(duration_seconds * 1000, 2),
        )
        structlog.contextvars.unbind_contextvars("correlation_id")
        response.headers[CORRELATION_ID_HEADER] = correlation_id
        return response

    def _record(self, request: Request, status_code: int, duration_seconds: float) -> None:
        route = request.scope.get("route")
        path = getattr(route, "path", request.url.path) if route is not None else request.url.path
        self._registry.record(
            method=request.method,
            path=path,
            status=str(status_code),
            duration_seconds=duration_seconds,
        )
