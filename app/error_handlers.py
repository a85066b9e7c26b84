"""Global exception handlers enforcing API error response contracts."""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

VALID_ERROR_CODES = {
    "provider_not_found",
    "documents_unavailable",
    "invalid_request",
    "internal_error",
}

_DEFAULT_ERROR_CODE_BY_STATUS: dict[int, str] = {
    400: "invalid_request",
    404: "provider_not_found",
    405: "invalid_request",
    422: "invalid_request",
    503: "documents_unavailable",
}

logger = structlog.get_logger(__name__)


def error_response(status_code: int, detail: str, code: str) -> JSONResponse:
    """Build standardized JSON error payload."""
    return JSONResponse(status_code=status_code, content={"detail": detail, "code": code})


def _resolve_error_code(status_code: int, raw_code: str | None) -> str:
    """Resolve a valid machine-readable error code."""
    if raw_code in VALID_ERROR_CODES:
        return raw_code
    return _DEFAULT_ERROR_CODE_BY_STATUS.get(status_code, "invalid_request")


def _extract_detail_and_code(detail: Any) -> tuple[str, str | None]:
    """Normalize exception detail payload into message and optional code."""
    if isinstance(detail, dict):
        raw_detail = detail.get("detail", "Request failed.")
        raw_code = detail.get("code")
        return str(raw_detail), str(raw_code) if raw_code is not None else None
    if isinstance(detail, str):
        return detail, None
    return "Request failed.", None


def _sanitize_detail(detail: str, status_code: int, environment: str) -> str:
    """Hide internal failure details outside development."""
    if environment != "development" and status_code >= 500:
        return "Internal server error."
    return detail


def register_exception_handlers(app: FastAPI, environment: str) -> None:
    """Register global exception handlers enforcing error shape contract."""

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        """Normalize framework HTTP exceptions to contract payload."""
        detail, raw_code = _extract_detail_and_code(exc.detail)
        code = _resolve_error_code(exc.status_code, raw_code)
        if exc.status_code == 503:
            logger.warning(
                "provider_documents_unavailable",
                path=request.url.path,
                method=request.method,
                detail=detail,
            )
        return error_response(status_code=exc.status_code, detail=detail, code=code)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_exception(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Map request validation errors to standardized payload."""
        detail = "Invalid request."
        if environment == "development":
            errors = exc.errors()
            if errors:
                detail = f"Invalid request: {errors[0].get('msg', 'validation error')}."
        return error_response(status_code=422, detail=detail, code="invalid_request")

    @app.exception_handler(Exception)
    async def handle_unexpected_exception(request: Request, exc: Exception) -> JSONResponse:
        """Mask internal errors and enforce contract payload."""
        correlation_id = getattr(
            request.state,
            "correlation_id",
            request.headers.get("x-correlation-id", "unknown"),
        )
        logger.error(
            "unhandled_exception",
            correlation_id=correlation_id,
            path=request.url.path,
            method=request.method,
            error=str(exc),
        )
        detail = _sanitize_detail(str(exc), 500, environment)
        return error_response(status_code=500, detail=detail, code="internal_error")
