"""Structured error envelope for HTTP responses.

Every error leaves the API as::

    {"error": {"code": "...", "message": "...", "details": {...}}}

with ``details.correlationId`` added whenever the request carried one.
Services raise ``ServiceError`` subclasses; routes turn them into
``HTTPException`` via ``from_service_error`` so the status code stays
next to the call that failed.
"""

from typing import Any

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.services.exceptions import ServiceError

logger = structlog.get_logger(__name__)


def error_body(
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
    correlation_id: str | None = None,
) -> dict[str, Any]:
    details = dict(details or {})
    if correlation_id:
        details["correlationId"] = correlation_id
    return {"error": {"code": code, "message": message, "details": details}}


def api_error(
    status_code: int,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> HTTPException:
    """HTTPException whose detail is already an error envelope."""
    return HTTPException(status_code=status_code, detail=error_body(code, message, details))


def from_service_error(error: ServiceError) -> HTTPException:
    return api_error(error.status_code, error.code, error.message, error.details)


def _correlation_id(request: Request) -> str | None:
    return getattr(request.state, "correlation_id", None)


async def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, dict) and "error" in detail:
        error = detail["error"]
        content = error_body(
            error.get("code", f"HTTP_{exc.status_code}"),
            error.get("message", ""),
            error.get("details"),
            _correlation_id(request),
        )
    else:
        content = error_body(
            f"HTTP_{exc.status_code}",
            str(detail) if detail else "An error occurred",
            correlation_id=_correlation_id(request),
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=content,
        headers=getattr(exc, "headers", None),
    )


async def _validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    fields = [
        {
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    logger.warning("validation_error", path=request.url.path, errors=fields)
    return JSONResponse(
        status_code=422,
        content=error_body(
            "VALIDATION_ERROR",
            "Request validation failed",
            {"fields": fields},
            _correlation_id(request),
        ),
    )


async def _service_exception_handler(request: Request, exc: ServiceError) -> JSONResponse:
    # Reached only when a route forgot to convert; still answer with the service's status
    logger.warning(
        "service_error_unconverted",
        path=request.url.path,
        code=exc.code,
        error_message=exc.message,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.code, exc.message, exc.details, _correlation_id(request)),
    )


async def _unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        error_type=type(exc).__name__,
        error_message=str(exc),
    )
    return JSONResponse(
        status_code=500,
        content=error_body(
            "INTERNAL_ERROR",
            "An unexpected error occurred",
            correlation_id=_correlation_id(request),
        ),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)
    app.add_exception_handler(ServiceError, _service_exception_handler)
    app.add_exception_handler(Exception, _unhandled_exception_handler)
