from __future__ import annotations

import logging
from typing import Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from nl2query.apps.api.response import error_response
from nl2query.core.errors import NL2QueryError, StatusInProgressError


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
    502: "UPSTREAM_ERROR",
    503: "SERVICE_UNAVAILABLE",
    504: "UPSTREAM_TIMEOUT",
}


def _default_code(status_code: int) -> str:
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


def _error_code(exc: NL2QueryError) -> str:
    # Sentinels get their own code; everything else maps by status.
    if isinstance(exc, StatusInProgressError):
        return "INGESTION_IN_PROGRESS"
    return _default_code(exc.status_code)


async def nl2query_error_handler(request: Request, exc: NL2QueryError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning(
            "request_failed path=%s error=%s status=%s", request.url.path, exc.__class__.__name__, exc.status_code
        )
    details: dict[str, Any] | None = None
    if exc.additional_error_info:
        details = {"additional_error_info": list(exc.additional_error_info)}
    payload = error_response(request=request, code=_error_code(exc), message=exc.message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = _default_code(exc.status_code)
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    payload = error_response(request=request, code=code, message=message)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=getattr(exc, "headers", None))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Structured details let SDK callers point at the offending field.
    payload = error_response(
        request=request,
        code="REQUEST_VALIDATION_ERROR",
        message="Validation error",
        details={"errors": exc.errors()},
    )
    return JSONResponse(content=payload, status_code=422)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Avoid leaking stack traces; the log keeps them.
    logger.exception("request_unhandled_error path=%s", request.url.path)
    payload = error_response(request=request, code="INTERNAL_ERROR", message="Internal server error")
    return JSONResponse(content=payload, status_code=500)
