"""Error Handlers — map every failure onto the portal's {"success": false, "error"} envelope.

Invariants:
    - PortalError → its own http_status and to_response() body
    - RequestValidationError → 400 VALIDATION_ERROR with one entry per field
    - Starlette HTTPException (unknown route, wrong method) → same envelope
    - Exception (catch-all) → 500, internal details stay in the log

Design Decisions:
    - 4xx PortalErrors log at WARNING, 5xx at ERROR: a denied request is not an incident
    - Field paths drop the "body"/"query"/"path" prefix FastAPI adds, so
      clients see "columnsOrder" rather than "body.columnsOrder"
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from portal.core.errors import ErrorSeverity, PortalError

logger = logging.getLogger(__name__)

_LOCATION_PREFIXES = {"body", "query", "path", "header"}

_HTTP_CODES = {
    status.HTTP_404_NOT_FOUND: "NOT_FOUND",
    status.HTTP_405_METHOD_NOT_ALLOWED: "METHOD_NOT_ALLOWED",
}


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(PortalError, _portal_error)
    app.add_exception_handler(RequestValidationError, _validation_error)
    app.add_exception_handler(StarletteHTTPException, _http_error)
    app.add_exception_handler(Exception, _unhandled_error)


def _failure(http_status: int, code: str, message: str, category: str,
             severity: ErrorSeverity, **fields) -> JSONResponse:
    return JSONResponse(
        status_code=http_status,
        content={
            "success": False,
            "error": {
                "code": code,
                "message": message,
                "category": category,
                "severity": severity.value,
                **fields,
            },
        },
    )


async def _portal_error(request: Request, exc: PortalError) -> JSONResponse:
    log = logger.error if exc.http_status >= 500 else logger.warning
    log(
        f"{exc.code} on {request.method} {request.url.path}: {exc.message}",
        extra={
            "error_code": exc.code,
            "path": request.url.path,
            "user_id": request.headers.get("x-user-id"),
        },
    )
    return JSONResponse(status_code=exc.http_status, content=exc.to_response())


async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {"field": _field_path(e["loc"]), "message": e["msg"], "type": e["type"]}
        for e in exc.errors()
    ]
    logger.warning(
        f"Validation failed on {request.url.path}: "
        + ", ".join(d["field"] or "<body>" for d in details),
        extra={"error_code": "VALIDATION_ERROR", "path": request.url.path},
    )
    return _failure(
        status.HTTP_400_BAD_REQUEST, "VALIDATION_ERROR", "Invalid request data",
        "validation", ErrorSeverity.ERROR, details=details,
    )


async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _failure(
        exc.status_code,
        _HTTP_CODES.get(exc.status_code, "HTTP_ERROR"),
        str(exc.detail),
        "http",
        ErrorSeverity.WARNING,
    )


async def _unhandled_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        f"Unhandled exception on {request.method} {request.url.path}: {exc}",
        exc_info=True,
        extra={"path": request.url.path},
    )
    return _failure(
        status.HTTP_500_INTERNAL_SERVER_ERROR, "INTERNAL_ERROR",
        "An unexpected error occurred", "internal", ErrorSeverity.CRITICAL,
    )


def _field_path(loc) -> str:
    parts = [str(p) for p in loc]
    if parts and parts[0] in _LOCATION_PREFIXES:
        parts = parts[1:]
    return ".".join(parts)
