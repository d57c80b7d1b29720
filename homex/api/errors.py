"""Exception-to-response mapping for the HTTP API.

Every error body has the same shape::

    {"error": "Listing not found", "requestId": "3f9c..."}

Validation failures add ``"details"`` (one ``{"field", "message"}`` per
problem).  Outside production, server errors also carry ``"detail"`` with
the exception message; in production nothing internal is exposed.  The full
exception is always logged server-side.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from homex.core.exceptions import (
    HomexError,
    InvalidIdError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)

__all__ = [
    "REQUEST_ID_HEADER",
    "request_id_of",
    "error_response",
    "server_error_response",
    "install_error_handlers",
]

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

#: (status, public message) per exception class; first match wins.
_ERROR_MAP: tuple[tuple[type[HomexError], int, str], ...] = (
    (ValidationError, 400, "Validation failed"),
    (InvalidIdError, 400, "Invalid listing ID"),
    (NotFoundError, 404, "Listing not found"),
    (PersistenceError, 500, "Internal Server Error"),
)


def request_id_of(request: Request) -> str:
    return getattr(request.state, "request_id", None) or "-"


def _is_production(request: Request) -> bool:
    settings = getattr(request.app.state, "settings", None)
    return bool(settings is not None and settings.is_production)


def error_response(
    request: Request,
    status_code: int,
    message: str,
    **extra: Any,
) -> JSONResponse:
    """Build the standard JSON error body and echo the request id header."""
    request_id = request_id_of(request)
    body: dict[str, Any] = {"error": message, "requestId": request_id}
    body.update({k: v for k, v in extra.items() if v is not None})
    return JSONResponse(body, status_code=status_code, headers={REQUEST_ID_HEADER: request_id})


def server_error_response(request: Request, exc: BaseException) -> JSONResponse:
    """500 response; exposes the message only outside production."""
    detail = None if _is_production(request) else str(exc)
    return error_response(request, 500, "Internal Server Error", detail=detail)


async def homex_error_handler(request: Request, exc: Exception) -> JSONResponse:
    for exc_type, status, message in _ERROR_MAP:
        if isinstance(exc, exc_type):
            break
    else:
        status, message = 500, "Internal Server Error"

    if status >= 500:
        logger.error(
            "%s %s failed: %s",
            request.method,
            request.url.path,
            exc,
            exc_info=exc,
        )
        return server_error_response(request, exc)

    logger.info("%s %s rejected: %s", request.method, request.url.path, exc)
    details = exc.errors if isinstance(exc, ValidationError) else None
    return error_response(request, status, message, details=details)


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return error_response(request, exc.status_code, str(exc.detail))


def install_error_handlers(app: FastAPI) -> None:
    """Register the handlers above on *app*."""
    app.add_exception_handler(HomexError, homex_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
