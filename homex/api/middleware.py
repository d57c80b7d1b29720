"""Per-request context: request id, access logging, body limit, last-resort 500."""

from __future__ import annotations

import logging
import time
import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from homex.api.errors import REQUEST_ID_HEADER, error_response, server_error_response
from homex.core import events
from homex.core.logging_config import CORRELATION_ID_CTX

__all__ = ["MAX_BODY_BYTES", "RequestContextMiddleware"]

logger = logging.getLogger(__name__)

#: Largest accepted request body.
MAX_BODY_BYTES: int = 50 * 1024

_MAX_REQUEST_ID_LEN = 128


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Assigns a request id and logs one line per request.

    The id comes from an incoming ``X-Request-ID`` header or a fresh UUID.
    It is stored on ``request.state.request_id``, set as the logging
    correlation id for the duration of the request, and echoed in the
    response header.

    Requests declaring a body larger than *max_body* get a 413 without
    reaching the route.  Unhandled exceptions are logged and turned into a
    500 error body here.
    """

    def __init__(self, app: ASGIApp, *, max_body: int = MAX_BODY_BYTES) -> None:
        super().__init__(app)
        self.max_body = max_body

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = (request.headers.get(REQUEST_ID_HEADER) or "").strip()
        if not request_id or len(request_id) > _MAX_REQUEST_ID_LEN:
            request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        token = CORRELATION_ID_CTX.set(request_id)
        start = time.monotonic()
        try:
            response = self._reject_oversized(request)
            if response is None:
                try:
                    response = await call_next(request)
                except Exception as exc:
                    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
                    response = server_error_response(request, exc)
            response.headers[REQUEST_ID_HEADER] = request_id
            self._log(request, response.status_code, time.monotonic() - start)
            return response
        finally:
            CORRELATION_ID_CTX.reset(token)

    def _reject_oversized(self, request: Request) -> Response | None:
        declared = request.headers.get("content-length")
        if declared is None or not declared.isdigit() or int(declared) <= self.max_body:
            return None
        return error_response(request, 413, "Request entity too large")

    @staticmethod
    def _log(request: Request, status: int, elapsed: float) -> None:
        client = request.client.host if request.client else "-"
        level = logging.ERROR if status >= 400 else logging.INFO
        logger.log(
            level,
            "%s %s -> %d (%.0f ms) ip=%s ua=%s",
            request.method,
            request.url.path,
            status,
            elapsed * 1000,
            client,
            request.headers.get("user-agent", "-"),
            extra={"event": events.REQUEST_ERROR if status >= 400 else events.REQUEST_COMPLETE},
        )
