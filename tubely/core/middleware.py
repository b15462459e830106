"""Request correlation and access logging middleware."""

import logging
import re
import time
import uuid
from typing import Callable, Optional

from fastapi import HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from starlette.datastructures import Headers
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from tubely.core.config import settings
from tubely.core.logging import bind_correlation_id, reset_correlation_id

logger = logging.getLogger("tubely.requests")

CORRELATION_ID_HEADER = "X-Correlation-ID"

# Client supplied IDs end up in log lines; anything else is replaced
_VALID_CORRELATION_ID = re.compile(r"^[A-Za-z0-9._-]{1,128}$")

QUIET_PATHS = ("/health",)


def resolve_correlation_id(header_value: str | None) -> str:
    """Use the client's correlation ID when well formed, else a fresh one."""
    if header_value and _VALID_CORRELATION_ID.match(header_value):
        return header_value
    return uuid.uuid4().hex


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Bind a correlation ID for the request and echo it in the response."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = resolve_correlation_id(request.headers.get(CORRELATION_ID_HEADER))
        token = bind_correlation_id(correlation_id)
        try:
            response = await call_next(request)
        finally:
            reset_correlation_id(token)
        response.headers[CORRELATION_ID_HEADER] = correlation_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log one line per request with status and duration.

    Upload bodies can be large, so the declared ``Content-Length`` is logged
    alongside the result. Health probes are not logged.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if path in QUIET_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        fields = {
            "method": request.method,
            "path": path,
            "content_length": request.headers.get("content-length"),
        }
        try:
            response = await call_next(request)
        except Exception:
            fields["duration_ms"] = round((time.perf_counter() - started) * 1000, 2)
            logger.exception("Request failed", extra=fields)
            raise

        fields["status_code"] = response.status_code
        fields["duration_ms"] = round((time.perf_counter() - started) * 1000, 2)
        level = logging.WARNING if response.status_code >= 500 else logging.INFO
        logger.log(level, "Request completed", extra=fields)
        return response


class UploadTooLargeError(HTTPException):
    """Raised from ``receive`` once an upload body passes the size limit."""

    def __init__(self, limit: int):
        super().__init__(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"Upload exceeds {limit} bytes",
        )


class UploadSizeLimitMiddleware:
    """Cap the bytes read from upload request bodies.

    A declared ``Content-Length`` over the limit is rejected before the body
    is read. Chunked bodies are counted as they arrive and the request fails
    with 413 as soon as the running total passes the limit, so nothing past
    the limit is spooled. The limit is read from settings per request unless
    one is given.
    """

    def __init__(
        self,
        app: ASGIApp,
        max_body_size: Optional[int] = None,
        path_suffixes: tuple[str, ...] = ("/upload",),
    ):
        self.app = app
        self.max_body_size = max_body_size
        self.path_suffixes = path_suffixes

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or not scope["path"].endswith(self.path_suffixes):
            await self.app(scope, receive, send)
            return

        limit = self.max_body_size if self.max_body_size is not None else settings.MAX_VIDEO_UPLOAD_BYTES
        headers = Headers(scope=scope)
        declared = headers.get("content-length")
        if declared is not None:
            try:
                too_large = int(declared) > limit
            except ValueError:
                await JSONResponse({"detail": "Invalid Content-Length"}, status_code=400)(scope, receive, send)
                return
            if too_large:
                await self._reject(limit, scope, receive, send)
                return

        received = 0
        response_started = False

        async def limited_receive() -> Message:
            nonlocal received
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > limit:
                    raise UploadTooLargeError(limit)
            return message

        async def tracking_send(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, limited_receive, tracking_send)
        except UploadTooLargeError:
            if response_started:
                raise
            await self._reject(limit, scope, receive, send)

    async def _reject(self, limit: int, scope: Scope, receive: Receive, send: Send) -> None:
        logger.warning(
            "Upload rejected over size limit",
            extra={"path": scope["path"], "limit": limit},
        )
        response = JSONResponse(
            {"detail": f"Upload exceeds {limit} bytes"},
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
        )
        await response(scope, receive, send)
