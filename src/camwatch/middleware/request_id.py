"""Request ID middleware for request correlation.

Assigns a UUID4 to each request (or keeps a client-provided X-Request-ID),
stores it in request.state, echoes it in the response headers, and logs the
request/response pair with timing.

Probe and scrape paths are logged at DEBUG so monitoring does not drown the
session logs. Long-lived streaming responses (MJPEG, SSE) are logged when
their headers are sent, not when the stream ends.

Logging Strategy:
    DEBUG - Probe/scrape requests, client-provided IDs
    INFO  - Request start (→) and successful responses (← 2xx/3xx)
    WARN  - Client errors (4xx)
    ERROR - Server errors (5xx), unhandled exceptions
"""
from __future__ import annotations

import logging
import time
import uuid
from typing import Awaitable, Callable, Final

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER: Final[str] = "X-Request-ID"

QUIET_PATHS: Final[set[str]] = {"/health", "/health/live", "/metrics"}
"""Paths whose request logs are demoted to DEBUG."""


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Tag every request with an ID and log it with timing."""

    def __init__(self, app: ASGIApp, header_name: str = REQUEST_ID_HEADER) -> None:
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        request_id = request.headers.get(self.header_name)
        if request_id:
            logger.debug(f"Using client-provided request ID: {request_id}")
        else:
            request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        quiet = request.url.path in QUIET_PATHS
        start = time.perf_counter()
        logger.log(
            logging.DEBUG if quiet else logging.INFO,
            f"→ {request.method} {request.url.path}",
            extra={"request_id": request_id}
        )

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.error(
                f"Request {request_id} failed after {duration_ms:.2f}ms: "
                f"{type(e).__name__}: {e}",
                exc_info=True,
                extra={"request_id": request_id}
            )
            raise

        response.headers[self.header_name] = request_id
        duration_ms = (time.perf_counter() - start) * 1000

        status_code = response.status_code
        if status_code >= 500:
            level = logging.ERROR
        elif status_code >= 400:
            level = logging.WARNING
        else:
            level = logging.DEBUG if quiet else logging.INFO

        logger.log(
            level,
            f"← {request.method} {request.url.path} {status_code} ({duration_ms:.2f}ms)",
            extra={
                "request_id": request_id,
                "status_code": status_code,
                "duration_ms": round(duration_ms, 2)
            }
        )
        return response


def get_request_id(request: Request) -> str | None:
    """Request ID stored by the middleware, or None if it is not installed."""
    return getattr(request.state, "request_id", None)
