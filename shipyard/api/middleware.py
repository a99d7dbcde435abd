"""Custom middleware for the API."""

import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from shipyard.utils.logging import get_logger

logger = get_logger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log each request and tag the response with its id and timing.

    For streamed progress responses ``duration_ms`` measures time to the
    first byte, not the length of the pipeline.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.perf_counter()
        request_id = request.headers.get("X-Request-ID", str(time.time_ns()))

        logger.info(
            "request.started",
            method=request.method,
            path=request.url.path,
            client=request.client.host if request.client else None,
            request_id=request_id,
        )

        response = await call_next(request)
        duration_ms = (time.perf_counter() - start_time) * 1000

        log = logger.warning if response.status_code >= 400 else logger.info
        log(
            "request.completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round(duration_ms, 2),
            request_id=request_id,
        )

        response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"
        response.headers["X-Request-ID"] = request_id
        return response
