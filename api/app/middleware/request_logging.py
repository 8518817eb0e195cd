# api/app/middleware/request_logging.py
"""
Request-level access logging. Auth itself is handled in dependencies.py.
"""
from __future__ import annotations

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)


def _caller(request: Request) -> str:
    if "x-service-key" in request.headers:
        return "service"
    return request.headers.get("x-owner-id", "anonymous")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        t0 = time.monotonic()
        response = await call_next(request)
        elapsed = (time.monotonic() - t0) * 1000
        level = logging.WARNING if response.status_code >= 500 else logging.INFO
        logger.log(
            level,
            "%s %s caller=%s -> %d (%.0fms)",
            request.method,
            request.url.path,
            _caller(request),
            response.status_code,
            elapsed,
        )
        return response
