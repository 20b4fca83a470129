"""
OpenBlind Backend — Access Log Middleware
===========================================

What:  One log line per HTTP request on the "openblind.access" logger.
Logged:     method, path, status, duration, request id, client ip
Not logged: query strings (admin search terms are names), request bodies,
            headers (X-Admin-Key)
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from openblind.middleware.request_id import request_id_var

logger = logging.getLogger("openblind.access")

QUIET_PATHS = frozenset({"/health"})


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Access log with severity chosen by status class (5xx ERROR, 4xx WARNING)."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path in QUIET_PATHS:
            return await call_next(request)

        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000

        status = response.status_code
        if status >= 500:
            level = logging.ERROR
        elif status >= 400:
            level = logging.WARNING
        else:
            level = logging.INFO

        rid = request_id_var.get("")
        client_ip = request.client.host if request.client else "unknown"
        logger.log(
            level,
            "%s %s %d %.1fms [%s]",
            request.method,
            path,
            status,
            duration_ms,
            rid,
            extra={
                "request_id": rid,
                "method": request.method,
                "path": path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "client_ip": client_ip,
            },
        )
        return response
