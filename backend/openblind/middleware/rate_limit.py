"""
OpenBlind Backend — Rate Limiting Middleware
==============================================

What:  Per-IP sliding-window limiter with two buckets.
         auth:    /api/auth/*  → RATE_LIMIT_AUTH_REQUESTS per window
         general: everything else → RATE_LIMIT_REQUESTS per window
       Both share RATE_LIMIT_WINDOW (seconds).
How:   Timestamps per (bucket, ip) in memory; entries older than the window
       are dropped on each request. Rejected requests get a 429 with
       Retry-After and never reach the database or the cipher.

In-memory state is per process; multi-worker deployments each keep their own
counters.
"""

import logging
import time
from collections import defaultdict, deque
from typing import Deque, Dict, Tuple

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from openblind.config import settings
from openblind.exceptions import RateLimitExceededError
from openblind.middleware.request_id import request_id_var

logger = logging.getLogger(__name__)

AUTH_PREFIX = "/api/auth/"
EXCLUDED_PATHS = frozenset({"/health", "/docs", "/openapi.json", "/redoc"})
SWEEP_EVERY = 1000


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Sliding-window request limiter keyed by (bucket, client ip)."""

    def __init__(self, app, **kwargs):
        super().__init__(app, **kwargs)
        self._hits: Dict[Tuple[str, str], Deque[float]] = defaultdict(deque)
        self._seen = 0

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path in EXCLUDED_PATHS:
            return await call_next(request)

        if path.startswith(AUTH_PREFIX):
            bucket, limit = "auth", settings.rate_limit_auth_requests
        else:
            bucket, limit = "general", settings.rate_limit_requests
        client_ip = request.client.host if request.client else "unknown"

        now = time.time()
        window_start = now - settings.rate_limit_window
        hits = self._hits[(bucket, client_ip)]
        while hits and hits[0] <= window_start:
            hits.popleft()

        if len(hits) >= limit:
            retry_after = int(hits[0] + settings.rate_limit_window - now) + 1
            logger.warning(
                "Rate limit exceeded for %s on %s bucket: %d requests in %ds",
                client_ip,
                bucket,
                len(hits),
                settings.rate_limit_window,
            )
            exc = RateLimitExceededError(retry_after=retry_after)
            return JSONResponse(
                status_code=429,
                content={
                    "error": "rate_limit_exceeded",
                    "message": exc.message,
                    "details": exc.context,
                    "request_id": request_id_var.get(""),
                },
                headers={"Retry-After": str(retry_after)},
            )

        hits.append(now)
        self._seen += 1
        if self._seen % SWEEP_EVERY == 0:
            self._sweep(window_start)

        return await call_next(request)

    def _sweep(self, window_start: float) -> None:
        """Forget clients with no hits inside the window."""
        stale = [key for key, hits in self._hits.items() if not hits or hits[-1] <= window_start]
        for key in stale:
            del self._hits[key]
        if stale:
            logger.debug("Dropped %d idle rate-limit entries", len(stale))
