"""
OpenBlind Backend — Health Check Route
========================================

What:  Health check endpoint for monitoring and load balancer probes.
How:   Checks the database (SELECT 1) and runs the cipher self-test.

Status levels:
    - healthy:   database reachable and cipher round-trips (HTTP 200)
    - unhealthy: either check failed (HTTP 503, stop routing traffic)
"""

import logging
import time

from fastapi import APIRouter, Request, Response
from sqlalchemy import text

from openblind import __version__
from openblind.database import engine
from openblind.schemas.common import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
    description=(
        "Returns the health of the backend and its dependencies. Used by Docker "
        "health checks and load balancers."
    ),
)
async def health_check(request: Request, response: Response) -> HealthResponse:
    db_status = "connected"
    encryption_status = "ok"
    overall = "healthy"

    # ── Database ──────────────────────────────────────────────────────────
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        db_status = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: database unreachable: %s", type(e).__name__)

    # ── Cipher ────────────────────────────────────────────────────────────
    cipher = getattr(request.app.state, "cipher_engine", None)
    if cipher is None:
        encryption_status = "not_configured"
        overall = "unhealthy"
    elif not cipher.self_test():
        encryption_status = "failed"
        overall = "unhealthy"
        logger.warning("Health check: cipher self-test failed")

    if overall == "unhealthy":
        response.status_code = 503

    return HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        encryption=encryption_status,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
