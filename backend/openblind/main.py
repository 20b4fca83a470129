"""
OpenBlind Backend — FastAPI Application Factory
=================================================

What:  Creates and configures the FastAPI application instance.
How:   Factory pattern: create_app() returns a configured FastAPI instance.
Who:   Called by uvicorn to start the server (uvicorn openblind.main:app).

Application Architecture:
    ┌──────────────────────────────────────────────────────────┐
    │                      FastAPI App                         │
    │                                                          │
    │  Middleware Chain:                                       │
    │  ┌──────────────┐ ┌──────────┐ ┌─────────────────┐       │
    │  │  Rate Limit  │→│ Req ID   │→│  Logging        │       │
    │  └──────────────┘ └──────────┘ └─────────────────┘       │
    │                                                          │
    │  Routes:                                                 │
    │  /api/auth/*   /api/users/*   /api/admin/*   /health     │
    │                                                          │
    │  Exception Handlers:                                     │
    │  OpenBlindError subclasses → JSON ErrorResponse          │
    └──────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:
    1. Initialize logging
    2. Build the cipher engine from settings. A missing, placeholder or too
       short ENCRYPTION_KEY raises CipherConfigurationError and the process
       does not start.
    3. Store the engine on app.state for the route dependencies

    Shutdown:
    1. Dispose database engine (close all connections)
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from openblind import __version__
from openblind.config import settings
from openblind.database import dispose_engine
from openblind.exceptions import (
    AuthenticationError,
    CipherConfigurationError,
    ConcurrentUpdateError,
    ConflictError,
    DatabaseError,
    NotFoundError,
    OpenBlindError,
    PermissionDeniedError,
    RateLimitExceededError,
    TransformFailure,
    ValidationError,
)
from openblind.middleware.logging import RequestLoggingMiddleware
from openblind.middleware.rate_limit import RateLimitMiddleware
from openblind.middleware.request_id import RequestIDMiddleware, request_id_var
from openblind.routes import admin, auth, health, profiles
from openblind.services.cipher import build_cipher_engine

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configure logging for the entire application.

    Format: %(asctime)s [%(levelname)s] %(name)s: %(message)s
    Called once during app startup, before the cipher engine is built, so the
    configuration error (if any) is logged in the same format.
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # Third-party libraries log every operation at DEBUG/INFO
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Startup builds the cipher engine; shutdown disposes the database engine.

    CipherConfigurationError is logged and re-raised: serving traffic without
    a usable key is never an option.
    """
    # ── Startup ───────────────────────────────────────────────────────────
    setup_logging()
    logger.info("=" * 60)
    logger.info("OpenBlind Backend %s starting up...", __version__)

    try:
        app.state.cipher_engine = build_cipher_engine(settings)
    except CipherConfigurationError as e:
        logger.critical("Encryption configuration error: %s", e.message)
        logger.critical("Set ENCRYPTION_KEY (16+ characters) and restart the server.")
        raise

    if not app.state.cipher_engine.self_test():
        logger.error("Cipher self-test failed; encrypted fields may be unreadable")

    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("API docs: http://%s:%d/docs", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("OpenBlind Backend shutting down...")
    await dispose_engine()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _error_response(status_code: int, error: str, message: str, details=None, headers=None):
    content = {"error": error, "message": message, "request_id": request_id_var.get("")}
    if details:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map exception types to HTTP status codes and the ErrorResponse shape.

    Handler hierarchy:
        ValidationError          → 400 Bad Request
        AuthenticationError      → 401 Unauthorized
        PermissionDeniedError    → 403 Forbidden
        NotFoundError            → 404 Not Found
        ConflictError            → 409 Conflict
        ConcurrentUpdateError    → 409 Conflict (retry the request)
        RateLimitExceededError   → 429 Too Many Requests
        TransformFailure         → 500 (fail-closed mode only)
        DatabaseError            → 500
        OpenBlindError (base)    → 500
        Exception (fallback)     → 500

    Responses never echo field values or stack traces; details are logged.
    """

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        logger.warning("[%s] Validation error: %s", request_id_var.get(""), exc.message)
        return _error_response(400, "validation_error", exc.message, exc.context)

    @app.exception_handler(AuthenticationError)
    async def handle_authentication_error(request: Request, exc: AuthenticationError):
        return _error_response(401, "authentication_error", exc.message)

    @app.exception_handler(PermissionDeniedError)
    async def handle_permission_denied(request: Request, exc: PermissionDeniedError):
        return _error_response(403, "forbidden", exc.message)

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return _error_response(404, "not_found", exc.message)

    @app.exception_handler(ConflictError)
    async def handle_conflict(request: Request, exc: ConflictError):
        return _error_response(409, "conflict", exc.message)

    @app.exception_handler(ConcurrentUpdateError)
    async def handle_concurrent_update(request: Request, exc: ConcurrentUpdateError):
        logger.warning(
            "[%s] Concurrent update gave up: %s", request_id_var.get(""), exc.context
        )
        return _error_response(409, "concurrent_update", exc.message, exc.context)

    @app.exception_handler(RateLimitExceededError)
    async def handle_rate_limit(request: Request, exc: RateLimitExceededError):
        return _error_response(
            429,
            "rate_limit_exceeded",
            exc.message,
            exc.context,
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(TransformFailure)
    async def handle_transform_failure(request: Request, exc: TransformFailure):
        logger.error(
            "[%s] Field %s failed: %s", request_id_var.get(""), exc.operation, exc.reason
        )
        return _error_response(
            500, "encryption_error", "Protected data could not be processed."
        )

    @app.exception_handler(DatabaseError)
    async def handle_database_error(request: Request, exc: DatabaseError):
        logger.error(
            "[%s] Database error: %s | Context: %s", request_id_var.get(""), exc.message, exc.context
        )
        return _error_response(
            500, "server_error", "An internal error occurred. Please try again later."
        )

    @app.exception_handler(OpenBlindError)
    async def handle_application_error(request: Request, exc: OpenBlindError):
        logger.error(
            "[%s] %s: %s", request_id_var.get(""), type(exc).__name__, exc.message
        )
        return _error_response(500, "server_error", exc.message)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error("[%s] Unexpected error: %s", request_id_var.get(""), exc, exc_info=True)
        return _error_response(
            500,
            "internal_server_error",
            "An unexpected error occurred. Please try again or contact support.",
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    """Assemble middleware, exception handlers and routers."""
    app = FastAPI(
        title="OpenBlind API",
        description=(
            "Backend for the OpenBlind accessibility app. Personal profile data "
            "is encrypted field by field before it reaches the database."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── Register Middleware ───────────────────────────────────────────────
    # Executed in reverse order of addition: RateLimit → RequestID → Logging → GZip → CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(RateLimitMiddleware)

    # ── Register Exception Handlers ───────────────────────────────────────
    register_exception_handlers(app)

    # ── Register Routes ───────────────────────────────────────────────────
    app.include_router(auth.router)
    app.include_router(profiles.router)
    app.include_router(admin.router)
    app.include_router(health.router)

    return app


app = create_app()
