"""
OpenBlind Backend — Shared Response Schemas
=============================================

What:  Pydantic models shared by every router: the error envelope returned by
       the global exception handlers and the health check payload.
"""

from typing import Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """
    Standard error response format.

    Every error handler in main.py returns this shape so the frontend can rely
    on a single structure:

        {"error": "not_found", "message": "...", "details": {...}, "request_id": "..."}

    `details` never contains field values from a profile or account.
    """

    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    """Health check payload."""

    status: str = Field(description="Overall service status: healthy, degraded, unhealthy")
    version: str = Field(description="Application version")
    database: str = Field(description="Database connectivity: connected, disconnected")
    encryption: str = Field(description="Cipher self-test: ok, failed, not_configured")
    uptime_seconds: float = Field(description="Seconds since service started")
