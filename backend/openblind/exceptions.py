"""
OpenBlind Backend — Custom Exception Hierarchy
================================================

What:  Application-specific exceptions for the different error scenarios.
How:   Each exception class carries a message and optional context dict.
       Global exception handlers (registered in main.py) catch these and
       return structured JSON error responses with correct HTTP status codes.
Who:   Raised by services, repositories and middleware; caught by handlers.

Exception Hierarchy:
    OpenBlindError (base)
    ├── ValidationError            → 400 Bad Request
    ├── AuthenticationError        → 401 Unauthorized
    ├── PermissionDeniedError      → 403 Forbidden
    ├── NotFoundError              → 404 Not Found
    ├── ConflictError              → 409 Conflict
    ├── ConcurrentUpdateError      → 409 Conflict (compare-and-swap exhausted)
    ├── RateLimitExceededError     → 429 Too Many Requests
    ├── DatabaseError              → 500 Internal Server Error
    ├── CipherConfigurationError   → fatal at startup
    ├── TransformFailure           → 500 (only surfaced in fail-closed mode)
    └── BatchItemFailure           → never leaves a batch job; counted and logged

Values that merely do not look like ciphertext are not errors at all; the
cipher engine routes them as plaintext.
"""

from typing import Any, Dict, Optional


class OpenBlindError(Exception):
    """
    Base exception for all OpenBlind application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned to client)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(OpenBlindError):
    """
    Raised when client input fails a business rule.

    HTTP:    400 Bad Request
    Schema-level problems are still reported by FastAPI as 422.
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class AuthenticationError(OpenBlindError):
    """Credentials or admin key missing/invalid. HTTP 401."""

    def __init__(
        self,
        message: str = "Invalid credentials",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class PermissionDeniedError(OpenBlindError):
    """Caller is authenticated but not allowed to perform the action. HTTP 403."""

    def __init__(
        self,
        message: str = "You are not allowed to perform this action",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class NotFoundError(OpenBlindError):
    """
    Raised when a requested resource does not exist.

    HTTP:    404 Not Found
    Services return None for a missing profile or account; routes convert
    that absence into this exception.
    """

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class ConflictError(OpenBlindError):
    """Resource already exists (e.g. an account with the same email). HTTP 409."""

    def __init__(
        self,
        message: str = "The resource already exists",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class ConcurrentUpdateError(OpenBlindError):
    """
    A compare-and-swap write found a newer revision than the one it read.

    Raised by the profile repository path when the stored revision moved
    underneath the writer; retried by the caller, surfaced as HTTP 409 once
    the retry budget is exhausted.
    """

    def __init__(
        self,
        resource: str = "profile",
        resource_id: Optional[Any] = None,
        expected_revision: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The {resource} was modified by another request. Please retry."
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id is not None:
            ctx["resource_id"] = resource_id
        if expected_revision is not None:
            ctx["expected_revision"] = expected_revision
        super().__init__(message=message, context=ctx)
        self.expected_revision = expected_revision


class DatabaseError(OpenBlindError):
    """
    Raised when database operations fail unexpectedly.

    HTTP:    500 Internal Server Error
    The client always receives a generic message; details are logged only.
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class RateLimitExceededError(OpenBlindError):
    """Client exceeded the per-IP request rate limit. HTTP 429."""

    def __init__(
        self,
        retry_after: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Rate limit exceeded. Please wait {retry_after} seconds before making more requests."
        )
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after


class CipherConfigurationError(OpenBlindError):
    """
    The encryption key or algorithm is missing or unusable.

    When:    Raised while building the cipher engine during startup.
    Effect:  The lifespan handler lets it propagate, so the process never
             serves traffic with a weak or absent key.
    """

    def __init__(
        self,
        message: str = "Field encryption is not configured",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class TransformFailure(OpenBlindError):
    """
    An encrypt or decrypt operation failed internally.

    Causes:  wrong key, truncated or tampered envelope, cipher misconfiguration.
    Policy:  In fail-open mode the engine logs and returns its input instead of
             raising this. In fail-closed mode it is raised to the caller.
    """

    def __init__(
        self,
        operation: str = "transform",
        reason: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"Field {operation} failed"
        ctx = context or {}
        ctx["operation"] = operation
        if reason:
            ctx["reason"] = reason
        super().__init__(message=message, context=ctx)
        self.operation = operation
        self.reason = reason


class BatchItemFailure(OpenBlindError):
    """
    One record failed inside a migration or verification batch.

    Never propagates out of a batch job: the job catches it, logs it,
    increments its error counter and moves on to the next record.
    """

    def __init__(
        self,
        record_id: Any = None,
        reason: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"Batch item {record_id} failed"
        if reason:
            message = f"{message}: {reason}"
        ctx = context or {}
        ctx["record_id"] = record_id
        super().__init__(message=message, context=ctx)
        self.record_id = record_id
