# Middleware package init
"""
OpenBlind Backend — Middleware Package
========================================

What:  Cross-cutting concerns applied to every request.

Middleware Chain:
    Request → [Rate Limit] → [Request ID] → [Access Log] → [GZip] → [CORS] → Route

    - Rate Limit rejects abusive clients before any database or cipher work
    - Request ID tags the request so every log line can be correlated
    - Access Log records method, path, status and duration; never bodies or
      query strings, which carry personal data on this API
"""
