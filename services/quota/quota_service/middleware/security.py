"""
ABOUTME: Security headers middleware for the JSON API
ABOUTME: Adds OWASP recommended headers and disables caching of quota responses
"""

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from quota_service.config import settings


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Middleware to add security headers to all responses

    Quota balances change on every request, so everything except health and
    metrics is marked non-cacheable.
    """

    CACHEABLE_PATHS = {"/", "/health", "/metrics"}

    async def dispatch(self, request: Request, call_next):
        """Add security headers to response"""
        response: Response = await call_next(request)

        # HSTS - Force HTTPS (only in production)
        if settings.environment == "production":
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains; preload"
            )

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

        path = request.url.path
        if path.startswith(settings.api_v1_prefix):
            path = path[len(settings.api_v1_prefix):] or "/"
        if path not in self.CACHEABLE_PATHS:
            response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, private"
            response.headers["Pragma"] = "no-cache"

        return response
