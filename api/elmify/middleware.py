"""HTTP middleware: security headers, rate limiting and request logging."""

from __future__ import annotations

import logging
from typing import Callable

from fastapi import Request, Response, status
from starlette.middleware.base import BaseHTTPMiddleware

from . import settings
from .auth import get_client_ip
from .errors import error_response
from .services.rate_limit import RateLimiter, classify_path, rate_limiter

logger = logging.getLogger(__name__)

# Paths never rate limited
EXEMPT_PATHS = {
    "/health",
    "/health/redis",
    "/docs",
    "/openapi.json",
    "/redoc",
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Add security headers to all responses.

    Implements OWASP recommended security headers to protect against
    common web vulnerabilities.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = (
            "geolocation=(), microphone=(), camera=(), payment=(), usb=()"
        )

        # HSTS - Force HTTPS in production
        if settings.ENVIRONMENT == "production" or request.url.scheme == "https":
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )

        # The API serves JSON and audio only
        csp_directives = [
            "default-src 'none'",
            "media-src 'self'",
            "frame-ancestors 'none'",
            "base-uri 'none'",
            "form-action 'none'",
        ]
        # Swagger UI needs its CDN assets
        if not request.url.path.startswith(("/docs", "/redoc")):
            response.headers["Content-Security-Policy"] = "; ".join(csp_directives)

        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-IP token buckets, one per endpoint class."""

    def __init__(self, app, limiter: RateLimiter | None = None):
        super().__init__(app)
        self.limiter = limiter or rate_limiter

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if request.method == "OPTIONS" or path in EXEMPT_PATHS:
            return await call_next(request)

        client_ip = get_client_ip(request)
        bucket_type = classify_path(path)
        result = self.limiter.check(client_ip, bucket_type)

        if not result.allowed:
            logger.warning(f"Rate limit exceeded for IP {client_ip} on {bucket_type.value} {path}")
            return error_response(
                request,
                status.HTTP_429_TOO_MANY_REQUESTS,
                "RATE_LIMITED",
                "Too many requests. Please try again later.",
                headers={
                    "Retry-After": str(result.retry_after),
                    "X-RateLimit-Remaining": "0",
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Remaining"] = str(result.remaining)
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        has_auth = "authorization" in request.headers
        logger.debug(
            f"=== Incoming {request.method} {request.url.path} "
            f"(auth header: {'present' if has_auth else 'absent'}) ==="
        )
        response = await call_next(request)
        logger.debug(
            f"=== Response {request.method} {request.url.path}: {response.status_code} ==="
        )
        return response
