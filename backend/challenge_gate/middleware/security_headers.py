"""Security headers middleware for the login pages."""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from challenge_gate.config import settings
from challenge_gate.core.csp import ContentSecurityPolicy


def default_policy() -> str:
    policy = ContentSecurityPolicy()
    if settings.DEBUG:
        policy.allow("script-src", "'unsafe-eval'")
    return policy.build()


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response: Response = await call_next(request)

        # A challenge page may carry its provider's own policy
        if "Content-Security-Policy" not in response.headers:
            response.headers["Content-Security-Policy"] = default_policy()

        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-XSS-Protection"] = "1; mode=block"

        if request.url.hostname not in ["localhost", "127.0.0.1"]:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains; preload"
            )

        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = (
            "geolocation=(), microphone=(), camera=(), payment=()"
        )

        # Login pages must never be served from a shared cache
        response.headers["Cache-Control"] = "no-store"

        return response
