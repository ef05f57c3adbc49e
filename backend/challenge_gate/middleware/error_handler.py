"""Error handler middleware with PII redaction."""

import logging
from typing import Callable

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from challenge_gate.config import settings
from challenge_gate.services.error_logging_service import error_logging_service

logger = logging.getLogger(__name__)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Middleware for handling uncaught exceptions.

    - Logs errors with PII redaction
    - Returns safe error messages to clients (no stack traces outside DEBUG)
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)

        except Exception as exc:
            # Set by get_login_context once the login token is decoded
            login = getattr(request.state, "login", None)
            user_id = str(login.user.id) if login is not None else None

            context = {
                "method": request.method,
                "path": request.url.path,
                "client_host": request.client.host if request.client else None,
            }

            error_logging_service.log_error(
                logger=logger, error=exc, context=context, user_id=user_id
            )

            if settings.DEBUG:
                error_detail = {
                    "error": str(exc),
                    "type": type(exc).__name__,
                    "detail": "An error occurred processing your request",
                }
            else:
                error_detail = {
                    "error": "Internal server error",
                    "detail": "An unexpected error occurred. Please try again later.",
                }

            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=error_detail
            )
