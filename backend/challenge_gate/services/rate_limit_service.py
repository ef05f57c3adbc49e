"""Rate limiting service using Redis."""

import hashlib
import logging
from typing import Optional

import redis.asyncio as redis
from fastapi import HTTPException, Request, status

from challenge_gate.config import settings
from challenge_gate.services.error_logging_service import error_logging_service
from challenge_gate.utils.request_utils import get_client_ip

logger = logging.getLogger(__name__)


class RateLimitService:
    """Fixed-window request counters kept in Redis."""

    def __init__(self, redis_url: Optional[str] = None):
        self.redis_url = redis_url or settings.REDIS_URL
        self.redis_client: Optional[redis.Redis] = None

    async def get_redis(self) -> redis.Redis:
        """Get or create Redis connection."""
        if self.redis_client is None:
            self.redis_client = redis.from_url(
                self.redis_url, encoding="utf-8", decode_responses=True
            )
        return self.redis_client

    def _get_rate_limit_key(self, identifier: str, scope: str) -> str:
        """
        Generate rate limit key for Redis.

        Args:
            identifier: IP address or user identifier
            scope: Endpoint or action being limited
        """
        # Hash to normalize key length, not used for security
        hash_key = hashlib.md5(f"{identifier}:{scope}".encode(), usedforsecurity=False).hexdigest()  # nosec B324
        return f"rate_limit:{hash_key}"

    async def check_rate_limit(
        self,
        request: Request,
        max_requests: int = 5,
        window_seconds: int = 60,
        identifier: Optional[str] = None,
        scope: Optional[str] = None,
    ) -> None:
        """
        Check if request exceeds rate limit.

        Args:
            request: FastAPI request object
            max_requests: Maximum requests allowed in window
            window_seconds: Time window in seconds
            identifier: Custom identifier (defaults to client IP address)
            scope: Counter name (defaults to the request path)

        Raises:
            HTTPException: 429 Too Many Requests if limit exceeded
        """
        if identifier is None:
            identifier = get_client_ip(request) or "unknown"

        # No real client (e.g., test environment)
        if identifier == "unknown":
            return

        # Redis may not be running locally
        if settings.ENVIRONMENT == "development":
            return

        redis_client = await self.get_redis()
        key = self._get_rate_limit_key(identifier, scope or request.url.path)

        try:
            current = await redis_client.get(key)

            if current is None:
                await redis_client.setex(key, window_seconds, 1)
            else:
                current_count = int(current)

                if current_count >= max_requests:
                    ttl = await redis_client.ttl(key)
                    error_logging_service.log_security_event(
                        logger=logger,
                        event_type="rate_limit_exceeded",
                        message=f"Rate limit exceeded on {scope or request.url.path}",
                        ip_address=get_client_ip(request),
                    )
                    raise HTTPException(
                        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                        detail={
                            "error": "Rate limit exceeded",
                            "message": f"Too many requests. Please try again in {ttl} seconds.",
                            "retry_after": ttl,
                        },
                        headers={"Retry-After": str(ttl)},
                    )

                await redis_client.incr(key)

        except HTTPException:
            raise
        except Exception as e:
            # Fail-open: an unreachable Redis must not lock everyone out of login
            logger.warning("Rate limit check failed (fail-open): %s", e)


_rate_limit_service: Optional[RateLimitService] = None


def get_rate_limit_service() -> RateLimitService:
    """Get or create rate limit service singleton."""
    global _rate_limit_service
    if _rate_limit_service is None:
        _rate_limit_service = RateLimitService()
    return _rate_limit_service
