"""
Redis-based rate limiting for the sign-in endpoints.

Guards account lookup, code sending and push requests against abuse. These
limits sit in front of the per-code attempt limits and resend cooldown,
which are enforced in the database and do not depend on Redis.
"""

import logging
import redis
from fastapi import HTTPException, status
from app.core.config import settings

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Redis-based fixed-window rate limiter for protecting endpoints.

    Counters expire automatically at the end of each window.
    """

    def __init__(self):
        """Initialize Redis connection"""
        self.redis_client = redis.Redis(
            host=settings.REDIS_HOST,
            port=settings.REDIS_PORT,
            db=settings.REDIS_DB,
            decode_responses=True,
            socket_connect_timeout=0.5,
            socket_timeout=0.5
        )

    def check_rate_limit(
        self,
        key: str,
        max_requests: int,
        window_seconds: int,
        error_message: str = "Rate limit exceeded"
    ) -> None:
        """
        Check if a request is within rate limits.

        Args:
            key: Unique identifier for this rate limit (e.g., "login_code:a@x.com")
            max_requests: Maximum number of requests allowed
            window_seconds: Time window in seconds
            error_message: Custom error message if rate limit exceeded

        Raises:
            HTTPException: 429 Too Many Requests if rate limit exceeded
        """
        try:
            count = self.redis_client.incr(key)
            if count == 1:
                self.redis_client.expire(key, window_seconds)

            if count > max_requests:
                ttl = self.redis_client.ttl(key)
                raise HTTPException(
                    status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                    detail=f"{error_message}. Try again in {ttl} seconds.",
                    headers={"Retry-After": str(max(ttl, 1))}
                )

        except redis.RedisError as e:
            # If Redis is down, log error but don't block the request
            logger.error(f"Redis rate limiter error: {e}")


# Singleton instance
rate_limiter = RateLimiter()


def check_account_lookup_limit(ip_address: str) -> None:
    """
    Rate limit for email lookups (account enumeration guard).

    Limit: 20 requests per minute per IP.
    """
    rate_limiter.check_rate_limit(
        key=f"account_lookup:{ip_address}",
        max_requests=20,
        window_seconds=60,
        error_message="Too many sign-in attempts from your network"
    )


def check_send_code_limit(email: str) -> None:
    """
    Rate limit for sending login/registration codes.

    Limit: 5 emails per 10 minutes per address.
    """
    rate_limiter.check_rate_limit(
        key=f"send_code:{email.lower()}",
        max_requests=5,
        window_seconds=600,
        error_message="Too many verification emails sent. Please wait before requesting another code"
    )


def check_verify_code_limit(email: str) -> None:
    """
    Rate limit for code verification attempts across all codes.

    Limit: 10 attempts per 10 minutes per address.
    """
    rate_limiter.check_rate_limit(
        key=f"verify_code:{email.lower()}",
        max_requests=10,
        window_seconds=600,
        error_message="Too many verification attempts. Please wait before trying again"
    )


def check_push_request_limit(email: str) -> None:
    """
    Rate limit for push login requests.

    Limit: 5 requests per 5 minutes per address.
    """
    rate_limiter.check_rate_limit(
        key=f"push_login:{email.lower()}",
        max_requests=5,
        window_seconds=300,
        error_message="Too many sign-in requests. Please wait before trying again"
    )
