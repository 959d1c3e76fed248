"""
Rate limiting for the armory API.

Only the login endpoint is limited (``LOGIN_RATE_LIMIT``, default 5/minute
per client IP). Set ``RATE_LIMIT_ENABLED=false`` to switch it off.

Usage:
    from armory.utils.rate_limiter import limiter, RateLimits

    @router.post("/login")
    @limiter.limit(RateLimits.LOGIN)
    def login(request: Request, ...):
        ...

Note: The `request: Request` parameter is REQUIRED for rate-limited endpoints.
"""
import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from armory.config import settings

logger = logging.getLogger(__name__)


def get_client_ip(request: Request) -> str:
    """
    Get the client IP address from the request.
    Handles cases where the app is behind a proxy/load balancer.
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # X-Forwarded-For can contain multiple IPs, take the first one
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    return get_remote_address(request)


limiter = Limiter(key_func=get_client_ip, enabled=settings.rate_limit_enabled)


class RateLimits:
    LOGIN = settings.login_rate_limit


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    client_ip = get_client_ip(request)
    logger.warning(f"Rate limit exceeded for IP {client_ip} on {request.url.path}")
    return JSONResponse(
        status_code=429,
        content={
            "detail": "Too many requests. Please try again later.",
            "code": "rate_limited",
        },
    )
