"""
Rate limiting for the authentication endpoints.

Uses slowapi, keyed on the client IP (proxy headers first):

    from fieldservice.utils.rate_limiter import limiter, RateLimits

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

from fieldservice.config import settings

logger = logging.getLogger(__name__)


def get_client_ip(request: Request) -> str:
    """First proxy-reported address, else the socket peer"""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return request.headers.get("X-Real-IP") or get_remote_address(request)


limiter = Limiter(key_func=get_client_ip, enabled=settings.rate_limit_enabled)


class RateLimits:
    LOGIN = settings.login_rate_limit
    REGISTER = "3/minute"


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    """429 in the same {detail, error} shape as the other API errors"""
    limit = str(getattr(exc, "detail", "")) or "rate limit"
    logger.warning(f"Rate limit exceeded for {get_client_ip(request)} on {request.url.path}: {limit}")
    return JSONResponse(
        status_code=429,
        content={"detail": f"Too many attempts ({limit}). Try again later.", "error": "RateLimitExceeded"},
        headers={"Retry-After": "60"},
    )
