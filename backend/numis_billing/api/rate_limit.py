"""
Per-IP rate limiting for the public endpoints, using SlowAPI.

In-memory storage: limits apply per process, which is enough to blunt abuse
of the webhook and session endpoints.
"""

from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from numis_billing.config.settings import settings


limiter = Limiter(
    key_func=get_remote_address,
    enabled=settings.rate_limit_enabled,
)


__all__ = [
    "limiter",
    "RateLimitExceeded",
    "_rate_limit_exceeded_handler",
]
