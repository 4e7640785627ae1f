"""
Rate limiting configuration.

Route-level limits go through slowapi decorators. Limits whose key is not
derivable from the bare request (a device code in the body, an email plus
ip pair) are consumed from service code through ``consume``, which runs on
the same ``limits`` engine and storage that slowapi uses.
"""

import time
from dataclasses import dataclass

from fastapi import Request
from limits import parse, storage, strategies
from slowapi import Limiter
from slowapi.util import get_remote_address

from clawkpit.core.config import settings

# Create limiter instance
limiter = Limiter(key_func=get_remote_address, storage_uri=settings.RATE_LIMIT_STORAGE_URI)

# Format: "count/period" where period can be second(s), minute(s), hour(s), day(s)
DEFAULT_LIMIT = "100/minute"
AUTH_LIMIT = "20/minute"  # Magic-link and email-change token exchange

_storage = storage.storage_from_string(settings.RATE_LIMIT_STORAGE_URI)
_strategy = strategies.MovingWindowRateLimiter(_storage)


@dataclass
class RateLimitResult:
    allowed: bool
    retry_after: int = 0


def get_client_ip(request: Request) -> str:
    """Network identity used for per-client quotas."""
    return get_remote_address(request) or "unknown"


def consume(key: str, limit: str) -> RateLimitResult:
    """
    Take one unit from the quota ``limit`` for ``key``.

    Args:
        key: Quota bucket, e.g. ``"device_confirm:10.0.0.1"``
        limit: Rate string understood by ``limits.parse``

    Returns:
        RateLimitResult with a retry-after hint (seconds) when refused
    """
    item = parse(limit)
    if _strategy.hit(item, key):
        return RateLimitResult(allowed=True)

    stats = _strategy.get_window_stats(item, key)
    retry_after = int(stats.reset_time - time.time()) + 1
    return RateLimitResult(allowed=False, retry_after=max(1, retry_after))


def reset() -> None:
    """Clear every quota (used by tests)."""
    _storage.reset()
    limiter.reset()
