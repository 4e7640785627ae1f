"""
Utility modules for the Clawkpit application.
"""

from .exceptions import (
    ClawkpitException,
    ValidationError,
    AuthenticationError,
    NotFoundError,
    ForbiddenError,
    RateLimitedError,
)

__all__ = [
    "ClawkpitException",
    "ValidationError",
    "AuthenticationError",
    "NotFoundError",
    "ForbiddenError",
    "RateLimitedError",
]
