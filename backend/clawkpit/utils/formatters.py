"""
Data formatting utilities.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to aware UTC.

    SQLite hands back naive values for ``DateTime(timezone=True)`` columns;
    everything stored by the application is UTC, so naive means UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_error_response(
    error: Exception,
    code: str,
    details: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Format error response for API.

    Args:
        error: Exception object
        code: Envelope error code (BAD_REQUEST, NOT_FOUND, ...)
        details: Extra structured details

    Returns:
        ``{"error": {"code", "message", "details"}}``
    """
    message = getattr(error, "message", None) or str(error)
    payload: Dict[str, Any] = dict(details or {})

    # Add additional details for custom exceptions
    kind = getattr(error, "error_kind", None)
    if kind:
        payload.setdefault("kind", kind)
    if getattr(error, "detail", None):
        payload["detail"] = error.detail
    if getattr(error, "field", None):
        payload["field"] = error.field

    return {
        "error": {
            "code": code,
            "message": message,
            "details": payload,
        }
    }


def mask_secret(value: Optional[str], visible: int = 8) -> str:
    """Show only the leading characters of a credential for logging."""
    if not value:
        return ""
    return f"{value[:visible]}..."
