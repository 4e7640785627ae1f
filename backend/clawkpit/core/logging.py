"""
Structured logging utilities for the application.

Every log line emitted while a request is being served carries the request's
correlation id, so a push from an agent and the broadcast it triggers can be
followed through the log.
"""

import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Iterator, Optional
from loguru import logger
from fastapi import Request

# Context variable for correlation ID
correlation_id_var: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)


def get_correlation_id() -> Optional[str]:
    """Get the current correlation ID from context."""
    return correlation_id_var.get()


def set_correlation_id(cid: Optional[str] = None) -> str:
    """Set (or generate) the correlation ID for the current context."""
    if cid is None:
        cid = str(uuid.uuid4())
    correlation_id_var.set(cid)
    return cid


def log_request(request: Request, correlation_id: Optional[str] = None) -> None:
    """Log an incoming HTTP request. Credentials are never part of the line."""
    if correlation_id is None:
        correlation_id = get_correlation_id() or set_correlation_id()

    credential = "api_key" if request.headers.get("X-API-Key") else (
        "bearer" if request.headers.get("Authorization") else "none"
    )
    logger.bind(
        correlation_id=correlation_id,
        client_ip=request.client.host if request.client else None,
        credential=credential,
    ).info(f"{request.method} {request.url.path}")


def log_response(
    status_code: int,
    response_time_ms: float,
    correlation_id: Optional[str] = None
) -> None:
    """Log an HTTP response; 4xx at warning, 5xx at error."""
    if correlation_id is None:
        correlation_id = get_correlation_id()

    log_level = "error" if status_code >= 500 else "warning" if status_code >= 400 else "info"

    getattr(logger.bind(correlation_id=correlation_id), log_level)(
        f"-> {status_code} in {round(response_time_ms, 2)}ms"
    )


def log_error(
    error: Exception,
    context: Optional[Dict[str, Any]] = None,
    correlation_id: Optional[str] = None
) -> None:
    """
    Log an unexpected error with its traceback.

    Args:
        error: Exception object
        context: Extra fields bound to the record (path, user id ...)
        correlation_id: Correlation ID (uses context if not provided)
    """
    extra = {
        "correlation_id": correlation_id or get_correlation_id(),
        "error_type": error.__class__.__name__,
    }
    if context:
        extra.update(context)

    logger.bind(**extra).opt(exception=error).error(f"Unhandled {error.__class__.__name__}: {error}")


@contextmanager
def service_call(service_name: str, method_name: str, **fields: Any) -> Iterator[Dict[str, Any]]:
    """
    Time a service operation and log its outcome.

    The yielded dict may be filled in by the caller with fields only known
    once the operation ran (ids of created rows and so on).

    Usage:
        with service_call("AgentContentService", "ingest", user_id=str(uid)) as record:
            ...
            record["item_id"] = str(item.id)
    """
    record: Dict[str, Any] = dict(fields)
    started = time.perf_counter()
    try:
        yield record
    except Exception as e:
        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        logger.bind(correlation_id=get_correlation_id(), **record).warning(
            f"{service_name}.{method_name} failed after {duration_ms}ms: {e.__class__.__name__}"
        )
        raise
    duration_ms = round((time.perf_counter() - started) * 1000, 2)
    logger.bind(correlation_id=get_correlation_id(), **record).info(
        f"{service_name}.{method_name} ({duration_ms}ms)"
    )
