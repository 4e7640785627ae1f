"""
Global exception handlers for FastAPI application.

Every failure leaves the API in the same envelope:
``{"error": {"code", "message", "details"}}``.
"""

from fastapi import Request, status
from fastapi.exceptions import HTTPException, RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy.exc import TimeoutError as SQLAlchemyTimeoutError

from clawkpit.core.logging import log_error
from clawkpit.utils.exceptions import ClawkpitException, RateLimitedError
from clawkpit.utils.formatters import format_error_response

HTTP_CODES = {
    status.HTTP_400_BAD_REQUEST: "BAD_REQUEST",
    status.HTTP_401_UNAUTHORIZED: "UNAUTHORIZED",
    status.HTTP_403_FORBIDDEN: "FORBIDDEN",
    status.HTTP_404_NOT_FOUND: "NOT_FOUND",
    status.HTTP_410_GONE: "GONE",
    status.HTTP_429_TOO_MANY_REQUESTS: "RATE_LIMITED",
}


async def clawkpit_exception_handler(request: Request, exc: ClawkpitException) -> JSONResponse:
    """Handle custom Clawkpit exceptions."""
    headers = None
    if isinstance(exc, RateLimitedError):
        headers = {"Retry-After": str(exc.retry_after)}

    if exc.status_code >= 500:
        logger.error(f"Clawkpit exception: {exc.message}")
    else:
        logger.info(f"{exc.error_kind} on {request.method} {request.url.path}: {exc.message}")

    return JSONResponse(
        status_code=exc.status_code,
        content=format_error_response(exc, exc.code),
        headers=headers,
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Wrap HTTPException (raised by auth dependencies) in the error envelope."""
    code = HTTP_CODES.get(exc.status_code, "ERROR")
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": code, "message": message, "details": {}}},
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle Pydantic validation errors."""
    errors = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error.get("loc", []))
        errors.append({
            "field": field,
            "message": error.get("msg"),
            "type": error.get("type")
        })

    logger.warning(f"Validation error: {errors}")

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": {
                "code": "BAD_REQUEST",
                "message": "Validation failed",
                "details": {"errors": errors},
            }
        },
    )


async def rate_limit_exceeded_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle slowapi's RateLimitExceeded in the error envelope."""
    retry_after = 60
    limit = getattr(exc, "limit", None)
    if limit is not None and getattr(limit, "limit", None) is not None:
        retry_after = limit.limit.get_expiry()
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={
            "error": {
                "code": "RATE_LIMITED",
                "message": f"Rate limit exceeded: {getattr(exc, 'detail', '')}".strip(),
                "details": {},
            }
        },
        headers={"Retry-After": str(retry_after)},
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle generic exceptions."""
    if isinstance(exc, SQLAlchemyTimeoutError):
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "error": {
                    "code": "SERVICE_UNAVAILABLE",
                    "message": "Database is busy (connection pool exhausted). Please retry in a moment.",
                    "details": {},
                }
            },
            headers={"Retry-After": "3"},
        )

    log_error(exc, {"method": request.method, "path": request.url.path})

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "Internal server error",
                "details": {"type": exc.__class__.__name__},
            }
        },
    )
