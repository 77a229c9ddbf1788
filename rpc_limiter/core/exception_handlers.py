"""Global exception handlers for consistent error responses.

Design:
- RateLimitExceededError -> configured status (429 by default), body in the
  shape of the rendered message (plain text or JSON), Retry-After and
  X-RateLimit-* headers when enabled
- ConfigurationAppError -> 500 (server misconfiguration)
- Other AppError subclasses -> 400
- Unexpected Exception (including store failures) -> generic 500
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from rpc_limiter.core.config import settings
from rpc_limiter.core.errors import AppError, ConfigurationAppError, RateLimitExceededError
from rpc_limiter.core.logging import get_request_id

logger = logging.getLogger(__name__)


def _rate_limit_headers(exc: RateLimitExceededError) -> dict[str, str]:
    if not settings.app.rate_limit_include_headers:
        return {}

    headers: dict[str, str] = {}
    if exc.retry_after is not None:
        headers["Retry-After"] = str(exc.retry_after)
    if exc.limit is not None:
        headers["X-RateLimit-Limit"] = str(exc.limit)
        headers["X-RateLimit-Remaining"] = str(max(0, exc.limit - (exc.total_hits or 0)))
    if exc.reset_time is not None:
        headers["X-RateLimit-Reset"] = str(int(exc.reset_time))
    return headers


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceededError) -> Response:
    """Render a rejection the way the limiter's message was configured."""

    headers = _rate_limit_headers(exc)
    if isinstance(exc.payload, dict):
        return JSONResponse(status_code=exc.status_code, content=exc.payload, headers=headers)
    return PlainTextResponse(exc.payload or exc.message, status_code=exc.status_code, headers=headers)


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle domain application errors with consistent JSON format.

    Args:
        request: FastAPI request object.
        exc: AppError instance (or subclass).

    Returns:
        JSONResponse with the error code, message, request_id and details.
    """
    status_code = 500 if isinstance(exc, ConfigurationAppError) else 400

    log = logger.error if status_code >= 500 else logger.warning
    log(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "has_details": bool(exc.details),
        },
    )

    error_content = {
        "code": exc.code,
        "message": exc.message,
        "request_id": get_request_id(),
    }
    if exc.details:
        error_content["details"] = exc.details

    return JSONResponse(status_code=status_code, content={"error": error_content})


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors.

    Store failures end up here, so the limiter fails closed: the request is
    answered with 500 instead of being let through uncounted.
    """
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
        },
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "internal_server_error",
                "message": "An unexpected error occurred. Please try again later.",
                "request_id": get_request_id(),
            }
        },
    )


def setup_exception_handlers(app) -> None:
    """Register all exception handlers with the FastAPI app.

    Specific handlers are registered before the general fallback.
    """
    app.exception_handler(RateLimitExceededError)(rate_limit_exceeded_handler)
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
