"""Application-level exception types.

Configuration problems, invalid settings and rate limit rejections share one
dataclass-based hierarchy so handlers and logs can treat them uniformly.
Failures raised by a store backend are deliberately not part of it: they
propagate unchanged to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients."""

    code: str
    message: str
    hint: str
    path: str
    retry_after: int
    limit: int
    total_hits: int
    http_status: int
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when a setting holds an unsupported value."""


class ConfigurationAppError(AppError):
    """Raised when the limiter or its store is misconfigured.

    Always raised before any hit is counted for the offending request.
    """


@dataclass
class RateLimitExceededError(AppError):
    """Raised when a client exceeded the limit for the current window.

    This is expected control flow, not a bug. ``payload`` is the rendered
    rejection message (plain text or a structured mapping); ``message`` is
    always its string form.
    """

    payload: str | dict[str, Any] = ""
    retry_after: int | None = None
    status_code: int = 429
    limit: int | None = None
    total_hits: int | None = None
    reset_time: float | None = None
    path: str | None = field(default=None, repr=False)
