"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional to keep response shapes small; handlers serialize
    whatever subset a raiser provides.
    """

    code: str
    message: str
    hint: str
    max_bytes: int
    actual_bytes: int
    target_bytes: int
    original_bytes: int
    format: str
    from_format: str
    to_format: str
    supported: list[str]
    limit: int
    remaining: int
    reset_at: int
    retry_after: int
    timeout_seconds: float
    attempts: int
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
    """Raised when input/config validation fails."""


class RateLimitAppError(AppError):
    """Raised when a client exhausted its request budget for the window."""


class ConversionAppError(AppError):
    """Raised when a format library fails to decode or encode the input."""


class SearchCancelledAppError(AppError):
    """Raised when a target-size search is abandoned before completion."""
