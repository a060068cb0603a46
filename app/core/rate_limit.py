"""Rate limiting dependency for FastAPI routes.

This module wires the rate limiting adapter into the HTTP layer.

Design goals:
- Minimal coupling: API routes depend on a dependency function only.
- Swap-friendly: storage backend can be replaced (e.g., Redis) behind an
  abstract interface.
- Injectable: the limiter lives on ``app.state`` so each app instance (and
  each test) owns its own table.

Client identification:
- First address of X-Forwarded-For, else X-Real-IP, else "unknown".
- Every client arriving without forwarding headers shares the "unknown"
  bucket. This is a known weakness of header-based identification.
"""

from __future__ import annotations

import hashlib
import logging

from fastapi import Request

from app.adapters.rate_limit.base import AbstractRateLimiter, RateLimitResult
from app.adapters.rate_limit.in_memory import InMemoryFixedWindowRateLimiter
from app.core.config import RateLimitSettings, settings
from app.core.errors import RateLimitAppError

logger = logging.getLogger(__name__)

UNKNOWN_CLIENT = "unknown"


def build_rate_limiter(cfg: RateLimitSettings | None = None) -> AbstractRateLimiter:
    """Construct the limiter configured by ``cfg`` (defaults to global settings)."""

    cfg = cfg or settings.rate_limit
    return InMemoryFixedWindowRateLimiter(
        max_requests=cfg.max_requests,
        window_ms=cfg.window_ms,
    )


def get_rate_limiter(request: Request) -> AbstractRateLimiter:
    """Return the limiter owned by the running application.

    Falls back to a lazily attached instance when the app was built without
    the factory (e.g., a bare FastAPI app in tests).
    """

    limiter = getattr(request.app.state, "rate_limiter", None)
    if limiter is None:
        limiter = build_rate_limiter()
        request.app.state.rate_limiter = limiter
    return limiter


def get_client_key(request: Request) -> str:
    """Derive the rate limit key from proxy headers.

    Args:
        request: FastAPI request.

    Returns:
        str: Client address, or "unknown" when no header identifies it.
    """

    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    real_ip = request.headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()

    return UNKNOWN_CLIENT


def _hash_limiter_key(key: str) -> str:
    """Hash the rate limit key for logging without exposing client addresses."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]


def rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    """Headers advertising the caller's remaining budget."""

    return {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(result.reset_at),
    }


async def enforce_rate_limit(request: Request) -> RateLimitResult | None:
    """FastAPI dependency enforcing rate limits.

    Consumes one unit from the requester's budget. Routes receive the result
    so they can advertise the remaining budget on successful responses.

    Args:
        request: FastAPI request.

    Returns:
        The limiter decision, or None when rate limiting is disabled.

    Raises:
        RateLimitAppError: When the client exhausted its window budget.
    """

    if not settings.rate_limit.enabled:
        return None

    limiter = get_rate_limiter(request)
    key = get_client_key(request)
    key_hash = _hash_limiter_key(key)

    result = limiter.consume(key)
    if result.allowed:
        logger.info(
            "rate_limit.allowed",
            extra={
                "key_hash": key_hash,
                "unknown_client": key == UNKNOWN_CLIENT,
                "limit": result.limit,
                "remaining": result.remaining,
            },
        )
        return result

    retry_after = result.retry_after_seconds or 0
    logger.warning(
        "rate_limit.exceeded",
        extra={
            "key_hash": key_hash,
            "unknown_client": key == UNKNOWN_CLIENT,
            "limit": result.limit,
            "remaining": result.remaining,
            "reset_at": result.reset_at,
            "retry_after_s": retry_after,
        },
    )

    raise RateLimitAppError(
        code="rate_limit_exceeded",
        message="Rate limit exceeded. Please try again later.",
        details={
            "limit": result.limit,
            "remaining": result.remaining,
            "reset_at": result.reset_at,
            "retry_after": retry_after,
        },
    )
