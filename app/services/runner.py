"""Run blocking conversion work in the thread pool under a timeout."""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Callable, TypeVar

from app.core.config import settings
from app.core.errors import ConversionAppError
from app.services.size_search import CancellationToken

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_blocking(
    func: Callable[..., T],
    *args,
    operation: str,
    timeout_seconds: float | None = None,
    cancel_token: CancellationToken | None = None,
) -> T:
    """Execute ``func(*args)`` in the default executor.

    The worker thread cannot be interrupted, so on timeout the optional
    ``cancel_token`` is tripped to stop multi-step work (the size search)
    at its next checkpoint.

    Raises:
        ConversionAppError: If the work exceeds the timeout.
    """
    loop = asyncio.get_running_loop()
    timeout = timeout_seconds or settings.app.conversion_timeout_seconds

    try:
        return await asyncio.wait_for(
            loop.run_in_executor(None, functools.partial(func, *args)),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        if cancel_token is not None:
            cancel_token.cancel()
        logger.warning(
            "convert.timeout",
            extra={"operation": operation, "timeout_seconds": timeout},
        )
        raise ConversionAppError(
            code="conversion_timeout",
            message=(
                f"Conversion took too long (timeout: {timeout:g}s). "
                "The file may be corrupted or too complex."
            ),
            details={"timeout_seconds": timeout},
        ) from None
