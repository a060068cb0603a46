"""Quality search that steers an encoder towards a target byte size.

The search is a bounded binary search over the encoder quality axis. It
knows nothing about images or HTTP: callers inject an ``encode(quality)``
callable, which is either an in-process Pillow encoder (the reduce endpoint)
or a round trip to a remote conversion endpoint (``ConversionClient``).

The result is best effort. The loop always terminates after at most
``max_iterations + 1`` encodes, but the returned output is only guaranteed to
be the last attempt, not one inside the tolerance band.
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from app.core.config import SizeSearchSettings
from app.core.errors import SearchCancelledAppError, ValidationAppError
from app.utils.formats import file_extension

logger = logging.getLogger(__name__)

Encoder = Callable[[int | None], bytes]

SIZE_UNITS = {
    "KB": 1024,
    "MB": 1024 * 1024,
}


class SearchOutcome(str, Enum):
    WITHIN_TOLERANCE = "within_tolerance"
    CONVERGED = "converged"
    EXHAUSTED = "exhausted"
    SINGLE_ATTEMPT = "single_attempt"


@dataclass(frozen=True)
class SizeSearchPolicy:
    """Tunable constants of the search.

    The defaults (10% band, 8 iterations, stop below a quality span of 3)
    are the historical values; nothing makes them optimal.
    """

    tolerance_ratio: float = 0.1
    max_iterations: int = 8
    min_quality: int = 1
    max_quality: int = 100
    initial_quality: int = 50
    convergence_span: int = 3

    def __post_init__(self) -> None:
        if not 0 < self.tolerance_ratio < 1:
            raise ValueError("tolerance_ratio must be between 0 and 1")
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be >= 1")
        if not 1 <= self.min_quality <= self.initial_quality <= self.max_quality <= 100:
            raise ValueError("expected 1 <= min_quality <= initial_quality <= max_quality <= 100")
        if self.convergence_span < 1:
            raise ValueError("convergence_span must be >= 1")

    @classmethod
    def from_settings(cls, cfg: SizeSearchSettings) -> "SizeSearchPolicy":
        return cls(
            tolerance_ratio=cfg.tolerance_ratio,
            max_iterations=cfg.max_iterations,
            initial_quality=cfg.initial_quality,
            convergence_span=cfg.convergence_span,
        )

    @property
    def max_attempts(self) -> int:
        return self.max_iterations + 1

    def within_tolerance(self, size: int, target_bytes: int) -> bool:
        ratio = size / target_bytes
        return 1 - self.tolerance_ratio <= ratio <= 1 + self.tolerance_ratio


@dataclass
class SizeSearchState:
    """Mutable bookkeeping for one search; min <= current <= max holds throughout."""

    target_bytes: int
    min_quality: int
    max_quality: int
    current_quality: int
    best_result: bytes | None = None
    iteration: int = 0

    def record(self, data: bytes) -> None:
        self.best_result = data
        self.iteration += 1

    def narrow(self, size: int) -> None:
        """Halve the quality interval on the side the last attempt ruled out."""
        attempted = self.current_quality
        if size > self.target_bytes:
            self.max_quality = attempted
            self.current_quality = (self.min_quality + attempted) // 2
        else:
            self.min_quality = attempted
            self.current_quality = (attempted + self.max_quality) // 2

    def converged(self, span: int) -> bool:
        return self.max_quality - self.min_quality < span


@dataclass(frozen=True)
class SizeSearchResult:
    data: bytes
    quality: int | None
    attempts: int
    target_bytes: int
    outcome: SearchOutcome
    within_tolerance: bool

    @property
    def size(self) -> int:
        return len(self.data)


class CancellationToken:
    """Thread-safe flag an owner sets to abandon a running search."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise SearchCancelledAppError(
                code="size_search_cancelled",
                message="Size reduction was cancelled before it finished.",
            )


def parse_target_size(value: str | float | int | None, unit: str | None = "MB") -> int:
    """Convert a user-entered size and unit ("KB" or "MB", default MB) into bytes.

    Raises:
        ValidationAppError: If the value is not a positive number or the unit
            is unknown.
    """
    try:
        amount = float(value) if value is not None and str(value).strip() else math.nan
    except (TypeError, ValueError):
        amount = math.nan

    if math.isnan(amount) or math.isinf(amount) or amount <= 0:
        raise ValidationAppError(
            code="invalid_target_size",
            message="Please enter a valid target size",
        )

    normalized_unit = (unit or "MB").strip().upper()
    multiplier = SIZE_UNITS.get(normalized_unit)
    if multiplier is None:
        raise ValidationAppError(
            code="invalid_target_unit",
            message="Target size unit must be KB or MB",
            details={"supported": sorted(SIZE_UNITS)},
        )

    target_bytes = int(amount * multiplier)
    if target_bytes < 1:
        raise ValidationAppError(
            code="invalid_target_size",
            message="Please enter a valid target size",
        )
    return target_bytes


def select_output_format(filename: str | None) -> str:
    """PNG and WEBP sources keep their format; everything else becomes JPEG."""
    ext = file_extension(filename)
    if ext in ("png", "webp"):
        return ext
    return "jpg"


def validate_target(target_bytes: int, original_bytes: int) -> None:
    if target_bytes <= 0:
        raise ValidationAppError(
            code="invalid_target_size",
            message="Please enter a valid target size",
            details={"target_bytes": target_bytes},
        )
    if target_bytes >= original_bytes:
        raise ValidationAppError(
            code="target_not_smaller",
            message="Target size must be smaller than original size",
            details={"target_bytes": target_bytes, "original_bytes": original_bytes},
        )


def search_target_size(
    encode: Encoder,
    *,
    target_bytes: int,
    original_bytes: int,
    policy: SizeSearchPolicy | None = None,
    supports_quality: bool = True,
    cancel_token: CancellationToken | None = None,
) -> SizeSearchResult:
    """Find an encoder quality whose output lands near ``target_bytes``.

    Args:
        encode: Callable producing encoded bytes for a quality (``None`` when
            the format has no quality axis). Exceptions abort the search.
        target_bytes: Desired output size; must be below ``original_bytes``.
        original_bytes: Size of the source file.
        policy: Search constants; defaults to ``SizeSearchPolicy()``.
        supports_quality: False degenerates the search to one encode.
        cancel_token: Checked before every encode.

    Returns:
        SizeSearchResult for the accepted attempt.

    Raises:
        ValidationAppError: If the target is not below the original size.
        SearchCancelledAppError: If ``cancel_token`` was cancelled.
    """
    validate_target(target_bytes, original_bytes)
    policy = policy or SizeSearchPolicy()
    attempts = 0

    def attempt(quality: int | None) -> bytes:
        nonlocal attempts
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        data = encode(quality)
        attempts += 1
        logger.debug(
            "size_search.attempt",
            extra={
                "attempt": attempts,
                "quality": quality,
                "size_bytes": len(data),
                "target_bytes": target_bytes,
            },
        )
        return data

    def finish(data: bytes, quality: int | None, outcome: SearchOutcome) -> SizeSearchResult:
        result = SizeSearchResult(
            data=data,
            quality=quality,
            attempts=attempts,
            target_bytes=target_bytes,
            outcome=outcome,
            within_tolerance=policy.within_tolerance(len(data), target_bytes),
        )
        logger.info(
            "size_search.finished",
            extra={
                "outcome": outcome.value,
                "attempts": attempts,
                "quality": quality,
                "size_bytes": result.size,
                "target_bytes": target_bytes,
                "within_tolerance": result.within_tolerance,
            },
        )
        return result

    if not supports_quality:
        return finish(attempt(None), None, SearchOutcome.SINGLE_ATTEMPT)

    state = SizeSearchState(
        target_bytes=target_bytes,
        min_quality=policy.min_quality,
        max_quality=policy.max_quality,
        current_quality=policy.initial_quality,
    )

    for _ in range(policy.max_iterations):
        quality = state.current_quality
        data = attempt(quality)
        state.record(data)

        if policy.within_tolerance(len(data), target_bytes):
            return finish(data, quality, SearchOutcome.WITHIN_TOLERANCE)

        state.narrow(len(data))

        if state.converged(policy.convergence_span):
            return finish(data, quality, SearchOutcome.CONVERGED)

    quality = state.current_quality
    return finish(attempt(quality), quality, SearchOutcome.EXHAUSTED)
