"""Unit tests for in-memory rate limiter adapter."""

import threading
from unittest.mock import Mock

import pytest

from app.adapters.rate_limit.in_memory import InMemoryFixedWindowRateLimiter


def test_first_request_opens_window() -> None:
    clock = Mock(return_value=1000.0)
    limiter = InMemoryFixedWindowRateLimiter(max_requests=10, window_ms=60000, clock=clock)

    result = limiter.consume("1.2.3.4")

    assert result.allowed is True
    assert result.limit == 10
    assert result.remaining == 9
    assert result.reset_at == 1_060_000
    assert result.retry_after_seconds is None


def test_allows_up_to_limit_in_same_window() -> None:
    clock = Mock(return_value=1000.0)
    limiter = InMemoryFixedWindowRateLimiter(max_requests=3, window_ms=60000, clock=clock)

    assert limiter.consume("k").remaining == 2
    assert limiter.consume("k").remaining == 1
    result = limiter.consume("k")
    assert result.allowed is True
    assert result.remaining == 0


def test_default_budget_counts_down_then_denies_eleventh() -> None:
    clock = Mock(return_value=1000.0)
    limiter = InMemoryFixedWindowRateLimiter(clock=clock)

    remaining = [limiter.consume("1.2.3.4").remaining for _ in range(10)]
    denied = limiter.consume("1.2.3.4")

    assert remaining == [9, 8, 7, 6, 5, 4, 3, 2, 1, 0]
    assert denied.allowed is False
    assert denied.remaining == 0
    assert denied.reset_at == 1_060_000


def test_empty_limiter_is_falsy_but_still_a_limiter() -> None:
    limiter = InMemoryFixedWindowRateLimiter()

    assert len(limiter) == 0
    assert not limiter
    assert limiter is not None


def test_blocks_when_over_limit() -> None:
    clock = Mock(return_value=1000.0)
    limiter = InMemoryFixedWindowRateLimiter(max_requests=2, window_ms=60000, clock=clock)

    assert limiter.consume("k").allowed is True
    assert limiter.consume("k").allowed is True

    clock.return_value = 1030.5
    blocked = limiter.consume("k")
    assert blocked.allowed is False
    assert blocked.remaining == 0
    assert blocked.reset_at == 1_060_000
    # ceil(29.5)
    assert blocked.retry_after_seconds == 30


def test_rejected_requests_do_not_extend_window() -> None:
    clock = Mock(return_value=1000.0)
    limiter = InMemoryFixedWindowRateLimiter(max_requests=1, window_ms=10000, clock=clock)

    limiter.consume("k")
    for _ in range(5):
        assert limiter.consume("k").allowed is False

    entry = limiter.get_entry("k")
    assert entry is not None
    assert entry.count == 1
    assert entry.reset_at == 1_010_000


def test_window_boundary_is_exclusive() -> None:
    clock = Mock(return_value=1000.0)
    limiter = InMemoryFixedWindowRateLimiter(max_requests=1, window_ms=10000, clock=clock)

    assert limiter.consume("k").allowed is True

    # now == reset_at still belongs to the old window
    clock.return_value = 1010.0
    assert limiter.consume("k").allowed is False

    clock.return_value = 1010.5
    fresh = limiter.consume("k")
    assert fresh.allowed is True
    assert fresh.remaining == 0
    assert fresh.reset_at == 1_020_500


def test_window_is_anchored_at_first_request() -> None:
    clock = Mock(return_value=1000.0)
    limiter = InMemoryFixedWindowRateLimiter(max_requests=10, window_ms=60000, clock=clock)

    limiter.consume("k")
    clock.return_value = 1059.0
    assert limiter.consume("k").reset_at == 1_060_000

    clock.return_value = 1061.0
    assert limiter.consume("k").reset_at == 1_121_000


def test_isolated_by_key() -> None:
    clock = Mock(return_value=1000.0)
    limiter = InMemoryFixedWindowRateLimiter(max_requests=1, window_ms=60000, clock=clock)

    assert limiter.consume("k1").allowed is True
    assert limiter.consume("k1").allowed is False

    assert limiter.consume("k2").allowed is True


def test_sweep_removes_only_expired_entries() -> None:
    clock = Mock(return_value=1000.0)
    limiter = InMemoryFixedWindowRateLimiter(max_requests=5, window_ms=10000, clock=clock)

    limiter.consume("old")
    clock.return_value = 1008.0
    limiter.consume("new")

    clock.return_value = 1011.0
    assert limiter.sweep() == 1
    assert limiter.get_entry("old") is None
    assert limiter.get_entry("new") is not None
    assert len(limiter) == 1


def test_sweep_does_not_change_decisions() -> None:
    clock = Mock(return_value=1000.0)
    limiter = InMemoryFixedWindowRateLimiter(max_requests=1, window_ms=10000, clock=clock)

    limiter.consume("k")
    clock.return_value = 1020.0
    limiter.sweep()

    result = limiter.consume("k")
    assert result.allowed is True
    assert result.remaining == 0


def test_concurrent_consumers_never_exceed_limit() -> None:
    limiter = InMemoryFixedWindowRateLimiter(max_requests=50, window_ms=60000)
    allowed: list[bool] = []
    lock = threading.Lock()

    def worker() -> None:
        for _ in range(20):
            result = limiter.consume("shared")
            with lock:
                allowed.append(result.allowed)

    threads = [threading.Thread(target=worker) for _ in range(10)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sum(allowed) == 50
    assert len(allowed) == 200


def test_clear_drops_state() -> None:
    limiter = InMemoryFixedWindowRateLimiter(max_requests=1, window_ms=60000)
    limiter.consume("k")

    limiter.clear()

    assert len(limiter) == 0
    assert limiter.consume("k").allowed is True


@pytest.mark.parametrize(
    "kwargs",
    [
        {"max_requests": 0, "window_ms": 60000},
        {"max_requests": 1, "window_ms": 0},
    ],
)
def test_invalid_constructor_args(kwargs: dict) -> None:
    with pytest.raises(ValueError):
        InMemoryFixedWindowRateLimiter(**kwargs)


def test_invalid_consume_args() -> None:
    limiter = InMemoryFixedWindowRateLimiter(max_requests=1, window_ms=60000)

    with pytest.raises(ValueError):
        limiter.consume("")
