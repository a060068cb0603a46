"""Tests for the background rate limit sweeper."""

import asyncio
from unittest.mock import Mock

import pytest

from app.adapters.rate_limit import InMemoryFixedWindowRateLimiter, RateLimitSweeper


@pytest.mark.asyncio
async def test_sweeper_removes_expired_entries_periodically():
    clock = Mock(return_value=1000.0)
    limiter = InMemoryFixedWindowRateLimiter(max_requests=5, window_ms=1000, clock=clock)
    limiter.consume("a")
    limiter.consume("b")
    clock.return_value = 1002.0

    sweeper = RateLimitSweeper(limiter, interval_seconds=0.01)
    await sweeper.start()
    try:
        for _ in range(100):
            if len(limiter) == 0:
                break
            await asyncio.sleep(0.01)
    finally:
        await sweeper.stop()

    assert len(limiter) == 0
    assert sweeper.running is False


@pytest.mark.asyncio
async def test_start_is_idempotent():
    limiter = InMemoryFixedWindowRateLimiter()
    sweeper = RateLimitSweeper(limiter, interval_seconds=10)

    await sweeper.start()
    await sweeper.start()
    assert sweeper.running is True

    await sweeper.stop()
    assert sweeper.running is False


@pytest.mark.asyncio
async def test_stop_without_start_is_noop():
    sweeper = RateLimitSweeper(InMemoryFixedWindowRateLimiter(), interval_seconds=1)
    await sweeper.stop()
    assert sweeper.running is False


def test_sweep_failures_are_logged_not_raised(caplog: pytest.LogCaptureFixture):
    limiter = Mock()
    limiter.sweep.side_effect = RuntimeError("boom")
    sweeper = RateLimitSweeper(limiter, interval_seconds=1)

    with caplog.at_level("ERROR"):
        assert sweeper.sweep_once() == 0

    assert any(r.getMessage() == "rate_limit.sweep_failed" for r in caplog.records)


def test_rejects_non_positive_interval():
    with pytest.raises(ValueError):
        RateLimitSweeper(InMemoryFixedWindowRateLimiter(), interval_seconds=0)
