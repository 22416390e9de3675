"""Tests for the exponential backoff helper."""

import asyncio

import pytest

from app.services.base import UpstreamUnavailableError, ValidationError
from app.services.retry import RetryPolicy, retry_async


def _is_unavailable(e: Exception) -> bool:
    return isinstance(e, UpstreamUnavailableError)


def test_delays_double_and_cap():
    policy = RetryPolicy(attempts=6, base_delay=0.5, max_delay=3.0)

    assert [policy.delay_for(n) for n in range(5)] == [0.5, 1.0, 2.0, 3.0, 3.0]


async def test_gives_up_after_attempt_budget(sleeps):
    calls = 0

    async def always_down():
        nonlocal calls
        calls += 1
        raise UpstreamUnavailableError("NSEClient", "HTTP 503")

    with pytest.raises(UpstreamUnavailableError):
        await retry_async(always_down, policy=RetryPolicy(), retry_on=_is_unavailable, sleep=sleeps)

    assert calls == 3
    assert sleeps.delays == [0.5, 1.0]


async def test_returns_first_success(sleeps):
    outcomes = [UpstreamUnavailableError("NSEClient", "HTTP 502"), "ok"]

    async def flaky():
        outcome = outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    result = await retry_async(flaky, policy=RetryPolicy(), retry_on=_is_unavailable, sleep=sleeps)

    assert result == "ok"
    assert sleeps.delays == [0.5]


async def test_non_retryable_errors_propagate_immediately(sleeps):
    calls = 0

    async def invalid():
        nonlocal calls
        calls += 1
        raise ValidationError("NSEClient", "Symbol cannot be empty")

    with pytest.raises(ValidationError):
        await retry_async(invalid, policy=RetryPolicy(), retry_on=_is_unavailable, sleep=sleeps)

    assert calls == 1
    assert sleeps.delays == []


async def test_cancellation_is_not_retried(sleeps):
    calls = 0

    async def cancelled():
        nonlocal calls
        calls += 1
        raise asyncio.CancelledError()

    with pytest.raises(asyncio.CancelledError):
        await retry_async(cancelled, policy=RetryPolicy(), retry_on=lambda e: True, sleep=sleeps)

    assert calls == 1
