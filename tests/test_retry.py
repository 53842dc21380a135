"""Tests for the async backoff helper."""

import pytest

from backed.core.retry import call_with_backoff


class Flaky:
    def __init__(self, failures: int, error: Exception):
        self.failures = failures
        self.error = error
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


@pytest.mark.asyncio
async def test_succeeds_after_transient_failures():
    call = Flaky(2, ConnectionError("reset"))

    assert await call_with_backoff(call, max_retries=2, base_delay=0) == "ok"
    assert call.calls == 3


@pytest.mark.asyncio
async def test_reraises_after_retries_exhausted():
    call = Flaky(5, ConnectionError("reset"))

    with pytest.raises(ConnectionError):
        await call_with_backoff(call, max_retries=2, base_delay=0)
    assert call.calls == 3


@pytest.mark.asyncio
async def test_non_retryable_error_raises_immediately():
    call = Flaky(5, PermissionError("denied"))

    with pytest.raises(PermissionError):
        await call_with_backoff(
            call,
            max_retries=3,
            base_delay=0,
            should_retry=lambda exc: not isinstance(exc, PermissionError),
        )
    assert call.calls == 1


@pytest.mark.asyncio
async def test_zero_retries_runs_once():
    call = Flaky(1, ConnectionError("reset"))

    with pytest.raises(ConnectionError):
        await call_with_backoff(call, max_retries=0, base_delay=0)
    assert call.calls == 1
