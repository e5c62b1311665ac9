"""
Tests for the retry policy.
"""

import asyncio

import pytest

from adb_butler.core.errors import ActionFailed, DeviceNotFound, TransientError
from adb_butler.reconcile.retry import RetryPolicy

from fakes import FakeSleep


class Flaky:
    """Fails a fixed number of times, then returns a value."""

    def __init__(self, failures: int, error=TransientError):
        self.failures = failures
        self.error = error
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error(f"failure {self.calls}")
        return "ok"


class TestRetryPolicy:
    """Test bounded exponential backoff."""

    def test_delays_grow_and_are_capped(self):
        policy = RetryPolicy(base_delay=1.0, multiplier=2.0, max_delay=5.0)
        assert [policy.delay_for(n) for n in range(1, 5)] == [1.0, 2.0, 4.0, 5.0]

    def test_succeeds_without_retry(self):
        sleep = FakeSleep()
        func = Flaky(0)
        result = asyncio.run(RetryPolicy(sleep=sleep).run(func))
        assert result == "ok"
        assert func.calls == 1
        assert sleep.delays == []

    def test_retries_transient_failures(self):
        sleep = FakeSleep()
        func = Flaky(2)
        result = asyncio.run(RetryPolicy(max_attempts=3, sleep=sleep).run(func))
        assert result == "ok"
        assert func.calls == 3
        assert sleep.delays == [1.0, 2.0]

    def test_exhaustion_raises_action_failed(self):
        sleep = FakeSleep()
        func = Flaky(5)
        with pytest.raises(ActionFailed) as exc_info:
            asyncio.run(RetryPolicy(max_attempts=3, sleep=sleep).run(func, description="adb devices"))
        assert func.calls == 3
        assert sleep.delays == [1.0, 2.0]
        assert "adb devices" in exc_info.value.reason
        assert isinstance(exc_info.value.__cause__, TransientError)

    def test_non_retryable_errors_propagate(self):
        sleep = FakeSleep()
        func = Flaky(1, error=DeviceNotFound)
        with pytest.raises(DeviceNotFound):
            asyncio.run(RetryPolicy(sleep=sleep).run(func))
        assert func.calls == 1
        assert sleep.delays == []

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)
