"""
Tests for the retry engine.

Covers attempt budget, constant and exponential backoff, on_retry
callback, retry_on filtering, settings defaults and async behavior.
"""

import asyncio
import sys
import time

import pytest
from structlog.testing import capture_logs

from opguard.execution.retry import BackoffStrategy, RetryPolicy, retry


@pytest.fixture
def sleeps(monkeypatch):
    """Record sync retry waits instead of sleeping."""
    recorded = []
    monkeypatch.setattr(sys.modules["opguard.execution.retry"].time, "sleep", recorded.append)
    return recorded


class TestRetryPolicy:
    """Test RetryPolicy delay and budget."""

    def test_constant_delay(self):
        policy = RetryPolicy(max_retries=3, strategy=BackoffStrategy.NORMAL, backoff=0.5)
        assert [policy.delay_for(n) for n in (1, 2, 3)] == [0.5, 0.5, 0.5]

    def test_exponential_delay(self):
        policy = RetryPolicy(max_retries=4, strategy=BackoffStrategy.EXPONENTIAL, backoff=0.1)
        assert [policy.delay_for(n) for n in (1, 2, 3, 4)] == pytest.approx([0.1, 0.2, 0.4, 0.8])

    def test_should_retry_within_budget(self):
        policy = RetryPolicy(max_retries=2)
        assert policy.should_retry(1, ValueError())
        assert policy.should_retry(2, ValueError())
        assert not policy.should_retry(3, ValueError())

    def test_should_retry_filters_types(self):
        policy = RetryPolicy(max_retries=2, retry_on=(ConnectionError,))
        assert policy.should_retry(1, ConnectionError())
        assert not policy.should_retry(1, ValueError())

    def test_negative_max_retries_rejected(self):
        with pytest.raises(ValueError, match="max_retries"):
            RetryPolicy(max_retries=-1)

    def test_negative_backoff_rejected(self):
        with pytest.raises(ValueError, match="backoff"):
            RetryPolicy(max_retries=1, backoff=-0.1)


class TestRetrySync:
    """Test @retry on plain functions."""

    def test_success_first_try(self, sleeps):
        calls = []

        @retry(max_retries=3, backoff=0.1)
        def ok():
            calls.append(1)
            return "done"

        assert ok() == "done"
        assert len(calls) == 1
        assert sleeps == []

    def test_succeeds_after_failures(self, sleeps):
        calls = []

        @retry(max_retries=3, backoff=0.1)
        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise ConnectionError("down")
            return "up"

        assert flaky() == "up"
        assert len(calls) == 3
        assert sleeps == [0.1, 0.1]

    def test_budget_exhausted_raises_same_error(self, sleeps):
        calls = []
        errors = []

        @retry(max_retries=3, backoff=0.1)
        def always_fails():
            calls.append(1)
            error = RuntimeError(f"attempt {len(calls)}")
            errors.append(error)
            raise error

        with pytest.raises(RuntimeError) as exc_info:
            always_fails()

        assert len(calls) == 4
        assert exc_info.value is errors[-1]

    def test_zero_retries_runs_once(self, sleeps):
        calls = []

        @retry(max_retries=0)
        def fails():
            calls.append(1)
            raise ValueError("x")

        with pytest.raises(ValueError):
            fails()
        assert len(calls) == 1
        assert sleeps == []

    def test_exponential_waits(self, sleeps):
        @retry(max_retries=3, strategy="exponential", backoff=0.5)
        def fails():
            raise OSError("x")

        with pytest.raises(OSError):
            fails()
        assert sleeps == [0.5, 1.0, 2.0]

    def test_on_retry_receives_error_and_attempt(self, sleeps):
        seen = []

        @retry(max_retries=2, backoff=0.0, on_retry=lambda e, n: seen.append((str(e), n)))
        def fails():
            raise ValueError("bad")

        with pytest.raises(ValueError):
            fails()
        assert seen == [("bad", 1), ("bad", 2)]

    def test_retry_on_filters(self, sleeps):
        calls = []

        @retry(max_retries=5, backoff=0.0, retry_on=(ConnectionError,))
        def fails():
            calls.append(1)
            raise KeyError("not transient")

        with pytest.raises(KeyError):
            fails()
        assert len(calls) == 1

    def test_defaults_from_settings(self, sleeps, monkeypatch):
        monkeypatch.setenv("OPGUARD_RETRY_BACKOFF", "0.25")
        monkeypatch.setenv("OPGUARD_RETRY_STRATEGY", "exponential")

        @retry(max_retries=2)
        def fails():
            raise OSError("x")

        with pytest.raises(OSError):
            fails()
        assert sleeps == [0.25, 0.5]

    def test_default_backoff_is_one_second(self, sleeps):
        @retry(max_retries=1)
        def fails():
            raise OSError("x")

        with pytest.raises(OSError):
            fails()
        assert sleeps == [1.0]

    def test_exhaustion_logged(self, sleeps):
        @retry(max_retries=1, backoff=0.0)
        def fails():
            raise OSError("x")

        with capture_logs() as logs:
            with pytest.raises(OSError):
                fails()

        events = [entry["event"] for entry in logs]
        assert events == ["retry_scheduled", "retry_exhausted"]
        assert logs[-1]["attempts"] == 2
        assert logs[-1]["log_level"] == "warning"


class TestRetryAsync:
    """Test @retry on coroutine functions."""

    @pytest.mark.asyncio
    async def test_succeeds_after_failures(self):
        calls = []

        @retry(max_retries=3, backoff=0.01)
        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise ConnectionError("down")
            return "up"

        assert await flaky() == "up"
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_budget_exhausted_raises_same_error(self):
        errors = []

        @retry(max_retries=2, backoff=0.0)
        async def fails():
            error = ValueError(len(errors))
            errors.append(error)
            raise error

        with pytest.raises(ValueError) as exc_info:
            await fails()
        assert len(errors) == 3
        assert exc_info.value is errors[-1]

    @pytest.mark.asyncio
    async def test_waits_without_blocking_loop(self):
        ticks = []

        async def ticker():
            for _ in range(5):
                ticks.append(time.monotonic())
                await asyncio.sleep(0.01)

        attempts = []

        @retry(max_retries=1, backoff=0.05)
        async def fails_once():
            attempts.append(1)
            if len(attempts) == 1:
                raise OSError("x")
            finished.append(time.monotonic())
            return "ok"

        finished = []
        result, _ = await asyncio.gather(fails_once(), ticker())
        assert result == "ok"
        assert len([t for t in ticks if t < finished[0]]) >= 3

    @pytest.mark.asyncio
    async def test_exponential_timing(self):
        @retry(max_retries=2, strategy="exponential", backoff=0.02)
        async def fails():
            raise OSError("x")

        start = time.monotonic()
        with pytest.raises(OSError):
            await fails()
        assert time.monotonic() - start >= 0.06 - 0.005
