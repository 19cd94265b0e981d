"""
Tests for stacking several wrappers on one operation.

Wrappers must compose in any order, keep the sync/async contract and
preserve the operation's metadata.
"""

import asyncio
import inspect
import sys

import pytest

import opguard
from opguard import (
    CircuitOpenFailure,
    CircuitState,
    RateLimitFailure,
    TimeoutFailure,
    cached,
    circuit_breaker,
    effect_error,
    fallback,
    rate_limited,
    retry,
    timeout,
)


class TestPublicApi:
    def test_version(self):
        assert opguard.__version__ == "0.1.0"

    def test_wrappers_exported(self):
        for name in (
            "cached",
            "memoize",
            "retry",
            "timeout",
            "circuit_breaker",
            "fallback",
            "rate_limited",
            "debounce_sync",
            "debounce_async",
            "throttle_sync",
            "throttle_async",
            "effect_before",
            "effect_after",
            "effect_error",
            "timed",
            "measure",
            "guard",
            "deprecated",
            "configure_logging",
            "get_settings",
        ):
            assert hasattr(opguard, name), name


class TestSyncComposition:
    def test_retry_inside_fallback(self, monkeypatch):
        monkeypatch.setattr(sys.modules["opguard.execution.retry"].time, "sleep", lambda s: None)
        calls = []

        @fallback(lambda: "stale")
        @retry(max_retries=2, backoff=0.01)
        def fetch():
            calls.append(1)
            raise ConnectionError("down")

        assert fetch() == "stale"
        assert len(calls) == 3

    def test_cache_outside_retry(self, monkeypatch):
        monkeypatch.setattr(sys.modules["opguard.execution.retry"].time, "sleep", lambda s: None)
        calls = []

        @cached()
        @retry(max_retries=3, backoff=0.01)
        def fetch(symbol):
            calls.append(symbol)
            if len(calls) < 2:
                raise ConnectionError("down")
            return symbol.lower()

        assert fetch("AAPL") == "aapl"
        assert fetch("AAPL") == "aapl"
        assert len(calls) == 2

    def test_breaker_counts_each_retry_attempt(self, fake_clock, monkeypatch):
        monkeypatch.setattr(sys.modules["opguard.execution.retry"].time, "sleep", lambda s: None)

        @retry(max_retries=5, backoff=0.0, retry_on=(ConnectionError,))
        @circuit_breaker(failure_threshold=2, reset_timeout=30.0, clock=fake_clock)
        def fetch():
            raise ConnectionError("down")

        with pytest.raises(CircuitOpenFailure):
            fetch()
        assert fetch.breaker_for().state == CircuitState.OPEN

    def test_rate_limit_with_fallback(self, fake_clock):
        @fallback(lambda: "queued")
        @rate_limited(limit=1, window=60.0, clock=fake_clock)
        def send():
            return "sent"

        assert send() == "sent"
        assert send() == "queued"

    def test_metadata_survives_stack(self):
        @fallback(lambda: None)
        @retry(max_retries=1)
        @cached()
        def documented():
            """Original docstring."""

        assert documented.__name__ == "documented"
        assert documented.__doc__ == "Original docstring."


class TestAsyncComposition:
    @pytest.mark.asyncio
    async def test_retry_around_timeout(self):
        calls = []

        @retry(max_retries=2, backoff=0.0)
        @timeout(0.02)
        async def fetch():
            calls.append(1)
            if len(calls) < 3:
                await asyncio.sleep(0.1)
            return "ok"

        assert await fetch() == "ok"
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_timeout_surfaces_after_budget(self):
        @retry(max_retries=1, backoff=0.0)
        @timeout(0.01)
        async def fetch():
            await asyncio.sleep(0.1)

        with pytest.raises(TimeoutFailure):
            await fetch()

    @pytest.mark.asyncio
    async def test_contract_preserved_through_stack(self):
        @effect_error(lambda ctx: None)
        @rate_limited(limit=5, window=1.0)
        @cached()
        async def fetch():
            return 1

        assert inspect.iscoroutinefunction(fetch)
        assert await fetch() == 1

    @pytest.mark.asyncio
    async def test_method_stack_with_shared_state(self, fake_clock):
        class Client:
            def __init__(self):
                self.calls = 0

            @fallback(lambda self: "fallback")
            @rate_limited(limit=1, window=10.0, clock=fake_clock)
            async def fetch(self):
                self.calls += 1
                return "live"

        a, b = Client(), Client()
        assert await a.fetch() == "live"
        assert await b.fetch() == "fallback"
        assert (a.calls, b.calls) == (1, 0)

    @pytest.mark.asyncio
    async def test_rate_limit_failure_not_swallowed(self, fake_clock):
        @rate_limited(limit=1, window=10.0, clock=fake_clock)
        async def fetch():
            return 1

        await fetch()
        with pytest.raises(RateLimitFailure):
            await fetch()
