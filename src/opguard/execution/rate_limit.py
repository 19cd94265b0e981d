"""Rate Limiting - sliding-window admission control for operations.

Caps how many times an operation may start within a rolling window. A call
beyond the cap is rejected immediately with ``RateLimitFailure``; the
operation is not invoked and no timestamp is recorded for it.

ARCHITECTURE
────────────
::

    @rate_limited(limit=5, window=60.0)
      │
      ▼
    SlidingWindowLimiter          ─ key → deque[timestamp], Lock
      ├── acquire(key) -> float   ─ 0.0 admitted, else seconds to wait
      └── current_count(key)

    Default key: "{scope}:{name}" (receiver's class for methods)

Related modules:
    circuit_breaker.py - fail-fast on sustained failures
    retry.py           - backoff on transient failures

Example::

    class Edgar:
        @rate_limited(limit=10, window=1.0)
        def fetch(self, cik):
            return http_get(url_for(cik))

Tags:
    opguard, execution, rate-limit, sliding-window
"""

from __future__ import annotations

import functools
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, ParamSpec, TypeVar

from opguard.core.errors import RateLimitFailure
from opguard.core.logging import get_logger
from opguard.execution.operation import (
    OperationIdentity,
    ScopedState,
    StateScope,
    describe_operation,
    is_async_operation,
    resolve_scope,
)

T = TypeVar("T")
P = ParamSpec("P")

logger = get_logger(__name__)

KeyFunction = Callable[..., str]


@dataclass
class SlidingWindowLimiter:
    """Sliding window rate limiter with per-key windows.

    Counts admitted calls in a rolling window per key. Timestamps at or
    before ``now - window_seconds`` fall out of the window.

    Attributes:
        max_requests: Maximum admitted calls per window
        window_seconds: Window size in seconds
        clock: Monotonic clock, injectable for tests
    """

    max_requests: int
    window_seconds: float
    clock: Callable[[], float] = time.monotonic

    _windows: dict[str, deque[float]] = field(default_factory=dict, init=False)
    _last_sweep: float | None = field(default=None, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.max_requests < 1:
            raise ValueError(f"limit must be >= 1, got {self.max_requests}")
        if self.window_seconds <= 0:
            raise ValueError(f"window must be positive, got {self.window_seconds}")

    def _cleanup(self, key: str, now: float) -> deque[float]:
        """Remove timestamps outside the window for key.

        A key left with no timestamps is dropped from the map; the returned
        deque is then detached and empty.
        """
        timestamps = self._windows.get(key)
        if timestamps is None:
            return deque()
        cutoff = now - self.window_seconds
        while timestamps and timestamps[0] <= cutoff:
            timestamps.popleft()
        if not timestamps:
            del self._windows[key]
        return timestamps

    def _sweep(self, now: float) -> None:
        """Drop keys whose newest call has left the window, at most once per window."""
        if self._last_sweep is not None and now - self._last_sweep < self.window_seconds:
            return
        self._last_sweep = now
        cutoff = now - self.window_seconds
        for stale in [k for k, ts in self._windows.items() if ts[-1] <= cutoff]:
            del self._windows[stale]

    def acquire(self, key: str) -> float:
        """Record a call for key if the window has room.

        Returns:
            0.0 when admitted, otherwise seconds until the oldest recorded
            call leaves the window
        """
        with self._lock:
            now = self.clock()
            self._sweep(now)
            timestamps = self._cleanup(key, now)
            if len(timestamps) >= self.max_requests:
                return max(0.0, timestamps[0] + self.window_seconds - now)
            self._windows.setdefault(key, timestamps).append(now)
            return 0.0

    def tracked_keys(self) -> int:
        """Number of keys currently holding timestamps."""
        with self._lock:
            return len(self._windows)

    def current_count(self, key: str) -> int:
        """Get current call count in the window for key."""
        with self._lock:
            return len(self._cleanup(key, self.clock()))

    def reset(self, key: str | None = None) -> None:
        """Forget recorded calls for key, or for every key."""
        with self._lock:
            if key is None:
                self._windows.clear()
            else:
                self._windows.pop(key, None)


def _limit_key(
    identity: OperationIdentity,
    args: tuple[Any, ...],
    kwargs: dict[str, Any],
    key: str | KeyFunction | None,
) -> str:
    if callable(key):
        return key(*identity.call_args(args), **kwargs)
    if key is not None:
        return key
    return f"{identity.scope_for(args)}:{identity.name}"


def rate_limited(
    limit: int,
    window: float,
    key: str | KeyFunction | None = None,
    scope: StateScope | str | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """Decorator factory admitting at most ``limit`` calls per ``window`` seconds.

    Args:
        limit: Maximum calls per window
        window: Window size in seconds
        key: Window key (string, or function of the call arguments)
        scope: One limiter per definition (default) or per instance
        clock: Monotonic clock, injectable for tests

    Raises:
        RateLimitFailure: When the window for the key is full
    """
    resolved_scope = resolve_scope(scope)

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        identity = describe_operation(func)
        limiters = ScopedState(
            lambda: SlidingWindowLimiter(max_requests=limit, window_seconds=window, clock=clock),
            resolved_scope,
        )

        def admit(args: tuple[Any, ...], kwargs: dict[str, Any]) -> None:
            limiter = limiters.resolve(identity, args)
            limit_key = _limit_key(identity, args, kwargs, key)
            wait = limiter.acquire(limit_key)
            if wait > 0:
                logger.debug(
                    "rate_limit_rejected",
                    operation=identity.qualified_name,
                    key=limit_key,
                    retry_after=wait,
                )
                raise RateLimitFailure(retry_after=wait, operation=identity.name)

        def limiter_for(receiver: Any = None) -> SlidingWindowLimiter:
            args = (receiver,) if receiver is not None else ()
            return limiters.resolve(identity, args)

        if is_async_operation(func):
            @functools.wraps(func)
            async def async_wrapper(*args: P.args, **kwargs: P.kwargs) -> Any:
                admit(args, kwargs)
                return await func(*args, **kwargs)

            async_wrapper.limiter_for = limiter_for  # type: ignore[attr-defined]
            return async_wrapper  # type: ignore[return-value]

        @functools.wraps(func)
        def sync_wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            admit(args, kwargs)
            return func(*args, **kwargs)

        sync_wrapper.limiter_for = limiter_for  # type: ignore[attr-defined]
        return sync_wrapper

    return decorator


__all__ = ["SlidingWindowLimiter", "rate_limited"]
