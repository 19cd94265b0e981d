"""Circuit breaker pattern for fault tolerance.

Stops invoking a chronically failing operation until a cool-down elapses.

States:
    CLOSED: Normal operation, calls pass through and failures are counted
    OPEN: Failing fast, calls rejected without invoking the operation
    HALF_OPEN: Exactly one trial call admitted to test recovery

Transitions:
    ::

        CLOSED ──(failures reach failure_threshold)──▶ OPEN
        OPEN ──(reset_timeout elapsed, next call)────▶ HALF_OPEN
        HALF_OPEN ──(trial succeeds)─────────────────▶ CLOSED  (failures = 0)
        HALF_OPEN ──(trial fails)────────────────────▶ OPEN    (timer restarts)

    ``on_state_change(new_state)`` fires once per actual transition.
    Successes in CLOSED do not reset the failure count.

State ownership:
    Each decoration owns an explicit ``CircuitBreaker`` object. By default
    (``StateScope.DEFINITION``) it is shared by every instance of the owning
    class; ``StateScope.INSTANCE`` gives each receiver its own breaker. A
    breaker can also be created up front and passed to several decorations.

Example:
    >>> class Billing:
    ...     @circuit_breaker(failure_threshold=5, reset_timeout=30.0)
    ...     async def charge(self, order):
    ...         return await gateway.charge(order)
    >>>
    >>> # After 5 failures, calls raise CircuitOpenFailure for 30 seconds

    Using the breaker directly:

    >>> breaker = CircuitBreaker(name="gateway", failure_threshold=3, reset_timeout=10.0)
    >>> result = breaker.call(gateway.ping)
"""

from __future__ import annotations

import functools
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ParamSpec, TypeVar

from opguard.core.errors import CircuitOpenFailure
from opguard.core.logging import get_logger
from opguard.execution.operation import (
    ScopedState,
    StateScope,
    describe_operation,
    is_async_operation,
    resolve_scope,
)

T = TypeVar("T")
P = ParamSpec("P")

logger = get_logger(__name__)


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"        # Normal operation
    OPEN = "open"            # Rejecting requests
    HALF_OPEN = "half-open"  # Testing recovery


@dataclass
class CircuitStats:
    """Statistics for circuit breaker monitoring."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    rejected_requests: int = 0
    state_changes: int = 0


@dataclass
class CircuitBreaker:
    """Circuit breaker state machine.

    Attributes:
        name: Identifier used in messages and logs
        failure_threshold: Failures in CLOSED before opening
        reset_timeout: Seconds after the last failure before a trial call
        on_state_change: Callback receiving each new state
        clock: Monotonic clock, injectable for tests
    """

    name: str = "default"
    failure_threshold: int = 5
    reset_timeout: float = 30.0
    on_state_change: Callable[[CircuitState], None] | None = None
    clock: Callable[[], float] = time.monotonic

    # Internal state
    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _failures: int = field(default=0, init=False)
    _last_failure_time: float | None = field(default=None, init=False)
    _trial_in_flight: bool = field(default=False, init=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False)
    _stats: CircuitStats = field(default_factory=CircuitStats, init=False)

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError(f"failure_threshold must be >= 1, got {self.failure_threshold}")
        if self.reset_timeout < 0:
            raise ValueError(f"reset_timeout must be >= 0, got {self.reset_timeout}")

    @property
    def state(self) -> CircuitState:
        """Current state. Reading it never triggers a transition."""
        with self._lock:
            return self._state

    @property
    def failures(self) -> int:
        with self._lock:
            return self._failures

    @property
    def last_failure_time(self) -> float | None:
        with self._lock:
            return self._last_failure_time

    @property
    def stats(self) -> CircuitStats:
        """Get circuit statistics."""
        return self._stats

    def _transition_to(self, new_state: CircuitState) -> None:
        if self._state == new_state:
            return
        old_state = self._state
        self._state = new_state
        self._stats.state_changes += 1
        logger.debug(
            "circuit_state_changed",
            circuit=self.name,
            old_state=old_state.value,
            new_state=new_state.value,
        )
        if self.on_state_change is not None:
            self.on_state_change(new_state)

    def allow_request(self) -> bool:
        """Check whether a call may proceed, moving OPEN → HALF_OPEN when due.

        In HALF_OPEN only one trial call is admitted until it settles.
        """
        with self._lock:
            self._stats.total_requests += 1

            if self._state == CircuitState.OPEN:
                elapsed = self.clock() - (self._last_failure_time or 0.0)
                if elapsed < self.reset_timeout:
                    self._stats.rejected_requests += 1
                    return False
                self._transition_to(CircuitState.HALF_OPEN)

            if self._state == CircuitState.HALF_OPEN:
                if self._trial_in_flight:
                    self._stats.rejected_requests += 1
                    return False
                self._trial_in_flight = True

            return True

    def record_success(self) -> None:
        """Record a successful call."""
        with self._lock:
            self._stats.successful_requests += 1
            if self._state == CircuitState.HALF_OPEN:
                self._trial_in_flight = False
                self._transition_to(CircuitState.CLOSED)
                self._failures = 0

    def record_failure(self, error: BaseException | None = None) -> None:
        """Record a failed call."""
        with self._lock:
            self._stats.failed_requests += 1
            self._failures += 1
            self._last_failure_time = self.clock()

            if self._state == CircuitState.HALF_OPEN:
                self._trial_in_flight = False
                self._transition_to(CircuitState.OPEN)
            elif self._failures >= self.failure_threshold:
                self._transition_to(CircuitState.OPEN)

    def reset(self) -> None:
        """Reset circuit to closed state."""
        with self._lock:
            self._transition_to(CircuitState.CLOSED)
            self._failures = 0
            self._last_failure_time = None
            self._trial_in_flight = False

    def force_open(self) -> None:
        """Force circuit to open state (for testing/maintenance)."""
        with self._lock:
            self._last_failure_time = self.clock()
            self._trial_in_flight = False
            self._transition_to(CircuitState.OPEN)

    def call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Execute a function through the circuit breaker.

        Raises:
            CircuitOpenFailure: If the circuit rejects the call
        """
        if not self.allow_request():
            raise CircuitOpenFailure(operation=self.name, state=self.state.value)
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            self.record_failure(e)
            raise
        self.record_success()
        return result

    async def call_async(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Execute an async function through the circuit breaker."""
        if not self.allow_request():
            raise CircuitOpenFailure(operation=self.name, state=self.state.value)
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            self.record_failure(e)
            raise
        self.record_success()
        return result


def circuit_breaker(
    failure_threshold: int,
    reset_timeout: float,
    on_state_change: Callable[[CircuitState], None] | None = None,
    scope: StateScope | str | None = None,
    breaker: CircuitBreaker | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """Decorator factory guarding an operation with a circuit breaker.

    Args:
        failure_threshold: Failures before the circuit opens
        reset_timeout: Seconds the circuit stays open before a trial call
        on_state_change: Callback receiving each new state
        scope: Share one breaker per definition (default) or per instance
        breaker: Explicit breaker object to use (definition scope only)
        clock: Monotonic clock, injectable for tests

    The wrapper exposes ``breaker_for(receiver=None)`` to inspect state.
    """
    resolved_scope = resolve_scope(scope)
    if breaker is not None and resolved_scope is StateScope.INSTANCE:
        raise ValueError("an explicit breaker cannot be combined with instance scope")

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        identity = describe_operation(func)

        def factory() -> CircuitBreaker:
            return CircuitBreaker(
                name=identity.qualified_name,
                failure_threshold=failure_threshold,
                reset_timeout=reset_timeout,
                on_state_change=on_state_change,
                clock=clock,
            )

        states = ScopedState(factory, resolved_scope, shared=breaker)

        def breaker_for(receiver: Any = None) -> CircuitBreaker:
            args = (receiver,) if receiver is not None else ()
            return states.resolve(identity, args)

        if is_async_operation(func):
            @functools.wraps(func)
            async def async_wrapper(*args: P.args, **kwargs: P.kwargs) -> Any:
                return await states.resolve(identity, args).call_async(func, *args, **kwargs)

            async_wrapper.breaker_for = breaker_for  # type: ignore[attr-defined]
            return async_wrapper  # type: ignore[return-value]

        @functools.wraps(func)
        def sync_wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            return states.resolve(identity, args).call(func, *args, **kwargs)

        sync_wrapper.breaker_for = breaker_for  # type: ignore[attr-defined]
        return sync_wrapper

    return decorator


__all__ = [
    "CircuitState",
    "CircuitStats",
    "CircuitBreaker",
    "circuit_breaker",
]
