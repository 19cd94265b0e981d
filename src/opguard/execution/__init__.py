"""Opguard Execution - composable wrappers around operations.

ARCHITECTURE
────────────
::

    operation (sync function or coroutine function)
      │
      ▼
    Result reuse
      ├── cached / memoize       ─ TTL cache with invalidate(), permanent memo
    Resilience layer
      ├── retry                  ─ constant / exponential backoff
      ├── timeout                ─ deadline race (no cancellation)
      ├── circuit_breaker        ─ CLOSED → OPEN → HALF_OPEN state machine
      ├── fallback               ─ substitute outcome on failure
      └── rate_limited           ─ sliding-window admission
    Call shaping
      ├── debounce_sync/async    ─ trailing call of a burst
      └── throttle_sync/async    ─ leading call per interval
    Observation
      ├── effect_before/after/error ─ lifecycle hooks with CallContext
      ├── timed / measure        ─ durations and memory deltas
      └── guard / deprecated     ─ preconditions and warnings

    Every wrapper keeps the operation's sync/async contract (debounce_sync
    returns a Future) and preserves metadata with functools.wraps, so they
    stack in any order.

MODULE MAP
──────────
  1. operation.py        ─ identity, CallContext, StateScope
  2. cache.py            ─ cached, memoize, CacheStore
  3. retry.py            ─ retry, RetryPolicy
  4. timeout.py          ─ timeout
  5. circuit_breaker.py  ─ circuit_breaker, CircuitBreaker
  6. fallback.py         ─ fallback
  7. rate_limit.py       ─ rate_limited, SlidingWindowLimiter
  8. debounce.py         ─ debounce_sync, debounce_async
  9. throttle.py         ─ throttle_sync, throttle_async
 10. lifecycle.py        ─ effect_before, effect_after, effect_error
 11. timing.py           ─ timed, measure, Measurement
 12. guards.py           ─ guard, deprecated
"""

from opguard.execution.cache import CacheEntry, CacheStore, cached, get_default_store, make_cache_key, memoize
from opguard.execution.circuit_breaker import CircuitBreaker, CircuitState, CircuitStats, circuit_breaker
from opguard.execution.debounce import debounce_async, debounce_sync
from opguard.execution.fallback import fallback
from opguard.execution.guards import deprecated, guard
from opguard.execution.lifecycle import effect_after, effect_before, effect_error
from opguard.execution.operation import (
    CallContext,
    OperationIdentity,
    ScopedState,
    StateScope,
    describe_operation,
    is_async_operation,
)
from opguard.execution.rate_limit import SlidingWindowLimiter, rate_limited
from opguard.execution.retry import BackoffStrategy, RetryPolicy, retry
from opguard.execution.throttle import throttle_async, throttle_sync
from opguard.execution.timeout import timeout
from opguard.execution.timing import Measurement, measure, timed

__all__ = [
    # Contract
    "CallContext",
    "OperationIdentity",
    "ScopedState",
    "StateScope",
    "describe_operation",
    "is_async_operation",
    # Cache
    "CacheEntry",
    "CacheStore",
    "cached",
    "get_default_store",
    "make_cache_key",
    "memoize",
    # Resilience
    "BackoffStrategy",
    "RetryPolicy",
    "retry",
    "timeout",
    "CircuitBreaker",
    "CircuitState",
    "CircuitStats",
    "circuit_breaker",
    "fallback",
    "SlidingWindowLimiter",
    "rate_limited",
    # Call shaping
    "debounce_async",
    "debounce_sync",
    "throttle_async",
    "throttle_sync",
    # Observation
    "effect_after",
    "effect_before",
    "effect_error",
    "Measurement",
    "measure",
    "timed",
    "deprecated",
    "guard",
]
