"""
Result caching for operations - TTL caching and permanent memoization.

Manifesto:
    Expensive, idempotent operations (lookups, remote reads, derived
    computations) should be computed once per argument set and reused.
    Caching belongs at the call boundary, not inside the operation.

    - **Key-addressed:** Default key is scope + name + stable JSON of args
    - **Optional TTL:** Entries expire lazily, checked at read time
    - **Scoped invalidation:** ``invalidate()`` clears only the keys the
      wrapper itself produced, never other operations' entries
    - **Async aware:** Coroutine results are cached only once resolved;
      failures are never cached

Architecture:
    ::

        @cached(expiry=60)
        def lookup(...)          ─┐
                                  │  key(args)
                                  ▼
        ┌──────────────────────────────────────┐
        │ CacheStore  (process-wide default)   │
        │   key → CacheEntry(value, expires_at)│
        └──────────────────────────────────────┘
                                  ▲
        lookup.invalidate()  ─────┘  deletes keys produced by lookup

        @memoize()               ─ private dict per wrapper, no expiry

Example:
    >>> class Prices:
    ...     @cached(expiry=30.0)
    ...     def quote(self, symbol):
    ...         return fetch_quote(symbol)
    >>>
    >>> prices = Prices()
    >>> prices.quote("AAPL")     # computed
    >>> prices.quote("AAPL")     # served from cache for 30 seconds
    >>> prices.quote.invalidate()

Guardrails:
    ❌ DON'T: Supply a key function that ignores arguments that change the result
    ✅ DO: Include every argument the result depends on in the key

Tags:
    cache, memoize, ttl, invalidation, opguard
"""

from __future__ import annotations

import functools
import json
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any, ParamSpec, TypeVar

from opguard.core.logging import get_logger
from opguard.execution.operation import OperationIdentity, describe_operation, is_async_operation

T = TypeVar("T")
P = ParamSpec("P")

logger = get_logger(__name__)

KeyFunction = Callable[..., str]


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """A cached value with optional expiry (monotonic timestamp)."""

    value: Any
    expires_at: float | None = None

    def is_fresh(self, now: float) -> bool:
        return self.expires_at is None or self.expires_at > now


class CacheStore:
    """Thread-safe key → CacheEntry mapping.

    Owns every entry. Reads detect expiry and drop stale entries.
    """

    def __init__(self) -> None:
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str, now: float) -> CacheEntry | None:
        """Return the fresh entry for key, removing it if expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if not entry.is_fresh(now):
                del self._entries[key]
                return None
            return entry

    def set(self, key: str, entry: CacheEntry) -> None:
        with self._lock:
            self._entries[key] = entry

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def delete_many(self, keys: Iterable[str]) -> int:
        """Delete keys, returning how many were present."""
        removed = 0
        with self._lock:
            for key in keys:
                if self._entries.pop(key, None) is not None:
                    removed += 1
        return removed

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        """Remove all entries. Meant for tests."""
        with self._lock:
            self._entries.clear()


_default_store = CacheStore()


def get_default_store() -> CacheStore:
    """The process-wide store used when no ``store=`` is given."""
    return _default_store


def _serialize_args(args: tuple[Any, ...], kwargs: dict[str, Any]) -> str:
    payload: Any = list(args)
    if kwargs:
        payload = [list(args), kwargs]
    return json.dumps(payload, sort_keys=True, default=str)


def make_cache_key(
    identity: OperationIdentity,
    args: tuple[Any, ...],
    kwargs: dict[str, Any],
    key: str | KeyFunction | None = None,
) -> str:
    """Cache key for one call.

    A callable ``key`` receives the call arguments (receiver excluded); a
    string ``key`` is used as is; otherwise the key is
    ``"{scope}:{name}:{json args}"``.
    """
    call_args = identity.call_args(args)
    if callable(key):
        return key(*call_args, **kwargs)
    if key is not None:
        return key
    return f"{identity.scope_for(args)}:{identity.name}:{_serialize_args(call_args, kwargs)}"


def cached(
    expiry: float | None = None,
    key: str | KeyFunction | None = None,
    store: CacheStore | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """Decorator factory caching results, optionally for ``expiry`` seconds.

    The wrapper gains an ``invalidate()`` attribute that removes every key it
    has produced from the store.

    Sync or async handling is chosen when decorating, from whether ``func``
    is a coroutine function. A plain ``def`` that returns a coroutine or other
    awaitable is treated as sync, so the unawaited object itself is cached.

    Args:
        expiry: Seconds an entry stays fresh (None → until invalidated)
        key: Custom key (string, or function of the call arguments)
        store: Backing store (default: process-wide store)
        clock: Monotonic clock, injectable for tests

    Raises:
        ValueError: If expiry is not positive
    """
    if expiry is not None and expiry <= 0:
        raise ValueError(f"expiry must be positive, got {expiry}")

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        identity = describe_operation(func)
        backing = store if store is not None else _default_store
        produced: set[str] = set()
        produced_lock = threading.Lock()

        def lookup(args: tuple[Any, ...], kwargs: dict[str, Any]) -> tuple[str, CacheEntry | None]:
            cache_key = make_cache_key(identity, args, kwargs, key)
            with produced_lock:
                produced.add(cache_key)
            entry = backing.get(cache_key, clock())
            if entry is not None:
                logger.debug("cache_hit", operation=identity.qualified_name, key=cache_key)
            else:
                logger.debug("cache_miss", operation=identity.qualified_name, key=cache_key)
            return cache_key, entry

        def store_result(cache_key: str, value: Any) -> None:
            expires_at = clock() + expiry if expiry is not None else None
            backing.set(cache_key, CacheEntry(value=value, expires_at=expires_at))

        def invalidate() -> None:
            with produced_lock:
                keys = list(produced)
                produced.clear()
            removed = backing.delete_many(keys)
            logger.debug(
                "cache_invalidated",
                operation=identity.qualified_name,
                removed=removed,
            )

        if is_async_operation(func):
            @functools.wraps(func)
            async def async_wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
                cache_key, entry = lookup(args, kwargs)
                if entry is not None:
                    return entry.value
                value = await func(*args, **kwargs)
                store_result(cache_key, value)
                return value

            wrapper: Any = async_wrapper
        else:
            @functools.wraps(func)
            def sync_wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
                cache_key, entry = lookup(args, kwargs)
                if entry is not None:
                    return entry.value
                value = func(*args, **kwargs)
                store_result(cache_key, value)
                return value

            wrapper = sync_wrapper

        wrapper.invalidate = invalidate
        return wrapper

    return decorator


def memoize() -> Callable[[Callable[P, T]], Callable[P, T]]:
    """Decorator factory caching results permanently for the process lifetime.

    Each memoized function owns a private table keyed by
    ``"{name}:{json args}"``; there is no expiry and no invalidation.
    """

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        identity = describe_operation(func)
        table: dict[str, Any] = {}
        lock = threading.Lock()

        def memo_key(args: tuple[Any, ...], kwargs: dict[str, Any]) -> str:
            return f"{identity.name}:{_serialize_args(identity.call_args(args), kwargs)}"

        def lookup(memo: str) -> tuple[bool, Any]:
            with lock:
                if memo in table:
                    return True, table[memo]
            return False, None

        def remember(memo: str, value: Any) -> None:
            with lock:
                table[memo] = value

        if is_async_operation(func):
            @functools.wraps(func)
            async def async_wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
                memo = memo_key(args, kwargs)
                found, value = lookup(memo)
                if found:
                    return value
                value = await func(*args, **kwargs)
                remember(memo, value)
                return value

            return async_wrapper  # type: ignore[return-value]

        @functools.wraps(func)
        def sync_wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            memo = memo_key(args, kwargs)
            found, value = lookup(memo)
            if found:
                return value
            value = func(*args, **kwargs)
            remember(memo, value)
            return value

        return sync_wrapper

    return decorator


__all__ = [
    "CacheEntry",
    "CacheStore",
    "get_default_store",
    "make_cache_key",
    "cached",
    "memoize",
]
