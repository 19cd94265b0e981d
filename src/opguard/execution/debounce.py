"""Debounce - collapse a burst of calls into one trailing invocation.

Every call restarts a ``delay``-second timer for its key (``"{scope}.{name}"``)
and replaces the pending arguments. When the timer finally elapses, the
operation runs once with the latest arguments and every caller of the burst
receives that single outcome.

Two flavours:

- ``debounce_async`` - for coroutine functions. Each call is awaited; the
  timer is ``loop.call_later`` on the running loop.
- ``debounce_sync`` - for plain functions. The timer is a
  ``threading.Timer``; each call returns a ``concurrent.futures.Future``
  resolved with the outcome. A synchronous caller cannot receive a deferred
  value inline, so this wrapper changes the return type.

Both wrappers expose ``cancel()``, which drops every pending burst and
cancels its waiters.

Example:
    >>> class Search:
    ...     @debounce_async(0.3)
    ...     async def suggest(self, prefix):
    ...         return await index.lookup(prefix)
    >>>
    >>> # three keystrokes within 0.3s → one lookup("abc"), three results
    >>> await asyncio.gather(s.suggest("a"), s.suggest("ab"), s.suggest("abc"))
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import functools
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from opguard.core.logging import get_logger
from opguard.execution.operation import OperationIdentity, describe_operation

logger = get_logger(__name__)


@dataclass
class _Burst:
    """Pending calls for one key that have not fired yet."""

    args: tuple[Any, ...] = ()
    kwargs: dict[str, Any] = field(default_factory=dict)
    waiters: list[Any] = field(default_factory=list)
    timer: Any = None
    generation: int = 0


def _debounce_key(identity: OperationIdentity, args: tuple[Any, ...]) -> str:
    return f"{identity.scope_for(args)}.{identity.name}"


def _validate_delay(delay: float) -> None:
    if delay < 0:
        raise ValueError(f"delay must be >= 0, got {delay}")


def debounce_async(delay: float) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Decorator factory debouncing a coroutine function by ``delay`` seconds."""
    _validate_delay(delay)

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        identity = describe_operation(func)
        bursts: dict[str, _Burst] = {}
        running: set[asyncio.Task[Any]] = set()
        lock = threading.Lock()

        async def run(key: str, burst: _Burst) -> None:
            logger.debug("debounce_fired", operation=identity.qualified_name, key=key)
            try:
                result = await func(*burst.args, **burst.kwargs)
            except Exception as e:
                for waiter in burst.waiters:
                    if not waiter.done():
                        waiter.set_exception(e)
            else:
                for waiter in burst.waiters:
                    if not waiter.done():
                        waiter.set_result(result)

        def fire(key: str, burst: _Burst, generation: int) -> None:
            with lock:
                if bursts.get(key) is not burst or burst.generation != generation:
                    return
                del bursts[key]
            task = asyncio.ensure_future(run(key, burst))
            running.add(task)
            task.add_done_callback(running.discard)

        @functools.wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            loop = asyncio.get_running_loop()
            key = _debounce_key(identity, args)
            waiter = loop.create_future()
            with lock:
                burst = bursts.get(key)
                if burst is None:
                    burst = bursts[key] = _Burst()
                elif burst.timer is not None:
                    burst.timer.cancel()
                burst.args, burst.kwargs = args, kwargs
                burst.waiters.append(waiter)
                burst.generation += 1
                burst.timer = loop.call_later(delay, fire, key, burst, burst.generation)
            return await waiter

        def cancel() -> None:
            with lock:
                pending = list(bursts.values())
                bursts.clear()
            for burst in pending:
                if burst.timer is not None:
                    burst.timer.cancel()
                for waiter in burst.waiters:
                    waiter.cancel()

        async_wrapper.cancel = cancel  # type: ignore[attr-defined]
        return async_wrapper

    return decorator


def debounce_sync(delay: float) -> Callable[[Callable[..., Any]], Callable[..., concurrent.futures.Future]]:
    """Decorator factory debouncing a plain function by ``delay`` seconds.

    Each call returns a ``concurrent.futures.Future``; call ``.result()`` to
    block until the burst fires.
    """
    _validate_delay(delay)

    def decorator(func: Callable[..., Any]) -> Callable[..., concurrent.futures.Future]:
        identity = describe_operation(func)
        bursts: dict[str, _Burst] = {}
        lock = threading.Lock()

        def fire(key: str, burst: _Burst, generation: int) -> None:
            with lock:
                if bursts.get(key) is not burst or burst.generation != generation:
                    return
                del bursts[key]
            logger.debug("debounce_fired", operation=identity.qualified_name, key=key)
            waiters = [w for w in burst.waiters if w.set_running_or_notify_cancel()]
            try:
                result = func(*burst.args, **burst.kwargs)
            except Exception as e:
                for waiter in waiters:
                    waiter.set_exception(e)
            else:
                for waiter in waiters:
                    waiter.set_result(result)

        @functools.wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> concurrent.futures.Future:
            key = _debounce_key(identity, args)
            waiter: concurrent.futures.Future = concurrent.futures.Future()
            with lock:
                burst = bursts.get(key)
                if burst is None:
                    burst = bursts[key] = _Burst()
                elif burst.timer is not None:
                    burst.timer.cancel()
                burst.args, burst.kwargs = args, kwargs
                burst.waiters.append(waiter)
                burst.generation += 1
                timer = threading.Timer(delay, fire, args=(key, burst, burst.generation))
                timer.daemon = True
                burst.timer = timer
                timer.start()
            return waiter

        def cancel() -> None:
            with lock:
                pending = list(bursts.values())
                bursts.clear()
            for burst in pending:
                if burst.timer is not None:
                    burst.timer.cancel()
                for waiter in burst.waiters:
                    waiter.cancel()

        sync_wrapper.cancel = cancel  # type: ignore[attr-defined]
        return sync_wrapper

    return decorator


__all__ = ["debounce_sync", "debounce_async"]
