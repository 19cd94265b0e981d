"""Throttle - at most one invocation per interval, per key.

The first call for a key runs and starts an ``interval``-second quiet
period; calls inside the period do not run the operation. The key is
``"{scope}.{name}"`` (receiver's class for methods).

- ``throttle_sync`` returns ``None`` for suppressed calls.
- ``throttle_async`` returns the recorded outcome for suppressed calls: it
  awaits the in-flight invocation if still pending, or yields its result
  (or re-raises its error) once settled.
"""

from __future__ import annotations

import asyncio
import functools
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from opguard.core.logging import get_logger
from opguard.execution.operation import OperationIdentity, describe_operation

logger = get_logger(__name__)


@dataclass
class _ThrottleSlot:
    last_call_time: float
    last_result: Any = None


def _throttle_key(identity: OperationIdentity, args: tuple[Any, ...]) -> str:
    return f"{identity.scope_for(args)}.{identity.name}"


def _validate_interval(interval: float) -> None:
    if interval < 0:
        raise ValueError(f"interval must be >= 0, got {interval}")


def throttle_sync(
    interval: float,
    clock: Callable[[], float] = time.monotonic,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Decorator factory running a plain function at most once per ``interval`` seconds."""
    _validate_interval(interval)

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        identity = describe_operation(func)
        slots: dict[str, _ThrottleSlot] = {}
        lock = threading.Lock()

        @functools.wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
            key = _throttle_key(identity, args)
            with lock:
                now = clock()
                slot = slots.get(key)
                if slot is not None and now - slot.last_call_time < interval:
                    logger.debug("throttle_suppressed", operation=identity.qualified_name, key=key)
                    return None
                slot = slots[key] = _ThrottleSlot(last_call_time=now)
            result = func(*args, **kwargs)
            slot.last_result = result
            return result

        return sync_wrapper

    return decorator


def throttle_async(
    interval: float,
    clock: Callable[[], float] = time.monotonic,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Decorator factory running a coroutine function at most once per ``interval`` seconds.

    Suppressed calls share the outcome of the last invocation that ran.
    """
    _validate_interval(interval)

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        identity = describe_operation(func)
        slots: dict[str, _ThrottleSlot] = {}
        lock = threading.Lock()

        @functools.wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            key = _throttle_key(identity, args)
            with lock:
                now = clock()
                slot = slots.get(key)
                if slot is None or now - slot.last_call_time >= interval:
                    task = asyncio.ensure_future(func(*args, **kwargs))
                    slots[key] = _ThrottleSlot(last_call_time=now, last_result=task)
                else:
                    logger.debug("throttle_suppressed", operation=identity.qualified_name, key=key)
                    task = slot.last_result
            # A cancelled caller must not cancel the shared invocation
            return await asyncio.shield(task)

        return async_wrapper

    return decorator


__all__ = ["throttle_sync", "throttle_async"]
