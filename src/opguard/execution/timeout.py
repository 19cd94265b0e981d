"""Timeout guard - race an operation against a deadline.

Whichever settles first wins. When the deadline wins, the caller receives a
``TimeoutFailure`` ("<name> timed out after <ms>ms").

Limitation:
    The underlying operation is NOT cancelled. Python cannot preempt a
    running thread, and cancelling a task the guard does not own would
    interrupt work at an arbitrary await point. The operation keeps running
    to completion or failure in the background; its eventual result or
    error is retrieved and discarded by the guard.

Architecture:
    ::

        async operation                      sync operation
        ───────────────                      ──────────────
        task = create_task(op(...))          thread = Thread(op(...), daemon)
        wait_for(shield(task), seconds)      done.wait(seconds)
          │ settled → result / error           │ settled → result / error
          │ deadline → TimeoutFailure          │ deadline → TimeoutFailure
          └ task keeps running                 └ thread keeps running

Example:
    >>> @timeout(2.0)
    ... async def fetch(url):
    ...     return await http_get(url)
    >>>
    >>> await fetch("https://example.com")   # TimeoutFailure after 2s
"""

from __future__ import annotations

import asyncio
import functools
import threading
from collections.abc import Callable
from typing import Any, ParamSpec, TypeVar

from opguard.core.errors import TimeoutFailure
from opguard.core.logging import get_logger
from opguard.execution.operation import describe_operation, is_async_operation

T = TypeVar("T")
P = ParamSpec("P")

logger = get_logger(__name__)

# Strong references to abandoned tasks until they settle
_background_tasks: set[asyncio.Task[Any]] = set()


def _discard_outcome(operation: str, task: asyncio.Task[Any]) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        return
    error = task.exception()
    logger.debug(
        "timed_out_operation_settled",
        operation=operation,
        failed=error is not None,
    )


class _ThreadOutcome:
    """Result slot filled by the worker thread of a sync call."""

    __slots__ = ("done", "value", "error")

    def __init__(self) -> None:
        self.done = threading.Event()
        self.value: Any = None
        self.error: BaseException | None = None


def timeout(seconds: float, operation: str | None = None) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """Decorator factory enforcing a deadline on an operation.

    Args:
        seconds: Deadline in seconds
        operation: Name for the failure message (defaults to function name)

    Raises:
        ValueError: If seconds <= 0
    """
    if seconds <= 0:
        raise ValueError(f"Timeout must be positive, got {seconds}")

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        identity = describe_operation(func)
        op_name = operation or identity.name

        if is_async_operation(func):
            @functools.wraps(func)
            async def async_wrapper(*args: P.args, **kwargs: P.kwargs) -> Any:
                task = asyncio.ensure_future(func(*args, **kwargs))
                try:
                    return await asyncio.wait_for(asyncio.shield(task), timeout=seconds)
                except TimeoutError:
                    if task.done() and not task.cancelled():
                        # Settled in the same tick the deadline fired
                        return task.result()
                    _background_tasks.add(task)
                    task.add_done_callback(functools.partial(_discard_outcome, op_name))
                    logger.debug("operation_timed_out", operation=op_name, timeout=seconds)
                    raise TimeoutFailure(timeout=seconds, operation=op_name) from None

            return async_wrapper  # type: ignore[return-value]

        @functools.wraps(func)
        def sync_wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            outcome = _ThreadOutcome()

            def run() -> None:
                try:
                    outcome.value = func(*args, **kwargs)
                except BaseException as e:
                    outcome.error = e
                finally:
                    outcome.done.set()

            worker = threading.Thread(target=run, name=f"opguard-timeout-{op_name}", daemon=True)
            worker.start()

            if not outcome.done.wait(seconds):
                logger.debug("operation_timed_out", operation=op_name, timeout=seconds)
                raise TimeoutFailure(timeout=seconds, operation=op_name)

            if outcome.error is not None:
                raise outcome.error
            return outcome.value

        return sync_wrapper

    return decorator


__all__ = ["timeout"]
