"""Fallback: replace an operation failure with a substitute's outcome."""

from __future__ import annotations

import functools
import inspect
from collections.abc import Callable
from typing import Any, ParamSpec, TypeVar

from opguard.core.logging import get_logger
from opguard.execution.operation import describe_operation, is_async_operation

T = TypeVar("T")
P = ParamSpec("P")

logger = get_logger(__name__)


def fallback(substitute: Callable[..., Any]) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """Decorator factory calling ``substitute`` with the same arguments on failure.

    For methods the receiver is passed too, so a substitute defined on the
    same class works as a plain method. In async operations an awaitable
    returned by the substitute is awaited. Errors raised by the substitute
    propagate.
    """

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        identity = describe_operation(func)

        def suppressed(error: Exception) -> None:
            logger.debug(
                "fallback_used",
                operation=identity.qualified_name,
                error=repr(error),
            )

        if is_async_operation(func):
            @functools.wraps(func)
            async def async_wrapper(*args: P.args, **kwargs: P.kwargs) -> Any:
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    suppressed(e)
                    outcome = substitute(*args, **kwargs)
                    if inspect.isawaitable(outcome):
                        outcome = await outcome
                    return outcome

            return async_wrapper  # type: ignore[return-value]

        @functools.wraps(func)
        def sync_wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            try:
                return func(*args, **kwargs)
            except Exception as e:
                suppressed(e)
                return substitute(*args, **kwargs)

        return sync_wrapper

    return decorator


__all__ = ["fallback"]
