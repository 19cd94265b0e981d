"""Call guards: precondition predicates and deprecation warnings."""

from __future__ import annotations

import functools
import inspect
import warnings
from collections.abc import Callable
from typing import Any, ParamSpec, TypeVar

from opguard.core.errors import GuardFailure
from opguard.core.logging import get_logger
from opguard.execution.operation import describe_operation, is_async_operation

T = TypeVar("T")
P = ParamSpec("P")

logger = get_logger(__name__)

Predicate = Callable[..., Any]


def guard(predicate: Predicate) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """Decorator factory rejecting calls for which ``predicate`` is falsy.

    The predicate receives the call arguments without the receiver. Async
    operations may use a coroutine predicate; sync operations may not.

    Raises:
        GuardFailure: "Guard failed for <name>" when the predicate rejects
    """

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        identity = describe_operation(func)

        def rejected() -> GuardFailure:
            logger.debug("guard_rejected", operation=identity.qualified_name)
            return GuardFailure(identity.name)

        if is_async_operation(func):
            @functools.wraps(func)
            async def async_wrapper(*args: P.args, **kwargs: P.kwargs) -> Any:
                allowed = predicate(*identity.call_args(args), **kwargs)
                if inspect.isawaitable(allowed):
                    allowed = await allowed
                if not allowed:
                    raise rejected()
                return await func(*args, **kwargs)

            return async_wrapper  # type: ignore[return-value]

        @functools.wraps(func)
        def sync_wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            allowed = predicate(*identity.call_args(args), **kwargs)
            if inspect.isawaitable(allowed):
                close = getattr(allowed, "close", None)
                if close is not None:
                    close()
                raise TypeError(f"{identity.qualified_name} is synchronous; its guard must be too")
            if not allowed:
                raise rejected()
            return func(*args, **kwargs)

        return sync_wrapper

    return decorator


def deprecated(message: str | None = None) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """Decorator factory emitting ``DeprecationWarning`` on every call."""

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        text = message or f"{describe_operation(func).name} is deprecated"

        if is_async_operation(func):
            @functools.wraps(func)
            async def async_wrapper(*args: P.args, **kwargs: P.kwargs) -> Any:
                warnings.warn(text, DeprecationWarning, stacklevel=2)
                return await func(*args, **kwargs)

            return async_wrapper  # type: ignore[return-value]

        @functools.wraps(func)
        def sync_wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            warnings.warn(text, DeprecationWarning, stacklevel=2)
            return func(*args, **kwargs)

        return sync_wrapper

    return decorator


__all__ = ["guard", "deprecated"]
