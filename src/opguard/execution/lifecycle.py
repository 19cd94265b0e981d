"""
Lifecycle hooks - run side effects before, after, or on failure of an operation.

Manifesto:
    Auditing, metrics and notifications are side effects of a call, not
    part of it. Hooks observe an operation through a ``CallContext`` and
    never change its outcome: the result is returned unchanged, the error
    is re-raised unchanged.

Architecture:
    ::

        effect_before(hook)   hook(ctx) ─▶ operation(...) ─▶ result
        effect_after(hook)    operation(...) ─▶ hook(ctx, result) ─▶ result
        effect_error(hook)    operation(...) ─✗ hook(ctx, error) ─▶ raise error

    ``ctx`` is a fresh ``CallContext(operation_name, scope_name, args,
    kwargs, result, error)`` per call; ``args`` excludes the receiver.

Async/sync:
    In async operations a hook may return an awaitable; it is awaited
    before the wrapper returns. Sync operations require sync hooks: an
    awaitable returned there is closed and ``TypeError`` is raised.

Example:
    >>> class Orders:
    ...     @effect_after(lambda ctx: audit.record(ctx.operation_name, ctx.result))
    ...     @effect_error(lambda ctx: alerts.send(ctx.error))
    ...     async def place(self, order):
    ...         return await broker.submit(order)

Tags:
    lifecycle, hooks, effects, opguard
"""

from __future__ import annotations

import functools
import inspect
from collections.abc import Callable
from typing import Any, ParamSpec, TypeVar

from opguard.core.logging import get_logger
from opguard.execution.operation import (
    CallContext,
    OperationIdentity,
    describe_operation,
    is_async_operation,
)

T = TypeVar("T")
P = ParamSpec("P")

logger = get_logger(__name__)

Hook = Callable[[CallContext], Any]


def _run_sync_hook(hook: Hook, context: CallContext, identity: OperationIdentity) -> None:
    outcome = hook(context)
    if inspect.isawaitable(outcome):
        close = getattr(outcome, "close", None)
        if close is not None:
            close()
        raise TypeError(
            f"{identity.qualified_name} is synchronous; its hooks must not return awaitables"
        )


async def _run_async_hook(hook: Hook, context: CallContext) -> None:
    outcome = hook(context)
    if inspect.isawaitable(outcome):
        await outcome


def effect_before(hook: Hook) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """Decorator factory running ``hook`` before every call.

    The hook's return value is discarded; if it raises, the operation is
    not invoked.
    """

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        identity = describe_operation(func)

        if is_async_operation(func):
            @functools.wraps(func)
            async def async_wrapper(*args: P.args, **kwargs: P.kwargs) -> Any:
                await _run_async_hook(hook, CallContext.for_call(identity, args, kwargs))
                return await func(*args, **kwargs)

            return async_wrapper  # type: ignore[return-value]

        @functools.wraps(func)
        def sync_wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            _run_sync_hook(hook, CallContext.for_call(identity, args, kwargs), identity)
            return func(*args, **kwargs)

        return sync_wrapper

    return decorator


def effect_after(hook: Hook) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """Decorator factory running ``hook`` after every successful call.

    The hook sees ``context.result``; the original result is returned.
    """

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        identity = describe_operation(func)

        if is_async_operation(func):
            @functools.wraps(func)
            async def async_wrapper(*args: P.args, **kwargs: P.kwargs) -> Any:
                result = await func(*args, **kwargs)
                await _run_async_hook(hook, CallContext.for_call(identity, args, kwargs, result=result))
                return result

            return async_wrapper  # type: ignore[return-value]

        @functools.wraps(func)
        def sync_wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            result = func(*args, **kwargs)
            _run_sync_hook(hook, CallContext.for_call(identity, args, kwargs, result=result), identity)
            return result

        return sync_wrapper

    return decorator


def effect_error(hook: Hook) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """Decorator factory running ``hook`` when a call fails.

    The hook sees ``context.error``; the original error is always
    re-raised. A failure inside the hook itself is logged and does not
    replace the original error.
    """

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        identity = describe_operation(func)

        def hook_failed(hook_error: Exception, error: Exception) -> None:
            logger.error(
                "error_hook_failed",
                operation=identity.qualified_name,
                error=repr(error),
                hook_error=repr(hook_error),
            )

        if is_async_operation(func):
            @functools.wraps(func)
            async def async_wrapper(*args: P.args, **kwargs: P.kwargs) -> Any:
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    context = CallContext.for_call(identity, args, kwargs, error=e)
                    try:
                        await _run_async_hook(hook, context)
                    except Exception as hook_error:
                        hook_failed(hook_error, e)
                    raise

            return async_wrapper  # type: ignore[return-value]

        @functools.wraps(func)
        def sync_wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            try:
                return func(*args, **kwargs)
            except Exception as e:
                context = CallContext.for_call(identity, args, kwargs, error=e)
                try:
                    _run_sync_hook(hook, context, identity)
                except Exception as hook_error:
                    hook_failed(hook_error, e)
                raise

        return sync_wrapper

    return decorator


__all__ = ["Hook", "effect_before", "effect_after", "effect_error"]
