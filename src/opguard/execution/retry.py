"""Retry with constant or exponential backoff.

Re-invokes a failing operation under a bounded attempt budget. The error
that finally surfaces is exactly the last failure raised by the operation;
the engine never wraps it.

Example:
    >>> @retry(max_retries=3, strategy="exponential", backoff=0.5)
    ... async def fetch(url):
    ...     return await http_get(url)
    >>>
    >>> # waits 0.5s, 1.0s, 2.0s between the four attempts

Attempts are counted including the first try: with ``max_retries=N`` an
always-failing operation runs ``N + 1`` times. Async operations wait with
``asyncio.sleep`` so other tasks keep running; sync operations block the
calling thread with ``time.sleep``. Attempts of one call never overlap.
"""

from __future__ import annotations

import asyncio
import functools
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, ParamSpec, TypeVar

from opguard.core.logging import get_logger
from opguard.core.settings import get_settings
from opguard.execution.operation import describe_operation, is_async_operation

T = TypeVar("T")
P = ParamSpec("P")

logger = get_logger(__name__)

OnRetry = Callable[[BaseException, int], None]


class BackoffStrategy(str, Enum):
    """How the delay grows between attempts."""

    NORMAL = "normal"            # Constant delay
    EXPONENTIAL = "exponential"  # Doubling delay


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget and delay function for one retried operation.

    Attributes:
        max_retries: Retries after the first attempt (>= 0)
        strategy: Constant or exponential delay
        backoff: Base delay in seconds
        retry_on: Exception types that trigger a retry
    """

    max_retries: int
    strategy: BackoffStrategy = BackoffStrategy.NORMAL
    backoff: float = 1.0
    retry_on: tuple[type[BaseException], ...] = (Exception,)

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.backoff < 0:
            raise ValueError(f"backoff must be >= 0, got {self.backoff}")

    def delay_for(self, attempt: int) -> float:
        """Delay after the given failed attempt (1-based)."""
        if self.strategy is BackoffStrategy.EXPONENTIAL:
            return self.backoff * (2 ** (attempt - 1))
        return self.backoff

    def should_retry(self, attempt: int, error: BaseException) -> bool:
        """True while the budget allows another attempt for this error."""
        return attempt <= self.max_retries and isinstance(error, self.retry_on)


def retry(
    max_retries: int,
    strategy: BackoffStrategy | str | None = None,
    backoff: float | None = None,
    on_retry: OnRetry | None = None,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """Decorator factory to re-invoke an operation on failure.

    Args:
        max_retries: Maximum retries after the first attempt
        strategy: "normal" or "exponential" (default from settings)
        backoff: Base delay in seconds (default from settings)
        on_retry: Callback ``(error, attempt)`` invoked before each wait
        retry_on: Exception types worth retrying; others propagate at once

    Returns:
        Decorator preserving the operation's sync/async contract

    Example:
        >>> @retry(max_retries=2, backoff=0.1, on_retry=lambda e, n: print(n))
        ... def flaky():
        ...     return call_api()
    """
    settings = get_settings()
    policy = RetryPolicy(
        max_retries=max_retries,
        strategy=BackoffStrategy(strategy or settings.retry_strategy),
        backoff=settings.retry_backoff if backoff is None else backoff,
        retry_on=retry_on,
    )

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        identity = describe_operation(func)

        def before_wait(error: BaseException, attempts: int) -> float:
            delay = policy.delay_for(attempts)
            logger.debug(
                "retry_scheduled",
                operation=identity.qualified_name,
                attempt=attempts,
                delay=delay,
                error=repr(error),
            )
            if on_retry is not None:
                on_retry(error, attempts)
            return delay

        def exhausted(error: BaseException, attempts: int) -> None:
            logger.warning(
                "retry_exhausted",
                operation=identity.qualified_name,
                attempts=attempts,
                error=repr(error),
            )

        if is_async_operation(func):
            @functools.wraps(func)
            async def async_wrapper(*args: P.args, **kwargs: P.kwargs) -> Any:
                attempts = 0
                while True:
                    attempts += 1
                    try:
                        return await func(*args, **kwargs)
                    except Exception as e:
                        if not policy.should_retry(attempts, e):
                            if attempts > policy.max_retries:
                                exhausted(e, attempts)
                            raise
                        delay = before_wait(e, attempts)
                    await asyncio.sleep(delay)

            return async_wrapper  # type: ignore[return-value]

        @functools.wraps(func)
        def sync_wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            attempts = 0
            while True:
                attempts += 1
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    if not policy.should_retry(attempts, e):
                        if attempts > policy.max_retries:
                            exhausted(e, attempts)
                        raise
                    delay = before_wait(e, attempts)
                time.sleep(delay)

        return sync_wrapper

    return decorator


__all__ = ["BackoffStrategy", "RetryPolicy", "retry"]
