"""
Timing diagnostics for operations.

Provides two decorators:
- ``@timed()``: logs ``operation_completed`` (INFO) or ``operation_failed``
  (WARNING) with ``duration_ms`` through the structured logger
- ``@measure(logger=..., memory=True)``: builds a ``Measurement`` per call
  and hands it to a diagnostic sink

Design:
- Timer is ``time.perf_counter``
- Failures are measured too; the error is re-raised unchanged
- Memory deltas come from ``tracemalloc`` (started on demand and left running)
"""

from __future__ import annotations

import functools
import time
import tracemalloc
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, ParamSpec, TypeVar

from opguard.core.logging import get_logger
from opguard.execution.operation import OperationIdentity, describe_operation, is_async_operation

T = TypeVar("T")
P = ParamSpec("P")

logger = get_logger(__name__)

MeasurementSink = Callable[["Measurement"], Any]


@dataclass
class Measurement:
    """Duration (and optionally memory delta) of one call."""

    operation: str
    started_at: float = field(default_factory=time.perf_counter)
    ended_at: float | None = None
    memory_bytes: int | None = None
    failed: bool = False

    def stop(self) -> Measurement:
        """Record end time."""
        self.ended_at = time.perf_counter()
        return self

    @property
    def duration_ms(self) -> float:
        end = self.ended_at if self.ended_at is not None else time.perf_counter()
        return (end - self.started_at) * 1000

    def to_log_dict(self) -> dict[str, Any]:
        """Convert to dict for logging."""
        result: dict[str, Any] = {
            "operation": self.operation,
            "duration_ms": round(self.duration_ms, 2),
            "failed": self.failed,
        }
        if self.memory_bytes is not None:
            result["memory_bytes"] = self.memory_bytes
        return result


@contextmanager
def _measured(identity: OperationIdentity, args: tuple[Any, ...], memory: bool) -> Iterator[Measurement]:
    if memory and not tracemalloc.is_tracing():
        tracemalloc.start()
    start_memory = tracemalloc.get_traced_memory()[0] if memory else 0

    measurement = Measurement(operation=f"{identity.scope_for(args)}.{identity.name}")
    try:
        yield measurement
    except Exception:
        measurement.failed = True
        raise
    finally:
        measurement.stop()
        if memory:
            measurement.memory_bytes = tracemalloc.get_traced_memory()[0] - start_memory


def _log_measurement(measurement: Measurement) -> None:
    logger.info("operation_measured", **measurement.to_log_dict())


def timed(operation: str | None = None) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """
    Decorator that logs how long each call took.

    Args:
        operation: Name to log (defaults to ``Scope.name`` of the call)
    """

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        identity = describe_operation(func)

        def report(measurement: Measurement) -> None:
            name = operation or measurement.operation
            duration_ms = round(measurement.duration_ms, 2)
            if measurement.failed:
                logger.warning("operation_failed", operation=name, duration_ms=duration_ms)
            else:
                logger.info("operation_completed", operation=name, duration_ms=duration_ms)

        if is_async_operation(func):
            @functools.wraps(func)
            async def async_wrapper(*args: P.args, **kwargs: P.kwargs) -> Any:
                try:
                    with _measured(identity, args, memory=False) as measurement:
                        return await func(*args, **kwargs)
                finally:
                    report(measurement)

            return async_wrapper  # type: ignore[return-value]

        @functools.wraps(func)
        def sync_wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            try:
                with _measured(identity, args, memory=False) as measurement:
                    return func(*args, **kwargs)
            finally:
                report(measurement)

        return sync_wrapper

    return decorator


def measure(
    logger: MeasurementSink | None = None,
    memory: bool = False,
) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """
    Decorator that hands a ``Measurement`` of every call to a sink.

    Usage:
        samples = []

        @measure(logger=samples.append, memory=True)
        def build_index(rows):
            return {r.id: r for r in rows}

    Args:
        logger: Callable receiving each Measurement (default: structured log at INFO)
        memory: Include the traced memory delta in bytes
    """
    sink = logger or _log_measurement

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        identity = describe_operation(func)

        if is_async_operation(func):
            @functools.wraps(func)
            async def async_wrapper(*args: P.args, **kwargs: P.kwargs) -> Any:
                try:
                    with _measured(identity, args, memory) as measurement:
                        return await func(*args, **kwargs)
                finally:
                    sink(measurement)

            return async_wrapper  # type: ignore[return-value]

        @functools.wraps(func)
        def sync_wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            try:
                with _measured(identity, args, memory) as measurement:
                    return func(*args, **kwargs)
            finally:
                sink(measurement)

        return sync_wrapper

    return decorator


__all__ = ["Measurement", "MeasurementSink", "timed", "measure"]
