"""
Structured error types for opguard wrappers.

Every failure that a wrapper synthesizes on its own (a deadline that fired, an
open circuit, an exhausted rate-limit window, a rejected guard) is an
``OpguardError`` subclass carrying a category, retry semantics and the name of
the operation it was raised for. Failures raised by the wrapped operation
itself are never converted: they pass through every wrapper unchanged (only
``fallback`` suppresses them).

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       OpguardError                               │
        │  (category, retryable, retry_after, operation)                   │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  TimeoutFailure      CircuitOpenFailure     RateLimitFailure     │
        │  (TIMEOUT,           (CIRCUIT)              (RATE_LIMIT,         │
        │   also TimeoutError)                         retry_after)        │
        │                                                                  │
        │  GuardFailure                                                    │
        │  (GUARD)                                                         │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    Branching on the failure kind:

    >>> try:
    ...     client.fetch()
    ... except RateLimitFailure as e:
    ...     schedule_later(e.retry_after)
    ... except CircuitOpenFailure:
    ...     serve_stale()

    Serializing for logs:

    >>> TimeoutFailure(timeout=0.5, operation="fetch").to_dict()
    {'error_type': 'TimeoutFailure', 'message': 'fetch timed out after 500ms', ...}

Guardrails:
    ❌ DON'T: Wrap an operation's own exception in an OpguardError
    ✅ DO: Re-raise it unchanged so callers can still catch the original type

Tags:
    error-handling, exception-hierarchy, retry-logic, opguard
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Categories for failures synthesized by wrappers."""

    TIMEOUT = "TIMEOUT"         # Deadline elapsed before the operation settled
    CIRCUIT = "CIRCUIT"         # Breaker rejected the call
    RATE_LIMIT = "RATE_LIMIT"   # Sliding window full
    GUARD = "GUARD"             # Guard predicate rejected the call
    CONFIG = "CONFIG"           # Invalid wrapper configuration
    INTERNAL = "INTERNAL"       # Bugs, unexpected state


class OpguardError(Exception):
    """
    Base exception for every failure synthesized by an opguard wrapper.

    Subclasses set ``default_category`` and ``default_retryable`` so callers
    get sensible metadata without passing it explicitly.

    Attributes:
        message: Human-readable message (also ``str(error)``)
        category: ErrorCategory used for classification
        retryable: Whether calling again later may succeed
        retry_after: Seconds to wait before retrying, when known
        operation: Name of the wrapped operation, when known
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        retry_after: float | None = None,
        operation: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.retry_after = retry_after
        self.operation = operation

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        if self.operation is not None:
            result["operation"] = self.operation
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


class TimeoutFailure(OpguardError, TimeoutError):
    """
    Raised by the timeout guard when the deadline wins the race.

    Inherits from the built-in ``TimeoutError`` so generic handlers still
    catch it. The underlying operation is not cancelled and may still be
    running when this is raised.

    Attributes:
        timeout: The configured deadline in seconds
    """

    default_category = ErrorCategory.TIMEOUT
    default_retryable = True

    def __init__(self, timeout: float, operation: str = "operation"):
        self.timeout = timeout
        super().__init__(
            f"{operation} timed out after {_format_ms(timeout)}ms",
            operation=operation,
        )


class CircuitOpenFailure(OpguardError):
    """Raised when a circuit breaker rejects a call without invoking it."""

    default_category = ErrorCategory.CIRCUIT

    def __init__(self, operation: str | None = None, state: str = "open"):
        self.state = state
        message = "Circuit breaker is open"
        if operation:
            message = f"{message} for {operation}"
        super().__init__(message, operation=operation)


class RateLimitFailure(OpguardError):
    """
    Raised when the sliding window for a key is full.

    ``retry_after`` is the number of seconds until the oldest recorded call
    leaves the window; it never exceeds the window size.
    """

    default_category = ErrorCategory.RATE_LIMIT
    default_retryable = True

    def __init__(self, retry_after: float, operation: str | None = None):
        name = operation or "operation"
        super().__init__(
            f"Rate limit exceeded for {name}. "
            f"Try again in {math.ceil(retry_after)} seconds.",
            retry_after=retry_after,
            operation=operation,
        )


class GuardFailure(OpguardError):
    """Raised when a guard predicate rejects a call."""

    default_category = ErrorCategory.GUARD

    def __init__(self, operation: str):
        super().__init__(f"Guard failed for {operation}", operation=operation)


def _format_ms(seconds: float) -> str:
    ms = seconds * 1000
    if float(ms).is_integer():
        return str(int(ms))
    return f"{ms:g}"


def is_retryable(error: BaseException) -> bool:
    """
    Check whether an error is worth retrying.

    OpguardError subclasses answer from their own metadata; any other
    exception is treated as retryable, since the operation's own failures
    carry no retry semantics of their own.
    """
    if isinstance(error, OpguardError):
        return error.retryable
    return isinstance(error, Exception)


def get_retry_after(error: BaseException) -> float | None:
    """Get the suggested retry delay in seconds, if the error carries one."""
    if isinstance(error, OpguardError):
        return error.retry_after
    return None


__all__ = [
    "ErrorCategory",
    "OpguardError",
    "TimeoutFailure",
    "CircuitOpenFailure",
    "RateLimitFailure",
    "GuardFailure",
    "is_retryable",
    "get_retry_after",
]
