"""Operation wrapper contract.

Every wrapper in ``opguard.execution`` follows the same calling convention:

- The wrapped callable keeps its contract. A plain function stays a plain
  function (sync in, sync out); a coroutine function stays a coroutine
  function (async in, async out). The choice is made once, at decoration
  time, with ``inspect.iscoroutinefunction``.
- ``functools.wraps`` is applied, so name, qualname, docstring and
  ``__wrapped__`` survive and wrappers stack in any order.
- Wrapper state (cache keys, breaker state, windows, timers) is created at
  decoration time and closed over by the wrapper; it outlives any single
  invocation.

This module holds the pieces the wrappers share: how an operation is named
(``OperationIdentity``), the per-call context handed to hooks
(``CallContext``), and how state is shared between instances of the owning
class (``StateScope`` / ``ScopedState``).

Example:
    >>> class Client:
    ...     def fetch(self, url): ...
    >>> identity = describe_operation(Client.fetch)
    >>> identity.scope, identity.name, identity.is_method
    ('Client', 'fetch', True)
"""

from __future__ import annotations

import inspect
import threading
import weakref
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

from opguard.core.settings import get_settings

T = TypeVar("T")

_RECEIVER_NAMES = ("self", "cls")


class StateScope(str, Enum):
    """How wrapper state is shared across instances of the owning class."""

    DEFINITION = "definition"  # One state object per decorated definition
    INSTANCE = "instance"      # One state object per receiver


@dataclass(frozen=True)
class OperationIdentity:
    """Naming of a wrapped operation, used to build state keys and messages.

    Attributes:
        scope: Owning class name, or module name for plain functions
        name: Function name
        is_method: First parameter is ``self``/``cls``; the receiver is then
            excluded from argument serialization and used as scope at runtime
    """

    scope: str
    name: str
    is_method: bool = False

    @property
    def qualified_name(self) -> str:
        return f"{self.scope}.{self.name}"

    def scope_for(self, args: tuple[Any, ...]) -> str:
        """Scope name for one call: the receiver's class when bound."""
        if self.is_method and args:
            receiver = args[0]
            owner = receiver if isinstance(receiver, type) else type(receiver)
            return owner.__name__
        return self.scope

    def call_args(self, args: tuple[Any, ...]) -> tuple[Any, ...]:
        """Positional arguments without the receiver."""
        if self.is_method and args:
            return args[1:]
        return args


def describe_operation(func: Callable[..., Any]) -> OperationIdentity:
    """Build the identity of a callable from its qualname and signature."""
    name = getattr(func, "__name__", type(func).__name__)
    qualname = getattr(func, "__qualname__", name)

    try:
        params = list(inspect.signature(func).parameters)
    except (TypeError, ValueError):
        params = []
    is_method = bool(params) and params[0] in _RECEIVER_NAMES

    owners = [part for part in qualname.split(".")[:-1] if part != "<locals>"]
    if owners:
        scope = owners[-1]
    else:
        scope = getattr(func, "__module__", None) or "<unknown>"

    return OperationIdentity(scope=scope, name=name, is_method=is_method)


def is_async_operation(func: Callable[..., Any]) -> bool:
    """True when calling ``func`` produces an awaitable to be awaited."""
    if inspect.iscoroutinefunction(func):
        return True
    call = getattr(func, "__call__", None)
    return call is not None and inspect.iscoroutinefunction(call)


@dataclass(frozen=True)
class CallContext:
    """Per-invocation context handed to lifecycle hooks.

    Built fresh for every call. ``args`` excludes the receiver of a method;
    ``result`` is set for after-hooks, ``error`` for error-hooks.
    """

    operation_name: str
    scope_name: str
    args: tuple[Any, ...]
    kwargs: dict[str, Any] = field(default_factory=dict)
    result: Any = None
    error: BaseException | None = None

    @classmethod
    def for_call(
        cls,
        identity: OperationIdentity,
        args: tuple[Any, ...],
        kwargs: dict[str, Any],
        **extra: Any,
    ) -> CallContext:
        return cls(
            operation_name=identity.name,
            scope_name=identity.scope_for(args),
            args=identity.call_args(args),
            kwargs=dict(kwargs),
            **extra,
        )


def resolve_scope(scope: StateScope | str | None) -> StateScope:
    """Explicit scope, or the configured default."""
    if scope is None:
        return StateScope(get_settings().state_scope)
    return StateScope(scope)


class ScopedState(Generic[T]):
    """State object(s) for one decoration, shared per definition or per receiver.

    With ``StateScope.DEFINITION`` every call sees the same object (created
    eagerly, or the ``shared`` object supplied by the caller). With
    ``StateScope.INSTANCE`` each receiver gets its own object, dropped when
    the receiver is garbage collected.
    """

    def __init__(
        self,
        factory: Callable[[], T],
        scope: StateScope,
        shared: T | None = None,
    ):
        self._factory = factory
        self.scope = scope
        self._shared: T | None = None
        if scope is StateScope.DEFINITION:
            self._shared = shared if shared is not None else factory()
        self._per_instance: dict[int, T] = {}
        self._lock = threading.Lock()

    def resolve(self, identity: OperationIdentity, args: tuple[Any, ...]) -> T:
        if self._shared is not None:
            return self._shared

        if not (identity.is_method and args):
            raise TypeError(
                f"{identity.name}: instance-scoped state requires a method receiver"
            )

        receiver = args[0]
        key = id(receiver)
        with self._lock:
            state = self._per_instance.get(key)
            if state is None:
                try:
                    weakref.finalize(receiver, self._per_instance.pop, key, None)
                except TypeError as e:
                    raise TypeError(
                        f"{identity.name}: instance-scoped state needs weak references to "
                        f"{type(receiver).__name__}; add '__weakref__' to its __slots__"
                    ) from e
                state = self._factory()
                self._per_instance[key] = state
        return state

    def __len__(self) -> int:
        if self._shared is not None:
            return 1
        with self._lock:
            return len(self._per_instance)


__all__ = [
    "StateScope",
    "OperationIdentity",
    "describe_operation",
    "is_async_operation",
    "CallContext",
    "resolve_scope",
    "ScopedState",
]
