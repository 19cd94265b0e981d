"""Tests for the operation wrapper contract helpers."""

import gc

import pytest

from opguard.execution.operation import (
    CallContext,
    OperationIdentity,
    ScopedState,
    StateScope,
    describe_operation,
    is_async_operation,
    resolve_scope,
)


class Client:
    def fetch(self, url, retries=0):
        return url

    async def fetch_async(self, url):
        return url

    @classmethod
    def build(cls, name):
        return cls()


class SubClient(Client):
    pass


def module_level(a, b):
    return a + b


class TestDescribeOperation:
    """Tests for describe_operation()."""

    def test_method(self):
        identity = describe_operation(Client.fetch)
        assert identity == OperationIdentity(scope="Client", name="fetch", is_method=True)
        assert identity.qualified_name == "Client.fetch"

    def test_classmethod_underlying_function(self):
        identity = describe_operation(Client.__dict__["build"].__func__)
        assert identity.is_method
        assert identity.scope == "Client"

    def test_plain_function_uses_module(self):
        identity = describe_operation(module_level)
        assert identity.scope == __name__
        assert identity.name == "module_level"
        assert not identity.is_method

    def test_nested_function_skips_locals(self):
        def inner(x):
            return x

        identity = describe_operation(inner)
        assert identity.scope == "test_nested_function_skips_locals"
        assert identity.name == "inner"


class TestOperationIdentity:
    """Tests for runtime scope and argument handling."""

    def test_scope_for_uses_receiver_class(self):
        identity = describe_operation(Client.fetch)
        assert identity.scope_for((SubClient(), "u")) == "SubClient"

    def test_scope_for_class_receiver(self):
        identity = describe_operation(Client.__dict__["build"].__func__)
        assert identity.scope_for((SubClient, "x")) == "SubClient"

    def test_scope_for_plain_function(self):
        identity = describe_operation(module_level)
        assert identity.scope_for((1, 2)) == __name__

    def test_call_args_strips_receiver(self):
        identity = describe_operation(Client.fetch)
        client = Client()
        assert identity.call_args((client, "u")) == ("u",)

    def test_call_args_plain_function(self):
        identity = describe_operation(module_level)
        assert identity.call_args((1, 2)) == (1, 2)


class TestIsAsyncOperation:
    def test_coroutine_function(self):
        assert is_async_operation(Client.fetch_async)

    def test_plain_function(self):
        assert not is_async_operation(Client.fetch)

    def test_async_callable_object(self):
        class Handler:
            async def __call__(self):
                return 1

        assert is_async_operation(Handler())


class TestCallContext:
    def test_for_call(self):
        identity = describe_operation(Client.fetch)
        client = SubClient()
        ctx = CallContext.for_call(identity, (client, "u"), {"retries": 2}, result="ok")
        assert ctx.operation_name == "fetch"
        assert ctx.scope_name == "SubClient"
        assert ctx.args == ("u",)
        assert ctx.kwargs == {"retries": 2}
        assert ctx.result == "ok"
        assert ctx.error is None

    def test_frozen(self):
        ctx = CallContext(operation_name="f", scope_name="m", args=())
        with pytest.raises(AttributeError):
            ctx.result = 1


class TestResolveScope:
    def test_explicit(self):
        assert resolve_scope("instance") is StateScope.INSTANCE
        assert resolve_scope(StateScope.DEFINITION) is StateScope.DEFINITION

    def test_default_from_settings(self, monkeypatch):
        monkeypatch.setenv("OPGUARD_STATE_SCOPE", "instance")
        assert resolve_scope(None) is StateScope.INSTANCE

    def test_invalid(self):
        with pytest.raises(ValueError):
            resolve_scope("global")


class TestScopedState:
    """Tests for per-definition and per-instance state."""

    def test_definition_scope_shares_one_object(self):
        identity = describe_operation(Client.fetch)
        state = ScopedState(dict, StateScope.DEFINITION)
        assert state.resolve(identity, (Client(),)) is state.resolve(identity, (Client(),))
        assert len(state) == 1

    def test_definition_scope_uses_shared_object(self):
        identity = describe_operation(Client.fetch)
        shared = {"k": 1}
        state = ScopedState(dict, StateScope.DEFINITION, shared=shared)
        assert state.resolve(identity, (Client(),)) is shared

    def test_instance_scope_per_receiver(self):
        identity = describe_operation(Client.fetch)
        state = ScopedState(dict, StateScope.INSTANCE)
        a, b = Client(), Client()
        assert state.resolve(identity, (a,)) is state.resolve(identity, (a,))
        assert state.resolve(identity, (a,)) is not state.resolve(identity, (b,))
        assert len(state) == 2

    def test_instance_state_dropped_with_receiver(self):
        identity = describe_operation(Client.fetch)
        state = ScopedState(dict, StateScope.INSTANCE)
        client = Client()
        state.resolve(identity, (client,))
        assert len(state) == 1
        del client
        gc.collect()
        assert len(state) == 0

    def test_instance_scope_requires_receiver(self):
        identity = describe_operation(module_level)
        state = ScopedState(dict, StateScope.INSTANCE)
        with pytest.raises(TypeError, match="requires a method receiver"):
            state.resolve(identity, (1, 2))

    def test_instance_scope_rejects_receiver_without_weakref(self):
        class Slotted:
            __slots__ = ()

            def fetch(self):
                return 1

        identity = describe_operation(Slotted.fetch)
        state = ScopedState(dict, StateScope.INSTANCE)
        with pytest.raises(TypeError, match="__weakref__"):
            state.resolve(identity, (Slotted(),))
        assert len(state) == 0

    def test_instance_scope_accepts_slots_with_weakref(self):
        class Slotted:
            __slots__ = ("__weakref__",)

            def fetch(self):
                return 1

        identity = describe_operation(Slotted.fetch)
        state = ScopedState(dict, StateScope.INSTANCE)
        receiver = Slotted()
        assert state.resolve(identity, (receiver,)) is state.resolve(identity, (receiver,))
