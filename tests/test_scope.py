import unittest
from typing import Protocol, runtime_checkable
from unittest.mock import MagicMock

import pytest

from graphbind import (
    CandidateNotFoundError,
    Container,
    Context,
    ContextScope,
    MissingDependencyError,
    ScopeNotActiveError,
    SingletonScope,
)


class TestChildContainerBehavior(unittest.TestCase):
    parent: Container
    child: Container

    def setUp(self):
        self.parent = Container()
        self.child = Container(self.parent)

    def test_child_registration_overrides_parent_registration(self):
        class Service: ...

        parent_instance = Service()
        child_instance = Service()

        self.parent.register(parent_instance)
        self.child.register(child_instance)

        assert self.child.get(Service) is child_instance
        assert self.parent.get(Service) is parent_instance

    def test_child_resolves_from_parent_when_not_registered_locally(self):
        class Service: ...

        instance = Service()
        self.parent.register(instance)

        assert self.child.get(Service) is instance

    def test_child_dependencies_are_satisfied_by_parent(self):
        class Repo: ...

        class Service:
            def __init__(self, repo: Repo):
                self.repo = repo

        self.parent.register(Repo)
        self.child.register(Service)

        assert self.child.get(Service).repo is self.parent.get(Repo)

    def test_contains_ignores_parent(self):
        class Service: ...

        self.parent.register(Service)

        assert self.parent.contains(Service)
        assert not self.child.contains(Service)

    def test_child_missing_dependency_raises(self):
        class Repo: ...

        class Service:
            def __init__(self, repo: Repo):
                self.repo = repo

        self.child.register(Service)

        with pytest.raises(MissingDependencyError):
            self.child.get(Service)
        with pytest.raises(CandidateNotFoundError):
            self.child.get(Repo)

    def test_child_resolves_runtime_checkable_protocol_from_parent(self):
        @runtime_checkable
        class SupportsFoo(Protocol):
            def foo(self) -> int: ...

        class Impl:
            def foo(self) -> int:
                return 1

        self.parent.register(Impl)

        assert isinstance(self.child.get(SupportsFoo), Impl)


class TestLifetimeControl(unittest.TestCase):
    cont: Container

    def setUp(self):
        self.cont = Container()

    def test_singleton_returns_same_instance(self):
        class A: ...

        self.cont.register(A)
        a1 = self.cont.get(A)
        a2 = self.cont.get(A)
        assert a2 is a1, "singleton should return the cached instance"

    def test_prototype_returns_new_instances(self):
        class A: ...

        self.cont.register(A, scope="prototype")
        a1 = self.cont.get(A)
        a2 = self.cont.get(A)
        assert a2 is not a1, "prototype should return new instances"

    def test_registered_instance_is_always_singleton(self):
        class A: ...

        inst = A()
        self.cont.register(inst, scope="prototype")
        assert self.cont.get(A) is inst
        assert self.cont.get(A) is inst

    def test_none_is_not_cached(self):
        class A: ...

        made = MagicMock(return_value=None)

        def maybe() -> A | None:
            return made()

        self.cont.register(maybe)
        assert self.cont.get(A) is None
        assert self.cont.get(A) is None
        assert made.call_count == 2

    def test_destroy_singletons_creates_new_instances(self):
        class A: ...

        self.cont.register(A)
        a1 = self.cont.get(A)
        self.cont.destroy_singletons()
        assert self.cont.get(A) is not a1


def test_singleton_scope_lookup():
    scope = SingletonScope()
    c = Container()

    class A: ...

    factory = c.register(A)

    assert scope.get_singleton(factory) == (False, None)
    instance = scope.get(Context.background(), factory, lambda: (A(), None))
    assert scope.get_singleton(factory) == (True, instance)
    assert scope.get(Context.background(), factory, lambda: (A(), None)) is instance


def test_singleton_scope_disposes_race_loser():
    scope = SingletonScope()
    c = Container()

    class A: ...

    factory = c.register(A)
    winner = A()
    loser_handle = MagicMock()

    def create():
        # another resolution stores its instance while this one is being created
        scope.get(Context.background(), factory, lambda: (winner, None))
        return A(), loser_handle

    assert scope.get(Context.background(), factory, create) is winner
    loser_handle.dispose.assert_called_once()


def test_singleton_scope_swallows_race_loser_disposal_failure(caplog):
    scope = SingletonScope()
    c = Container()

    class A: ...

    factory = c.register(A)
    winner = A()
    loser_handle = MagicMock()
    loser_handle.dispose.side_effect = RuntimeError("boom")

    def create():
        scope.get(Context.background(), factory, lambda: (winner, None))
        return A(), loser_handle

    assert scope.get(Context.background(), factory, create) is winner
    assert "Failed to dispose" in caplog.text


class TestContextScope(unittest.TestCase):
    cont: Container
    scope: ContextScope

    class Session:
        def __init__(self):
            self.closed = False

        def destroy(self) -> None:
            self.closed = True

    def setUp(self):
        self.cont = Container()
        self.scope = ContextScope()
        self.cont.register_scope("request", self.scope)
        self.cont.register(self.Session, scope="request")

    def test_instances_are_shared_within_a_context(self):
        ctx = self.scope.begin(Context.background())
        try:
            s1 = self.cont.get(self.Session, ctx)
            s2 = self.cont.get(self.Session, ctx.with_value("user", "alice"))
            assert s1 is s2
        finally:
            self.scope.end(ctx)

    def test_contexts_do_not_share_instances(self):
        ctx1 = self.scope.begin(Context.background())
        ctx2 = self.scope.begin(Context.background())

        assert self.cont.get(self.Session, ctx1) is not self.cont.get(self.Session, ctx2)

    def test_end_disposes_the_context_instances(self):
        ctx = self.scope.begin(Context.background())
        session = self.cont.get(self.Session, ctx)
        assert self.scope.active(ctx)

        self.scope.end(ctx)

        assert session.closed
        assert not self.scope.active(ctx)
        with pytest.raises(ScopeNotActiveError):
            self.cont.get(self.Session, ctx)

    def test_resolution_outside_a_context_raises(self):
        with pytest.raises(ScopeNotActiveError):
            self.cont.get(self.Session)

    def test_destroy_disposes_every_context(self):
        ctx1 = self.scope.begin(Context.background())
        ctx2 = self.scope.begin(Context.background())
        s1 = self.cont.get(self.Session, ctx1)
        s2 = self.cont.get(self.Session, ctx2)

        self.cont.destroy()

        assert s1.closed
        assert s2.closed
