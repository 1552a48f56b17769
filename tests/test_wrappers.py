import unittest
from unittest.mock import MagicMock

import pytest

from graphbind import CandidateNotFoundError, Container, Context, DisposalHandle, Provider, Qualified, Unmanaged


class Database:
    def __init__(self, name: str = "primary"):
        self.name = name


class Replica: ...


class Connection:
    def __init__(self):
        self.closed = False

    def destroy(self) -> None:
        self.closed = True


class TestWrappers(unittest.TestCase):
    cont: Container

    def setUp(self):
        self.cont = Container()

        def make_primary() -> Database:
            return Database("primary")

        def make_replica() -> Database:
            return Database("replica")

        self.cont.register(make_primary, primary=True)
        self.cont.register(make_replica, qualifiers=[Replica])
        self.cont.register(Connection, scope="prototype")

    def test_qualified_dependency(self):
        class Report:
            def __init__(self, db: Qualified[Database, Replica]):
                self.db = db.get()

        self.cont.register(Report)

        assert self.cont.get(Report).db.name == "replica"
        assert self.cont.get(Database).name == "primary"

    def test_get_qualified_key(self):
        db = self.cont.get(Qualified[Database, Replica])
        assert isinstance(db, Qualified)
        assert db.get() is self.cont.get(Qualified[Database, Replica]).get()

    def test_provider_resolves_through_the_scope(self):
        class Service:
            def __init__(self, db: Provider[Database]):
                self.db = db

        self.cont.register(Service)
        service = self.cont.get(Service)

        assert service.db.get() is self.cont.get(Database)
        assert service.db.get() is service.db.get()

    def test_provider_of_prototype_creates_on_each_get(self):
        provider = self.cont.get(Provider[Connection])
        assert provider.get() is not provider.get()

    def test_provider_is_lazy(self):
        class Cache: ...

        class Service:
            def __init__(self, cache: Provider[Cache]):
                self.cache = cache

        self.cont.register(Service)
        service = self.cont.get(Service)

        with pytest.raises(CandidateNotFoundError):
            service.cache.get()

    def test_unmanaged_instances_are_independent(self):
        class Pool:
            def __init__(self, conns: Unmanaged[Connection]):
                self.conns = conns

        self.cont.register(Pool)
        pool = self.cont.get(Pool)

        c1, h1 = pool.conns.get()
        c2, h2 = pool.conns.get()

        assert c1 is not c2
        assert isinstance(h1, DisposalHandle)
        assert h1 is not h2

        h1.dispose()
        assert c1.closed
        assert not c2.closed
        assert h1.disposed
        assert not h2.disposed

    def test_unmanaged_singleton_is_not_cached(self):
        class Cache: ...

        self.cont.register(Cache)
        made = self.cont.get(Unmanaged[Cache])

        c1, h1 = made.get()
        c2, _ = made.get()
        assert c1 is not c2
        assert c1 is not self.cont.get(Cache)
        assert h1 is None

    def test_unmanaged_instances_are_not_disposed_by_the_container(self):
        disposer = MagicMock()

        class Cache: ...

        self.cont.register(Cache, disposers=[disposer])
        cache, handle = self.cont.get(Unmanaged[Cache]).get()

        self.cont.destroy()
        disposer.assert_not_called()

        handle.dispose()
        disposer.assert_called_once_with(cache)

    def test_unmanaged_handle_keeps_the_resolution_context(self):
        ctx = Context.background().with_value("request", "r-1")
        conn, handle = self.cont.get(Unmanaged[Connection], ctx).get()

        assert handle.instance is conn
        assert handle.context is ctx
        assert handle.context.value("request") == "r-1"
