from __future__ import annotations

import abc
import itertools
import logging
import threading
from typing import TYPE_CHECKING, Any

from ._errors import DisposalError, ScopeNotActiveError
from ._lifecycle import dispose_all


if TYPE_CHECKING:
    from collections.abc import Callable

    from ._context import Context
    from ._factory import Factory
    from ._lifecycle import DisposalHandle

    CreateObjectFunc = Callable[[], tuple[Any, DisposalHandle | None]]


logger = logging.getLogger(__name__)

SINGLETON = "singleton"
PROTOTYPE = "prototype"


class Scope(abc.ABC):
    """Lifecycle policy deciding whether a component is created or reused."""

    @abc.abstractmethod
    def get(self, ctx: Context, factory: Factory, create: CreateObjectFunc) -> Any:
        """Return the instance of `factory` from the underlying store, creating it if not found.

        When `create` returns a disposal handle, the scope must dispose it when the
        object is removed or when the whole scope is destroyed.
        """

    @abc.abstractmethod
    def remove(self, factory: Factory, instance: object) -> DisposalHandle | None:
        """Remove `instance` from the store; return its disposal handle, if the scope kept one."""

    @abc.abstractmethod
    def destroy(self) -> None:
        """Dispose every stored instance and empty the store."""


class PrototypeScope(Scope):
    """A new instance on every resolution; nothing is cached nor disposed."""

    def get(self, ctx: Context, factory: Factory, create: CreateObjectFunc) -> Any:
        instance, _ = create()
        return instance

    def remove(self, factory: Factory, instance: object) -> DisposalHandle | None:
        return None

    def destroy(self) -> None:
        pass


class _Store:
    """Instances of one scope, keyed by factory id, with handles kept in creation order."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._objects: dict[int, Any] = {}
        self._handles: dict[int, DisposalHandle] = {}

    def lookup(self, factory: Factory) -> tuple[bool, Any]:
        with self._lock:
            if factory.id in self._objects:
                return True, self._objects[factory.id]
            return False, None

    def get(self, factory: Factory, create: CreateObjectFunc) -> Any:
        found, instance = self.lookup(factory)
        if found:
            logger.debug("Reusing cached %s instance", factory.name)
            return instance

        # Created outside the lock: siblings may be resolved recursively meanwhile.
        instance, handle = create()

        with self._lock:
            if factory.id in self._objects:
                winner = self._objects[factory.id]
                discard = handle
            else:
                winner = instance
                discard = None
                if instance is not None:
                    self._objects[factory.id] = instance
                    if handle is not None:
                        self._handles[factory.id] = handle

        if discard is not None:
            logger.debug("Discarding %s instance created concurrently", factory.name)
            try:
                discard.dispose()
            except Exception:  # noqa: BLE001
                logger.warning("Failed to dispose discarded %s instance", factory.name, exc_info=True)

        return winner

    def remove(self, factory: Factory, instance: object) -> DisposalHandle | None:
        with self._lock:
            if self._objects.get(factory.id) is not instance:
                return None
            del self._objects[factory.id]
            return self._handles.pop(factory.id, None)

    def clear(self) -> None:
        with self._lock:
            handles = list(self._handles.values())
            self._objects.clear()
            self._handles.clear()
        dispose_all(handles)


class SingletonScope(Scope):
    """One instance per factory for the lifetime of the container.

    The constructor may run more than once when several threads race on the
    first resolution, but only one instance is ever retained and returned; the
    others are disposed.
    """

    def __init__(self) -> None:
        self._store = _Store()

    def get(self, ctx: Context, factory: Factory, create: CreateObjectFunc) -> Any:
        return self._store.get(factory, create)

    def get_singleton(self, factory: Factory) -> tuple[bool, Any]:
        """Return ``(found, instance)`` for the cached instance of `factory`."""
        return self._store.lookup(factory)

    def remove(self, factory: Factory, instance: object) -> DisposalHandle | None:
        return self._store.remove(factory, instance)

    def destroy(self) -> None:
        self._store.clear()


class ContextScope(Scope):
    """Instances shared within a context, e.g. one HTTP request.

    A store is attached to a context with `begin()`; every component of this
    scope resolved with that context (or a context derived from it) is cached
    in that store until `end()` disposes it.

    Example:
      request_scope = ContextScope()
      container.register_scope("request", request_scope)
      container.register(make_session, scope="request")

      ctx = request_scope.begin(Context.background())
      try:
          session = container.get(Session, ctx)
      finally:
          request_scope.end(ctx)

    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._stores: dict[int, _Store] = {}
        self._ids = itertools.count(1)
        self._key = object()

    def begin(self, ctx: Context) -> Context:
        with self._lock:
            store_id = next(self._ids)
            self._stores[store_id] = _Store()
        return ctx.with_value(self._key, store_id)

    def end(self, ctx: Context) -> None:
        with self._lock:
            store = self._stores.pop(ctx.value(self._key), None)
        if store is not None:
            store.clear()

    def active(self, ctx: Context) -> bool:
        return self._store(ctx) is not None

    def _store(self, ctx: Context) -> _Store | None:
        with self._lock:
            return self._stores.get(ctx.value(self._key))

    def get(self, ctx: Context, factory: Factory, create: CreateObjectFunc) -> Any:
        store = self._store(ctx)
        if store is None:
            msg = f"{factory.name} requires a context begun by its scope {factory.scope!r}"
            raise ScopeNotActiveError(msg)
        return store.get(factory, create)

    def remove(self, factory: Factory, instance: object) -> DisposalHandle | None:
        with self._lock:
            stores = list(self._stores.values())
        for store in stores:
            handle = store.remove(factory, instance)
            if handle is not None:
                return handle
        return None

    def destroy(self) -> None:
        with self._lock:
            stores = list(self._stores.values())
            self._stores.clear()

        errors: list[Exception] = []
        for store in stores:
            try:
                store.clear()
            except DisposalError as e:
                errors.extend(e.errors)
        if errors:
            raise DisposalError(errors)
