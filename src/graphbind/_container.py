from __future__ import annotations

import inspect
import logging
import os
import sys
import threading
from typing import TYPE_CHECKING, Any, TypeVar, overload

from ._context import Context
from ._errors import (
    ContainerLockedError,
    CurrentlyInCreationError,
    DisposalError,
    InvalidScopeError,
    MissingDependencyError,
    MockNotAllowedError,
    NoScopeRegisteredError,
)
from ._factory import Factory
from ._lifecycle import DisposalHandle
from ._registry import Registry, select_candidate
from ._scope import PROTOTYPE, SINGLETON, PrototypeScope, Scope, SingletonScope
from ._signature import ParamKind, analyze_constructor


logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence

    from ._factory import Callback, ConditionFunc
    from ._registry import Parameter

    T = TypeVar("T")
    ObjectFactory = Callable[[], tuple[Any, DisposalHandle | None]]


TESTING_ENV = "GRAPHBIND_TESTING"

_MISSING: Any = object()


class CreationTrace:
    """Factories being created by one resolution call, outermost first.

    Threaded explicitly through the recursive resolution so that concurrent
    resolutions on other threads never see each other's in-creation marks.
    A trace belongs to the thread that started the resolution.
    """

    __slots__ = ("_ids", "_owner")

    def __init__(self, ids: frozenset[int] = frozenset()) -> None:
        self._ids = ids
        self._owner = threading.get_ident()

    def __contains__(self, factory: Factory) -> bool:
        return factory.id in self._ids

    def enter(self, factory: Factory) -> None:
        self._ids = self._ids | {factory.id}

    def leave(self, factory: Factory) -> None:
        self._ids = self._ids - {factory.id}

    def fork(self) -> CreationTrace:
        """Trace for a provider invoked later: inherits the marks only on the owning thread."""
        if threading.get_ident() != self._owner:
            return CreationTrace()
        return CreationTrace(self._ids)


class Container:
    """Dependency injection container.

    Constructors are registered once, then components are resolved by key (their
    type). Every dependency of a constructor is itself resolved from the
    container, created at most once per scope and released in reverse creation
    order when the scope is destroyed.

    A child container resolves locally registered (or mocked) keys itself and
    delegates everything else to its parent.
    """

    def __init__(self, parent: Container | None = None) -> None:
        self._parent = parent
        self._registry = Registry()
        self._lock = threading.RLock()
        self._locked = False
        self._scopes: dict[str, Scope] = {SINGLETON: SingletonScope(), PROTOTYPE: PrototypeScope()}
        self._mocks_lock = threading.Lock()
        self._mocks: dict[Any, Factory] = {}

    @property
    def parent(self) -> Container | None:
        return self._parent

    @property
    def locked(self) -> bool:
        return self._locked

    # -- registration

    def register(  # noqa: PLR0913
        self,
        ctor: Any,
        *,
        scope: str = SINGLETON,
        primary: bool = False,
        alternative: bool = False,
        startup: bool = False,
        priority: int = 0,
        qualifiers: Iterable[Any] = (),
        initializers: Sequence[Callback] = (),
        disposers: Sequence[Callback] = (),
        conditions: Sequence[ConditionFunc] = (),
    ) -> Factory | None:
        """Register a constructor and return the factory describing it.

        Returns None, registering nothing, when one of the `conditions` rejects the
        factory. Raises CycleDetectedError, leaving the container untouched, when
        the constructor would close a dependency cycle.
        """
        with self._lock:
            if self._locked:
                msg = "Container is locked: constructors can't be registered after initialize()"
                raise ContainerLockedError(msg)

            factory = analyze_constructor(
                ctor,
                scope=scope,
                primary=primary,
                alternative=alternative,
                startup=startup,
                priority=priority,
                qualifiers=qualifiers,
                initializers=initializers,
                disposers=disposers,
                conditions=conditions,
            )
            for condition in factory.conditions:
                if not condition(self, factory):
                    logger.debug("Registration of %s rejected by condition %r", factory.name, condition)
                    return None

            self._registry.register(factory)
        return factory

    def register_scope(self, name: str, scope: Scope) -> None:
        name = name.strip()
        if not name:
            msg = "Scope name can't be empty"
            raise InvalidScopeError(msg)
        if name in (SINGLETON, PROTOTYPE):
            msg = f"Built-in scope {name!r} can't be replaced"
            raise InvalidScopeError(msg)
        if not isinstance(scope, Scope):
            msg = f"Expected a Scope for {name!r}, got {type(scope).__name__}"
            raise InvalidScopeError(msg)

        with self._lock:
            if self._locked:
                msg = "Container is locked: scopes can't be registered after initialize()"
                raise ContainerLockedError(msg)
            self._scopes[name] = scope
        logger.debug("Registered scope %r (%s)", name, type(scope).__name__)

    def initialize(self, ctx: Context | None = None) -> None:
        """Lock the container, then create the startup components.

        Startup components are created in ascending (priority, registration
        order); the first failure aborts and is raised as is.
        """
        with self._lock:
            if self._locked:
                msg = "Container is already initialized"
                raise ContainerLockedError(msg)
            self._locked = True

        ctx = ctx if ctx is not None else Context.background()
        startup = sorted((f for f in self._registry.factories() if f.startup), key=lambda f: (f.priority, f.order))

        logger.info("Initializing container: %d startup component(s)", len(startup))
        for factory in startup:
            self._create(factory, ctx, CreationTrace(), managed=True)
        logger.info("Container initialized")

    # -- resolution

    @overload
    def get(self, key: type[T], ctx: Context | None = None) -> T: ...

    @overload
    def get(self, key: Any, ctx: Context | None = None) -> Any: ...

    def get(self, key: Any, ctx: Context | None = None) -> Any:
        """Resolve the component of `key` (a type, or a Qualified/Provider/Unmanaged annotation)."""
        ctx = ctx if ctx is not None else Context.background()
        return self._argument(self._registry.parameter(key), ctx, CreationTrace())

    def contains(self, key: Any) -> bool:
        """Whether this container (ignoring its ancestors) has a candidate or a mock for `key`."""
        param = self._registry.parameter(key)
        return param.has_candidates() or self._mock_for(param) is not None

    def factories(self, key: Any = None) -> list[Factory]:
        """Factories registered in this container, in registration order."""
        return self._registry.factories(key)

    def filter(
        self,
        *,
        primary: bool = False,
        startup: bool = False,
        scope: str | None = None,
        qualifiers: Iterable[Any] = (),
        condition: Callable[[Factory], bool] | None = None,
    ) -> list[Factory]:
        """Registered factories matching every given criterion, in (priority, order).

        A factory matches `qualifiers` when it carries any of them.
        """
        required = frozenset(qualifiers)
        found = [
            f
            for f in self._registry.factories()
            if (not primary or f.primary)
            and (not startup or f.startup)
            and (scope is None or f.scope == scope)
            and (not required or not required.isdisjoint(f.qualifiers))
            and (condition is None or condition(f))
        ]
        return sorted(found, key=lambda f: (f.priority, f.order))

    def resolve_args(self, factory: Factory, ctx: Context | None = None) -> tuple[list[Any], dict[str, Any]]:
        """Resolve the arguments of `factory`, ready to call its constructor."""
        ctx = ctx if ctx is not None else Context.background()
        return self._resolve_args(factory, ctx, CreationTrace())

    def get_object_factory(
        self, factory: Factory, *, managed: bool = True, ctx: Context | None = None
    ) -> ObjectFactory:
        """Return a deferred ``() -> (instance, handle)`` creating `factory`.

        Managed objects go through their scope and come with no handle; unmanaged
        ones are always new and their handle belongs to the caller.
        """
        ctx = ctx if ctx is not None else Context.background()
        return lambda: self._create(factory, ctx, CreationTrace(), managed=managed)

    def get_object_factory_for(self, key: Any, *, managed: bool = True, ctx: Context | None = None) -> ObjectFactory:
        ctx = ctx if ctx is not None else Context.background()
        param = self._registry.parameter(key)
        return lambda: self._resolve(param, ctx, CreationTrace(), managed=managed)

    def _argument(self, param: Parameter, ctx: Context, trace: CreationTrace) -> Any:
        shape = param.shape
        if shape.kind is ParamKind.CONTEXT:
            return ctx
        if shape.kind is ParamKind.CONTAINER:
            return self

        if shape.provider:
            return shape.wrap(self._supplier(param, ctx, trace, managed=not shape.unmanaged))  # type: ignore[misc]

        instance, _ = self._resolve(param, ctx, trace, managed=True)
        if shape.qualified:
            return shape.wrap(instance)  # type: ignore[misc]
        return instance

    def _supplier(self, param: Parameter, ctx: Context, trace: CreationTrace, *, managed: bool) -> Callable[[], Any]:
        def supply() -> Any:
            instance, handle = self._resolve(param, ctx, trace.fork(), managed=managed)
            if managed:
                return instance
            return instance, handle

        return supply

    def _resolve(
        self, param: Parameter, ctx: Context, trace: CreationTrace, *, managed: bool
    ) -> tuple[Any, DisposalHandle | None]:
        candidates = param.resolvable()
        mock = self._mock_for(param)
        if mock is not None:
            candidates = [mock, *candidates]
        elif not candidates and self._parent is not None:
            parent = self._parent
            return parent._resolve(parent._registry.parameter(param.key), ctx, trace, managed=managed)  # noqa: SLF001

        factory = select_candidate(param.key, candidates)
        return self._create(factory, ctx, trace, managed=managed)

    def _resolve_args(self, factory: Factory, ctx: Context, trace: CreationTrace) -> tuple[list[Any], dict[str, Any]]:
        args: list[Any] = []
        kwargs: dict[str, Any] = {}
        for argument, param in zip(factory.arguments, factory.parameters):
            if argument.optional and not param.shape.reserved and not self._available(param):
                value = argument.default
            else:
                value = self._argument(param, ctx, trace)

            if argument.keyword:
                kwargs[argument.name] = value
            else:
                args.append(value)
        return args, kwargs

    def _create(
        self, factory: Factory, ctx: Context, trace: CreationTrace, *, managed: bool
    ) -> tuple[Any, DisposalHandle | None]:
        if factory.mock is not None:
            return factory.mock(ctx), None

        missing = [
            param.key
            for argument, param in zip(factory.arguments, factory.parameters)
            if not argument.optional
            and not param.shape.reserved
            and not param.shape.provider
            and not self._available(param)
        ]
        if missing:
            raise MissingDependencyError(factory, missing)

        scope = self._scopes.get(factory.scope)
        if scope is None:
            raise NoScopeRegisteredError(factory.scope)

        def create() -> tuple[Any, DisposalHandle | None]:
            if factory in trace:
                raise CurrentlyInCreationError(factory)

            logger.debug("Creating %s", factory.name)
            trace.enter(factory)
            try:
                args, kwargs = self._resolve_args(factory, ctx, trace)
                instance, cleanup = factory.create(args, kwargs)
                try:
                    for initializer in factory.initializers:
                        initializer(instance)
                except Exception:
                    if cleanup is not None:
                        _release_failed(factory, cleanup)
                    raise
            finally:
                trace.leave(factory)

            if factory.has_disposers or cleanup is not None:
                return instance, DisposalHandle(instance, factory, ctx, cleanup)
            return instance, None

        if managed:
            return scope.get(ctx, factory, create), None
        return create()

    def _available(self, param: Parameter) -> bool:
        if param.has_candidates() or self._mock_for(param) is not None:
            return True
        parent = self._parent
        return parent is not None and parent._available(parent._registry.parameter(param.key))  # noqa: SLF001

    # -- teardown

    def destroy(self) -> None:
        """Dispose the components of every scope and drop the mocks.

        Every scope is destroyed even when disposers fail; the failures are then
        raised together as a DisposalError.
        """
        errors: list[Exception] = []
        for scope in reversed(list(self._scopes.values())):
            try:
                scope.destroy()
            except DisposalError as e:
                errors.extend(e.errors)

        with self._mocks_lock:
            self._mocks.clear()

        if errors:
            raise DisposalError(errors)

    def destroy_singletons(self) -> None:
        self._scopes[SINGLETON].destroy()

    def destroy_object(self, key: Any, instance: object) -> None:
        """Release `instance`, a component of `key` obtained from this container.

        A cached instance is removed from its scope and disposed; any other
        instance just has the disposers of its factory run.
        """
        param = self._registry.parameter(key)
        candidates = param.resolvable()
        for factory in candidates:
            scope = self._scopes.get(factory.scope)
            handle = scope.remove(factory, instance) if scope is not None else None
            if handle is not None:
                handle.dispose()
                return

        factory = select_candidate(key, candidates)
        if factory.has_disposers:
            DisposalHandle(instance, factory, Context.background()).dispose()

    # -- testing

    def mock(self, key: Any, value: Any = _MISSING, *, factory: Callable[..., Any] | None = None) -> Callable[[], None]:
        """Override `key` with `value`, or with the result of `factory`, until the returned cleanup is called.

        `factory` is called on every resolution, with the resolution context when
        it accepts an argument. Mocks are only available while testing.
        """
        if not mocks_allowed():
            msg = f"Mocks are only available in tests (under pytest or with {TESTING_ENV}=1)"
            raise MockNotAllowedError(msg)
        if (value is _MISSING) == (factory is None):
            msg = "mock() takes either a value or a factory"
            raise TypeError(msg)

        if factory is None:

            def supply(_: Context) -> Any:
                return value

        elif _accepts_context(factory):
            supply = factory
        else:

            def supply(_: Context) -> Any:
                return factory()

        mock = Factory(key=key, constructor=supply, scope=PROTOTYPE, mock=supply)
        with self._mocks_lock:
            self._mocks[key] = mock
        logger.debug("Mocked %r", key)

        def cleanup() -> None:
            with self._mocks_lock:
                if self._mocks.get(key) is mock:
                    del self._mocks[key]

        return cleanup

    def _mock_for(self, param: Parameter) -> Factory | None:
        if param.shape.reserved:
            return None
        with self._mocks_lock:
            if not self._mocks:
                return None
            mock = self._mocks.get(param.key)
            if mock is None:
                mock = self._mocks.get(param.shape.value)
            return mock


def mocks_allowed() -> bool:
    if "pytest" in sys.modules:
        return True
    return os.environ.get(TESTING_ENV, "").strip().lower() in ("1", "true", "yes", "on")


def _accepts_context(fn: Callable[..., Any]) -> bool:
    try:
        sig = inspect.signature(fn)
    except (TypeError, ValueError):
        return False
    return len(sig.parameters) > 0


def _release_failed(factory: Factory, cleanup: Callable[[], None]) -> None:
    try:
        cleanup()
    except Exception:  # noqa: BLE001
        logger.warning("Failed to release %s after its initialization failed", factory.name, exc_info=True)
