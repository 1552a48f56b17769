from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Any

from ._errors import CandidateNotFoundError, CycleDetectedError, ManyCandidatesError
from ._factory import NO_VALUE, Factory
from ._graph import Graph
from ._signature import describe_param, is_assignable


if TYPE_CHECKING:
    from collections.abc import Sequence

    from ._signature import ParamShape


logger = logging.getLogger(__name__)


class Parameter:
    """A dependency key and the factories able to satisfy it.

    `factories` holds the exact matches, `candidates` the structural ones (a
    subclass or an implementation of a protocol). A factory is never in both.
    """

    __slots__ = ("_candidates", "_factories", "shape")

    def __init__(self, shape: ParamShape) -> None:
        self.shape = shape
        self._factories: dict[Factory, None] = {}
        self._candidates: dict[Factory, None] = {}

    @property
    def key(self) -> Any:
        return self.shape.key

    @property
    def factories(self) -> list[Factory]:
        return list(self._factories)

    @property
    def candidates(self) -> list[Factory]:
        return list(self._candidates)

    def has_candidates(self) -> bool:
        return bool(self._factories) or bool(self._candidates)

    def resolvable(self) -> list[Factory]:
        """Exact matches when there are any, otherwise structural matches."""
        return list(self._factories or self._candidates)

    def index(self, factory: Factory) -> bool:
        """Add `factory` if it is a candidate; return whether it was a new structural match."""
        if factory in self._factories or factory in self._candidates:
            return False

        is_candidate, is_exact = match(self.shape, factory)
        if not is_candidate:
            return False
        if is_exact:
            self._factories[factory] = None
            return False
        self._candidates[factory] = None
        return True

    def discard(self, factory: Factory) -> None:
        self._factories.pop(factory, None)
        self._candidates.pop(factory, None)

    def __repr__(self) -> str:
        return (
            f"Parameter({self.shape.key!r}, kind={self.shape.kind.value}, "
            f"factories={len(self._factories)}, candidates={len(self._candidates)})"
        )


def match(shape: ParamShape, factory: Factory) -> tuple[bool, bool]:
    """Return ``(is_candidate, is_exact_match)`` of `factory` for the dependency `shape`.

    Qualified dependencies only accept factories carrying the qualifier; qualified
    and provider dependencies are matched against the wrapped type.
    """
    if factory.key is NO_VALUE or shape.reserved:
        return False, False

    if shape.qualified and not factory.has_qualifier(shape.qualifier):
        return False, False

    if factory.key == shape.value:
        return True, True
    if is_assignable(factory.key, shape.value):
        return True, False
    return False, False


def select_candidate(key: Any, candidates: Sequence[Factory]) -> Factory:
    """Pick the factory that satisfies `key`.

    Several candidates are disambiguated, in this order, by:
    1. a mock always wins;
    2. exactly one primary candidate wins (several primaries: keep only them);
    3. exactly one non-alternative candidate wins (several: keep only them);
    4. the lowest priority wins.
    """
    if not candidates:
        raise CandidateNotFoundError(key)
    if len(candidates) == 1:
        return candidates[0]

    pool = sorted(candidates, key=lambda f: f.order)

    mocks = [f for f in pool if f.is_mock]
    if mocks:
        return mocks[0]

    primaries = [f for f in pool if f.primary]
    if len(primaries) == 1:
        return primaries[0]
    if primaries:
        pool = primaries

    regulars = [f for f in pool if not f.alternative]
    if len(regulars) == 1:
        return regulars[0]
    if regulars:
        pool = regulars

    lowest = min(f.priority for f in pool)
    winners = [f for f in pool if f.priority == lowest]
    if len(winners) == 1:
        return winners[0]

    raise ManyCandidatesError(key, winners)


class Registry:
    """Registered factories, the candidate index and the dependency graph.

    Mutated only while registering (single writer); parameters first requested
    after registration are indexed lazily under the same lock.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._factories: dict[Any, list[Factory]] = {}
        self._params: dict[Any, Parameter] = {}
        self.graph: Graph[Factory] = Graph(self._edges_from)

    def factories(self, key: Any = None) -> list[Factory]:
        """Registered factories of `key` (all of them when `key` is None), in registration order."""
        with self._lock:
            if key is not None:
                return list(self._factories.get(key, ()))
            return list(self.graph)

    def parameter(self, key: Any) -> Parameter:
        """Return the memoized parameter of `key`, indexing it on first use."""
        param = self._params.get(key)
        if param is not None:
            return param

        with self._lock:
            param = self._params.get(key)
            if param is None:
                param = Parameter(describe_param(key))
                for factory in self.graph:
                    self._index(param, factory)
                self._params[key] = param
        return param

    def register(self, factory: Factory) -> None:
        """Add `factory`; rolled back entirely when it introduces a cycle."""
        with self._lock:
            self._factories.setdefault(factory.key, []).append(factory)
            factory.order = self.graph.add(factory)

            for param in list(self._params.values()):
                self._index(param, factory)
            fresh = [key for key in (*factory.parameter_keys, factory.key) if key not in self._params]
            factory.parameters = [self.parameter(key) for key in factory.parameter_keys]
            self.parameter(factory.key)

            ok, cycle = self.graph.is_acyclic()
            if not ok:
                cyclic = [self.graph.node(order) for order in cycle]
                self._rollback(factory, fresh)
                raise CycleDetectedError(cycle, cyclic)

        logger.debug("Registered %r", factory)

    def _rollback(self, factory: Factory, fresh: list[Any]) -> None:
        logger.debug("Rolling back registration of %r", factory)
        self.graph.pop()

        factories = self._factories[factory.key]
        factories.remove(factory)
        if not factories:
            del self._factories[factory.key]

        for key in fresh:
            self._params.pop(key, None)
        for param in self._params.values():
            param.discard(factory)

        factory.order = -1
        factory.parameters = []

    def _index(self, param: Parameter, factory: Factory) -> None:
        if param.index(factory):
            logger.info("'%s' is a candidate for '%s'", factory.name, _name(param.key))

    def _edges_from(self, factory: Factory) -> list[int]:
        """Orders of the factories that would satisfy the arguments of `factory`.

        Providers defer resolution, so they introduce no edge.
        """
        orders: list[int] = []
        for param in factory.parameters:
            if param.shape.reserved or param.shape.provider:
                continue
            orders.extend(f.order for f in param.resolvable())
        return orders


def _name(key: Any) -> str:
    return getattr(key, "__qualname__", None) or repr(key)
