from __future__ import annotations

import inspect
import itertools
from dataclasses import dataclass, field
from functools import partial
from typing import TYPE_CHECKING, Any

from ._lifecycle import finish_generator
from ._scope import SINGLETON


if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from ._container import Container
    from ._context import Context
    from ._registry import Parameter

    ConditionFunc = Callable[[Container, "Factory"], bool]
    Callback = Callable[[Any], None]


# Key of constructors that return no component (startup side-effect functions).
NO_VALUE: type = type(None)

_ids = itertools.count(1)


@dataclass(frozen=True)
class Argument:
    """One constructor argument, in declaration order."""

    name: str
    key: Any
    keyword: bool = False
    default: Any = inspect.Parameter.empty

    @property
    def optional(self) -> bool:
        return self.default is not inspect.Parameter.empty


@dataclass(eq=False)
class Factory:
    """A registered constructor: a node of the dependency graph.

    Describes how to build a component (the constructor and its arguments) and
    the attributes used to pick, cache and release it (scope, qualifiers,
    primary/alternative flags, priority, hooks).
    """

    key: Any
    constructor: Callable[..., Any]
    arguments: tuple[Argument, ...] = ()
    scope: str = SINGLETON
    qualifiers: frozenset[Any] = frozenset()
    primary: bool = False
    alternative: bool = False
    startup: bool = False
    priority: int = 0
    initializers: tuple[Callback, ...] = ()
    disposers: tuple[Callback, ...] = ()
    conditions: tuple[ConditionFunc, ...] = ()
    generator: bool = False
    mock: Callable[[Context], Any] | None = None
    id: int = field(default_factory=lambda: next(_ids))
    order: int = -1
    parameters: list[Parameter] = field(default_factory=list, repr=False)

    @property
    def name(self) -> str:
        if self.mock is not None:
            return f"mock for {_name(self.key)}"
        return _name(self.constructor)

    @property
    def parameter_keys(self) -> list[Any]:
        return [argument.key for argument in self.arguments]

    @property
    def returns_value(self) -> bool:
        return self.key is not NO_VALUE

    @property
    def singleton(self) -> bool:
        return self.scope == SINGLETON

    @property
    def is_mock(self) -> bool:
        return self.mock is not None

    @property
    def has_disposers(self) -> bool:
        return len(self.disposers) > 0

    def has_qualifier(self, qualifier: Any) -> bool:
        return qualifier in self.qualifiers

    def create(self, args: Sequence[Any], kwargs: dict[str, Any]) -> tuple[Any, Callable[[], None] | None]:
        """Invoke the constructor.

        Returns the component (``None`` for factories without a value) and, for
        generator constructors, the cleanup that finishes the generator.
        """
        if not self.generator:
            out = self.constructor(*args, **kwargs)
            return (out if self.returns_value else None), None

        gen = self.constructor(*args, **kwargs)
        try:
            out = next(gen)
        except StopIteration:
            msg = f"Generator constructor {self.name} didn't yield a component"
            raise RuntimeError(msg) from None
        return out, partial(finish_generator, gen)

    def __repr__(self) -> str:
        return f"Factory({self.name}, key={_name(self.key)}, scope={self.scope!r}, order={self.order})"


def _name(obj: Any) -> str:
    if isinstance(obj, partial):
        return f"partial({_name(obj.func)})"
    return getattr(obj, "__qualname__", None) or repr(obj)
