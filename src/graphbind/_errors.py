from __future__ import annotations

from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:
    from collections.abc import Sequence

    from ._factory import Factory


class DIError(RuntimeError):
    """Base class for every error raised by graphbind."""


class RegistrationError(DIError):
    pass


class ResolutionError(DIError):
    pass


class InvalidProviderError(RegistrationError, TypeError):
    """The registered value cannot be used as a constructor."""


class ContainerLockedError(RegistrationError):
    pass


class InvalidScopeError(RegistrationError, ValueError):
    pass


class CycleDetectedError(RegistrationError):
    """Registering the factory would introduce a dependency cycle.

    `cycle` holds the graph orders of the cyclic path, the first order being
    repeated at the end (e.g. ``[1, 2, 1]``).
    """

    def __init__(self, cycle: Sequence[int], factories: Sequence[Factory]) -> None:
        self.cycle = list(cycle)
        self.factories = list(factories)

        path = " -> ".join(f"[{order}] {factory.name}" for order, factory in zip(self.cycle, self.factories))
        msg = f"This component introduces a dependency cycle: {path}"
        super().__init__(msg)


class CandidateNotFoundError(ResolutionError, LookupError):
    def __init__(self, key: Any) -> None:
        self.key = key
        msg = f"No candidate found for {_describe(key)}"
        super().__init__(msg)


class ManyCandidatesError(ResolutionError):
    def __init__(self, key: Any, candidates: Sequence[Factory]) -> None:
        self.key = key
        self.candidates = list(candidates)

        msg = f"Multiple candidates found for {_describe(key)}:"
        for factory in self.candidates:
            msg += f"\n  - {factory.name} (priority={factory.priority}, order={factory.order})"
        msg += "\n\nMark one candidate as primary, the others as alternative, or give them distinct priorities."
        super().__init__(msg)


class MissingDependencyError(ResolutionError):
    def __init__(self, factory: Factory, missing: Sequence[Any]) -> None:
        self.factory = factory
        self.missing = list(missing)
        msg = f"{factory.name} depends on missing dependencies: {', '.join(_describe(k) for k in self.missing)}"
        super().__init__(msg)


class CurrentlyInCreationError(ResolutionError):
    """The requested component is already being created by this resolution (circular reference)."""

    def __init__(self, factory: Factory) -> None:
        self.factory = factory
        msg = (
            f"Requested component {factory.name} is currently in creation: "
            "is there an unresolvable circular reference?"
        )
        super().__init__(msg)


class NoScopeRegisteredError(ResolutionError):
    def __init__(self, scope: str) -> None:
        self.scope = scope
        msg = f"No scope registered for name {scope!r}"
        super().__init__(msg)


class ScopeNotActiveError(ResolutionError):
    pass


class DisposalError(DIError):
    """One or more disposers failed while tearing down components."""

    def __init__(self, errors: Sequence[BaseException]) -> None:
        self.errors = list(errors)
        msg = f"{len(self.errors)} disposer(s) failed:"
        for error in self.errors:
            msg += f"\n  - {type(error).__name__}: {error}"
        super().__init__(msg)


class MockNotAllowedError(DIError):
    pass


def _describe(key: Any) -> str:
    if isinstance(key, type):
        return key.__qualname__
    return repr(key)
