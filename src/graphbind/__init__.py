"""Graph-based dependency injection container.

Constructors (classes, annotated functions, generator functions and pre-built
instances) are registered into a container that validates the dependency graph
on every registration, then resolves components by type, creating each at most
once per scope and releasing them in reverse creation order.

Exports:
- `Container`: registers constructors and resolves components; may have a parent
  it delegates unknown keys to.
- `Context`: ambient call context carrying values, cancellation and deadlines.
- `Qualified`, `Provider`, `Unmanaged`: parameter wrappers selecting a qualified
  component, resolving lazily, or creating caller-owned instances.
- `Scope`, `SingletonScope`, `PrototypeScope`, `ContextScope`: component lifetimes.
- `Initializable`, `Disposable`, `DisposalHandle`: lifecycle hooks and handles.
- `default_container`: process-wide container for application entry points.
"""

from ._container import Container
from ._context import Context, ContextCancelledError, DeadlineExceededError
from ._default import default_container, reset_default_container
from ._errors import (
    CandidateNotFoundError,
    ContainerLockedError,
    CurrentlyInCreationError,
    CycleDetectedError,
    DIError,
    DisposalError,
    InvalidProviderError,
    InvalidScopeError,
    ManyCandidatesError,
    MissingDependencyError,
    MockNotAllowedError,
    NoScopeRegisteredError,
    RegistrationError,
    ResolutionError,
    ScopeNotActiveError,
)
from ._factory import NO_VALUE, Factory
from ._lifecycle import Disposable, DisposalHandle, Initializable
from ._scope import PROTOTYPE, SINGLETON, ContextScope, PrototypeScope, Scope, SingletonScope
from ._wrappers import Provider, Qualified, Unmanaged


__all__ = [
    "NO_VALUE",
    "PROTOTYPE",
    "SINGLETON",
    "CandidateNotFoundError",
    "Container",
    "ContainerLockedError",
    "Context",
    "ContextCancelledError",
    "ContextScope",
    "CurrentlyInCreationError",
    "CycleDetectedError",
    "DIError",
    "DeadlineExceededError",
    "Disposable",
    "DisposalError",
    "DisposalHandle",
    "Factory",
    "Initializable",
    "InvalidProviderError",
    "InvalidScopeError",
    "ManyCandidatesError",
    "MissingDependencyError",
    "MockNotAllowedError",
    "NoScopeRegisteredError",
    "PrototypeScope",
    "Provider",
    "Qualified",
    "RegistrationError",
    "ResolutionError",
    "Scope",
    "ScopeNotActiveError",
    "SingletonScope",
    "Unmanaged",
    "default_container",
    "reset_default_container",
]
