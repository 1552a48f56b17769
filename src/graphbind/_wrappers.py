"""Dependency wrappers recognised by the signature analyzer.

A constructor parameter annotated with one of these wrappers changes how the
dependency is resolved:

- ``Qualified[T, Q]``: the component of type ``T`` carrying qualifier ``Q``.
- ``Provider[T]``: a handle that resolves ``T`` (through its scope) on each
  ``get()``. Allows lazy or optional retrieval and breaking circular
  dependencies.
- ``Unmanaged[T]``: like ``Provider[T]`` but every ``get()`` creates a new
  instance that the caller owns and must dispose.

The analyzer detects the wrappers by shape (``with_value``, ``with_supplier``
and ``unmanaged`` on the generic origin), so other generic classes exposing the
same members are handled the same way.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Generic, TypeVar


if TYPE_CHECKING:
    from collections.abc import Callable

    from ._lifecycle import DisposalHandle


T = TypeVar("T")
Q = TypeVar("Q")


class Qualified(Generic[T, Q]):
    """Injects the ``T`` component registered with the qualifier ``Q``.

    Example:
      class Replica: ...

      def make_report(db: Qualified[Database, Replica]) -> Report:
          return Report(db.get())

      container.register(make_replica_db, qualifiers=[Replica])
      container.register(make_report)

    """

    __slots__ = ("_value",)

    def __init__(self, value: T) -> None:
        self._value = value

    def get(self) -> T:
        return self._value

    @classmethod
    def with_value(cls, value: T) -> Qualified[T, Q]:
        return cls(value)

    def __repr__(self) -> str:
        return f"Qualified({self._value!r})"


class Provider(Generic[T]):
    """Provides instances of ``T`` on demand, managed by the component's scope."""

    __slots__ = ("_supplier",)

    unmanaged = False

    def __init__(self, supplier: Callable[[], T]) -> None:
        self._supplier = supplier

    def get(self) -> T:
        return self._supplier()

    @classmethod
    def with_supplier(cls, supplier: Callable[[], T]) -> Provider[T]:
        return cls(supplier)


class Unmanaged(Generic[T]):
    """Creates new, unmanaged instances of ``T``.

    The container keeps no track of the instances; whoever calls ``get()`` is
    responsible for disposing the returned handle (when there is one).
    """

    __slots__ = ("_supplier",)

    unmanaged = True

    def __init__(self, supplier: Callable[[], tuple[T, DisposalHandle | None]]) -> None:
        self._supplier = supplier

    def get(self) -> tuple[T, DisposalHandle | None]:
        return self._supplier()

    @classmethod
    def with_supplier(cls, supplier: Callable[[], tuple[T, DisposalHandle | None]]) -> Unmanaged[T]:
        return cls(supplier)
