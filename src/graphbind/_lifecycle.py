from __future__ import annotations

import inspect
import logging
import threading
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from ._errors import DisposalError


if TYPE_CHECKING:
    from collections.abc import Callable, Generator

    from ._context import Context
    from ._factory import Factory


logger = logging.getLogger(__name__)


@runtime_checkable
class Initializable(Protocol):
    """Components implementing it are initialized by the container right after construction."""

    def initialize(self) -> None: ...


@runtime_checkable
class Disposable(Protocol):
    """Components implementing it are destroyed by the container when their scope ends."""

    def destroy(self) -> None: ...


def initialize_hook(instance: object) -> None:
    if isinstance(instance, Initializable):
        instance.initialize()


def destroy_hook(instance: object) -> None:
    if isinstance(instance, Disposable):
        instance.destroy()


def declares_hook(key: Any, name: str) -> bool:
    """Whether the component type `key` declares a callable `name` member."""
    if not inspect.isclass(key):
        return False
    return callable(getattr(key, name, None))


def finish_generator(gen: Generator[Any, None, None]) -> None:
    try:
        next(gen)
    except StopIteration:
        return
    msg = f"Generator constructor {gen.__qualname__} didn't stop after yielding its component"
    raise RuntimeError(msg)


class DisposalHandle:
    """Releases one created instance: runs the factory disposers, then its cleanup.

    A handle is disposed at most once, however many times `dispose()` is called.
    """

    __slots__ = ("_cleanup", "_context", "_disposed", "_factory", "_instance", "_lock")

    def __init__(
        self,
        instance: object,
        factory: Factory,
        context: Context,
        cleanup: Callable[[], None] | None = None,
    ) -> None:
        self._instance = instance
        self._factory = factory
        self._context = context
        self._cleanup = cleanup
        self._disposed = False
        self._lock = threading.Lock()

    @property
    def instance(self) -> object:
        return self._instance

    @property
    def factory(self) -> Factory:
        return self._factory

    @property
    def context(self) -> Context:
        """The context that was active when the instance was created."""
        return self._context

    @property
    def disposed(self) -> bool:
        return self._disposed

    def dispose(self) -> None:
        with self._lock:
            if self._disposed:
                return
            self._disposed = True

        logger.debug("Disposing %s created by %s", type(self._instance).__name__, self._factory.name)

        errors: list[Exception] = []
        for disposer in self._factory.disposers:
            try:
                disposer(self._instance)
            except Exception as e:  # noqa: BLE001
                errors.append(e)

        if self._cleanup is not None:
            try:
                self._cleanup()
            except Exception as e:  # noqa: BLE001
                errors.append(e)

        if len(errors) == 1:
            raise errors[0]
        if errors:
            raise DisposalError(errors)

    def __repr__(self) -> str:
        return f"DisposalHandle({self._factory.name}, disposed={self._disposed})"


def dispose_all(handles: list[DisposalHandle]) -> None:
    """Dispose `handles` last-in first-out, attempting every one before raising."""
    errors: list[Exception] = []
    for handle in reversed(handles):
        try:
            handle.dispose()
        except DisposalError as e:
            errors.extend(e.errors)
        except Exception as e:  # noqa: BLE001
            errors.append(e)

    if errors:
        raise DisposalError(errors)
