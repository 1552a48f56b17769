from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:
    from collections.abc import Callable


class ContextCancelledError(Exception):
    pass


class DeadlineExceededError(ContextCancelledError):
    pass


class Context:
    """Ambient, immutable call context threaded through a resolution.

    A context carries request-scoped values, an optional cancellation signal and
    an optional deadline. Cancelling a context cancels every context derived
    from it.

    The container never checks cancellation by itself; constructors that care
    about it declare a `Context` parameter and observe it.
    """

    __slots__ = ("_deadline", "_done", "_key", "_parent", "_value")

    def __init__(self, parent: Context | None = None) -> None:
        self._parent = parent
        self._key: Any = None
        self._value: Any = None
        self._done: threading.Event | None = None
        self._deadline = parent._deadline if parent is not None else None

    @classmethod
    def background(cls) -> Context:
        return cls()

    def with_value(self, key: Any, value: Any) -> Context:
        child = Context(self)
        child._key = key
        child._value = value
        return child

    def value(self, key: Any, default: Any = None) -> Any:
        ctx: Context | None = self
        while ctx is not None:
            if ctx._key is not None and ctx._key == key:
                return ctx._value
            ctx = ctx._parent
        return default

    def with_cancel(self) -> tuple[Context, Callable[[], None]]:
        """Return a child context and the function that cancels it."""
        child = Context(self)
        child._done = threading.Event()
        return child, child._done.set

    def with_timeout(self, seconds: float) -> tuple[Context, Callable[[], None]]:
        child, cancel = self.with_cancel()
        deadline = time.monotonic() + seconds
        if child._deadline is None or deadline < child._deadline:
            child._deadline = deadline
        return child, cancel

    @property
    def deadline(self) -> float | None:
        """Deadline on the `time.monotonic()` clock, if any."""
        return self._deadline

    @property
    def cancelled(self) -> bool:
        return self.err() is not None

    def err(self) -> ContextCancelledError | None:
        ctx: Context | None = self
        while ctx is not None:
            if ctx._done is not None and ctx._done.is_set():
                return ContextCancelledError("context cancelled")
            ctx = ctx._parent
        if self._deadline is not None and time.monotonic() >= self._deadline:
            return DeadlineExceededError("context deadline exceeded")
        return None

    def __repr__(self) -> str:
        return f"Context(cancelled={self.cancelled}, deadline={self._deadline})"
