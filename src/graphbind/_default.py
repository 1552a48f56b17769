from __future__ import annotations

import threading

from ._container import Container


_lock = threading.Lock()
_default: Container | None = None


def default_container() -> Container:
    """Process-wide container, created on first use.

    Meant for application entry points; libraries should accept a Container instead.
    """
    global _default  # noqa: PLW0603
    with _lock:
        if _default is None:
            _default = Container()
        return _default


def reset_default_container() -> Container | None:
    """Forget the process-wide container and return it (not destroyed), if there was one."""
    global _default  # noqa: PLW0603
    with _lock:
        previous, _default = _default, None
        return previous
