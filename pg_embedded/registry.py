"""Process-wide registry of live instances, drained once at interpreter exit."""

from __future__ import annotations

import atexit
import logging
import signal
import threading
import weakref
from typing import Any, Callable, Protocol

LOG = logging.getLogger(__name__)


class Cleanable(Protocol):
    """Anything the registry can release at shutdown."""

    def cleanup(self) -> None: ...


_instances: "weakref.WeakSet[Cleanable]" = weakref.WeakSet()
_lock = threading.Lock()
_hook_installed = False
_previous_handlers: dict[int, Any] = {}


def register(instance: Cleanable) -> None:
    """Track an instance without keeping it alive."""

    global _hook_installed
    with _lock:
        _instances.add(instance)
        if not _hook_installed:
            atexit.register(drain)
            _hook_installed = True


def unregister(instance: Cleanable) -> None:
    with _lock:
        _instances.discard(instance)


def live_instances() -> list[Cleanable]:
    with _lock:
        return list(_instances)


def drain() -> int:
    """Clean up every registered instance; returns how many were visited."""

    with _lock:
        pending = list(_instances)
        _instances.clear()
    for instance in pending:
        try:
            instance.cleanup()
        except Exception:  # pragma: no cover - cleanup() should not raise
            LOG.warning("Cleanup failed during shutdown", exc_info=True)
    if pending:
        LOG.info("Cleaned up %d embedded PostgreSQL instance(s)", len(pending))
    return len(pending)


def install_signal_handlers(signals: tuple[int, ...] | None = None) -> Callable[[], None]:
    """Drain the registry on SIGINT/SIGTERM before deferring to the previous handler.

    Must be called from the main thread. Returns a callable restoring the
    previous handlers.
    """

    wanted = signals if signals is not None else (signal.SIGINT, signal.SIGTERM)
    for signum in wanted:
        _previous_handlers[signum] = signal.signal(signum, _handle_signal)

    def _restore() -> None:
        for signum in wanted:
            previous = _previous_handlers.pop(signum, None)
            if previous is not None:
                signal.signal(signum, previous)

    return _restore


def _handle_signal(signum: int, frame: Any) -> None:
    LOG.info("Received signal %s; cleaning up embedded PostgreSQL instances", signum)
    drain()
    previous = _previous_handlers.get(signum)
    if callable(previous):
        previous(signum, frame)
    elif previous == signal.SIG_DFL:
        signal.signal(signum, signal.SIG_DFL)
        signal.raise_signal(signum)


__all__ = ["drain", "install_signal_handlers", "live_instances", "register", "unregister"]
