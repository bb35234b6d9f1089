"""Shutdown hooks — the graceful shutdown sequence a `stop` command runs."""

import atexit
import logging
import os
import sys
import threading
from typing import Callable

log = logging.getLogger(__name__)

Hook = Callable[[], object]


class ShutdownHooks:
    """Ordered registry of callables run once at shutdown.

    Hooks run in registration order. A failing hook is logged and the
    remaining hooks still run. The registry also arms itself with
    ``atexit`` so the same hooks run on a normal interpreter exit.
    """

    def __init__(self):
        self._hooks: list[Hook] = []
        self._lock = threading.Lock()
        self._ran = False
        self._armed = False

    def __len__(self) -> int:
        return len(self._hooks)

    def register(self, hook: Hook) -> Hook:
        """Add a hook. Returns it, so this works as a decorator."""
        with self._lock:
            if hook not in self._hooks:
                self._hooks.append(hook)
            if not self._armed:
                atexit.register(self.run)
                self._armed = True
        return hook

    def deregister(self, hook: Hook) -> None:
        with self._lock:
            if hook in self._hooks:
                self._hooks.remove(hook)

    def is_registered(self, hook: Hook) -> bool:
        return hook in self._hooks

    @property
    def ran(self) -> bool:
        return self._ran

    def run(self) -> None:
        """Run every registered hook to completion. Later calls do nothing."""
        with self._lock:
            if self._ran:
                return
            self._ran = True
            hooks = list(self._hooks)

        for hook in hooks:
            name = getattr(hook, "__qualname__", repr(hook))
            log.debug("Running shutdown hook %s", name)
            try:
                hook()
            except Exception:
                log.exception("Shutdown hook %s failed", name)


_hooks = ShutdownHooks()


def get_shutdown_hooks() -> ShutdownHooks:
    """The process-wide hook registry."""
    return _hooks


def register(hook: Hook) -> Hook:
    return _hooks.register(hook)


def run_shutdown_hooks() -> None:
    _hooks.run()


def terminate_process(status: int = 0) -> None:
    """End the whole process now, from any thread.

    ``sys.exit`` only unwinds the calling thread, so stdio and logging are
    flushed by hand before ``os._exit``.
    """
    log.debug("Terminating process with status %d", status)
    logging.shutdown()
    for stream in (sys.stdout, sys.stderr):
        try:
            stream.flush()
        except (OSError, ValueError, AttributeError):
            pass
    os._exit(status)
