"""ShutdownMonitor — loopback stop/status listener for the host process.

Listens on ``127.0.0.1:STOP.PORT`` for single-shot connections that
authenticate with ``STOP.KEY`` and then send ``stop`` or ``status``.
Port ``-1`` (the default) leaves the monitor off, port ``0`` binds any free
port and prints ``STOP.PORT=<n>``. A missing key is generated and printed
as ``STOP.KEY=<key>``.

Connections are served one at a time by a single asyncio loop running on a
daemon thread. Each connection goes through

    LISTENING → AUTHENTICATING → DISPATCHING → LISTENING
                                             ↘ TERMINATING → TERMINATED

where TERMINATING runs the shutdown hooks, answers ``Stopped`` and ends the
process.
"""

import asyncio
import enum
import logging
import socket
import sys
import threading
from typing import Callable

from .config import MonitorConfig
from .hooks import run_shutdown_hooks, terminate_process
from .protocol import (
    CMD_STATUS, CMD_STOP, STATUS_REPLY, STOPPED_REPLY,
    decode_line, generate_key, keys_match,
)

log = logging.getLogger(__name__)

LOOPBACK = "127.0.0.1"
BACKLOG = 1
ACCEPT_RETRY_DELAY = 0.5  # seconds
LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


class MonitorState(enum.Enum):
    DISABLED = "disabled"
    LISTENING = "listening"
    AUTHENTICATING = "authenticating"
    DISPATCHING = "dispatching"
    TERMINATING = "terminating"
    TERMINATED = "terminated"


class ShutdownMonitor:
    """Owns the control socket and the accept loop serving it.

    ``run_hooks`` and ``exit_process`` default to the process-wide shutdown
    hooks and a hard process exit. Tests swap them to observe a ``stop``
    without ending the interpreter.
    """

    def __init__(
        self,
        config: MonitorConfig | None = None,
        *,
        run_hooks: Callable[[], object] | None = None,
        exit_process: Callable[[int], object] | None = None,
    ):
        config = config if config is not None else MonitorConfig.from_properties()
        self.debug = config.debug
        self.read_timeout = config.read_timeout
        self.state = MonitorState.DISABLED
        self._run_hooks = run_hooks or run_shutdown_hooks
        self._exit_process = exit_process or terminate_process
        self._thread: threading.Thread | None = None

        if self.debug:
            _enable_debug_logging()

        port = config.port
        key = config.key
        sock = None
        try:
            if not config.enabled:
                log.info("ShutdownMonitor not in use")
                return

            sock = socket.create_server((LOOPBACK, port), backlog=BACKLOG)
            if port == 0:
                port = sock.getsockname()[1]
                print(f"STOP.PORT={port}", flush=True)

            if key is None:
                key = generate_key(self)
                print(f"STOP.KEY={key}", flush=True)
        except (OSError, OverflowError) as e:
            log.error("Error binding monitor port %d: %s", port, e, exc_info=self.debug)
            sock = None
        finally:
            self.port = port
            self.key = key
            self._sock = sock
            self._debug("STOP.PORT=%d", self.port)
            self._debug("STOP.KEY=%s", self.key)
            self._debug("%s", self._sock)

        if self._sock is None:
            return

        self.state = MonitorState.LISTENING
        self._thread = threading.Thread(target=self._run, name="ShutdownMonitor", daemon=True)
        self._thread.start()

    def __repr__(self) -> str:
        cls = type(self)
        return f"{cls.__module__}.{cls.__qualname__}[port={self.port}]"

    __str__ = __repr__

    @property
    def enabled(self) -> bool:
        return self.port >= 0

    @property
    def is_running(self) -> bool:
        """True while the listener is bound and the accept loop is alive."""
        return (
            self._thread is not None
            and self._thread.is_alive()
            and self.state not in (MonitorState.TERMINATING, MonitorState.TERMINATED)
        )

    def join(self, timeout: float | None = None) -> None:
        """Wait for the accept loop to end (only after a stop whose exit returned)."""
        if self._thread is not None:
            self._thread.join(timeout)

    def _debug(self, msg, *args):
        if self.debug:
            log.debug(msg, *args)

    # ── Accept loop ───────────────────────────────────────────────────

    def _run(self):
        asyncio.run(self._accept_loop())

    async def _accept_loop(self):
        loop = asyncio.get_running_loop()
        self._sock.setblocking(False)
        while self.state is not MonitorState.TERMINATED:
            try:
                conn, peer = await loop.sock_accept(self._sock)
            except OSError as e:
                log.error("Monitor accept failed: %s", e, exc_info=self.debug)
                await asyncio.sleep(ACCEPT_RETRY_DELAY)
                continue
            await self._serve(conn, peer)

    async def _serve(self, conn: socket.socket, peer):
        self._debug("Connection from %s", peer)
        writer = None
        try:
            reader, writer = await asyncio.open_connection(sock=conn)

            self.state = MonitorState.AUTHENTICATING
            key = await self._read_line(reader)
            if not keys_match(self.key, key):
                log.warning("Ignoring command with incorrect key")
                return

            self.state = MonitorState.DISPATCHING
            cmd = await self._read_line(reader)
            self._debug("command=%s", cmd)

            if cmd == CMD_STOP:
                stop_writer, writer = writer, None
                await self._stop(stop_writer)
            elif cmd == CMD_STATUS:
                writer.write(STATUS_REPLY)
                await writer.drain()
        except asyncio.TimeoutError:
            log.warning("Control connection from %s timed out", peer)
        except Exception as e:
            log.warning("Control connection from %s failed: %s", peer, e, exc_info=self.debug)
        finally:
            if writer is not None:
                await _close_writer(writer)
            elif self.state is not MonitorState.TERMINATED:
                conn.close()
            if self.state in (MonitorState.AUTHENTICATING, MonitorState.DISPATCHING):
                self.state = MonitorState.LISTENING

    async def _read_line(self, reader: asyncio.StreamReader) -> str | None:
        line = await asyncio.wait_for(reader.readline(), self.read_timeout)
        return decode_line(line)

    async def _stop(self, writer: asyncio.StreamWriter):
        self.state = MonitorState.TERMINATING

        self._debug("Issuing graceful shutdown..")
        try:
            self._run_hooks()
        except Exception:
            log.exception("Shutdown hooks failed")

        self._debug("Informing client that we are stopped.")
        try:
            writer.write(STOPPED_REPLY)
            await writer.drain()
        except OSError as e:
            log.warning("Could not confirm stop to client: %s", e)

        self._debug("Shutting down monitor")
        await _close_writer(writer)
        self._sock.close()
        self.state = MonitorState.TERMINATED

        self._debug("Exiting process")
        self._exit_process(0)


async def _close_writer(writer: asyncio.StreamWriter):
    try:
        writer.close()
        await writer.wait_closed()
    except OSError:
        pass


def _enable_debug_logging():
    """Send this package's DEBUG records to stderr unless logging is already set up."""
    pkg_log = logging.getLogger(__name__.rpartition(".")[0])
    pkg_log.setLevel(logging.DEBUG)
    if not pkg_log.handlers and not logging.getLogger().handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%H:%M:%S"))
        pkg_log.addHandler(handler)


# ── Process-wide instance ─────────────────────────────────────────────

_instance: ShutdownMonitor | None = None
_instance_lock = threading.Lock()


def get_monitor() -> ShutdownMonitor:
    """The process's ShutdownMonitor, built from process properties on first call."""
    global _instance
    if _instance is None:
        with _instance_lock:
            if _instance is None:
                _instance = ShutdownMonitor()
    return _instance
