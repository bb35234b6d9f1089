"""Shutdown monitor CLI — run with: python3 -m shutdownmonitor [--stop|--status] [--port N] [--key K]"""

import argparse
import asyncio
import logging
import signal
import sys

from rich.console import Console

from . import hooks
from .client import send_command
from .config import (
    KEY_PROPERTY, PORT_PROPERTY, TIMEOUT_PROPERTY, MonitorConfig, process_properties,
)
from .monitor import ShutdownMonitor
from .protocol import CMD_STATUS, CMD_STOP, decode_line, reply_for

log = logging.getLogger("shutdownmonitor")

console = Console(stderr=True)


def cmd_send(command: str, port: int, key: str | None, host: str, timeout: float) -> int:
    """Send stop/status to a running monitor. Returns the exit status."""
    if port <= 0 or not key:
        console.print(f"[red]{command} needs --port and --key (or {PORT_PROPERTY}/{KEY_PROPERTY})[/red]")
        return 2
    try:
        reply = send_command(port, key, command, host=host, timeout=timeout)
    except (OSError, asyncio.TimeoutError) as e:
        console.print(f"[red]Monitor at {host}:{port} unreachable:[/red] {str(e) or 'timed out'}")
        return 1

    if reply == decode_line(reply_for(command)):
        console.print(f"[green]{reply}[/green]")
        return 0
    console.print(f"[yellow]No reply to {command!r} (wrong key?)[/yellow]")
    return 1


def cmd_serve(config: MonitorConfig) -> int:
    """Host a monitor and idle until it stops the process or a signal arrives."""
    monitor = ShutdownMonitor(config)
    if not monitor.is_running:
        console.print("[red]Shutdown monitor is not listening.[/red]")
        return 1

    @hooks.register
    def _announce():
        log.info("Host process shutting down")

    console.print(f"[cyan]{monitor}[/cyan] listening on 127.0.0.1:{monitor.port}")
    asyncio.run(_wait_for_signal())
    log.info("Interrupted, running shutdown hooks")
    hooks.run_shutdown_hooks()
    return 0


async def _wait_for_signal():
    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop_event.set)
    await stop_event.wait()


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="shutdownmonitor",
        description="Shutdown monitor — loopback stop/status control channel",
    )
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--stop", action="store_true", help="Stop a running process")
    group.add_argument("--status", action="store_true", help="Check that a process is alive")
    parser.add_argument("--port", "-p", type=int, default=None, help=f"Monitor port (overrides {PORT_PROPERTY})")
    parser.add_argument("--key", "-k", default=None, help=f"Shared key (overrides {KEY_PROPERTY})")
    parser.add_argument("--host", default="127.0.0.1", help="Monitor host for --stop/--status")
    parser.add_argument("--timeout", "-t", type=float, default=None,
                        help=f"Serving: seconds to wait per line (overrides {TIMEOUT_PROPERTY}). "
                             "--stop/--status: seconds to wait for the monitor")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")
    args = parser.parse_args(argv)

    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    props = process_properties()
    if args.port is not None:
        props[PORT_PROPERTY] = str(args.port)
    if args.key is not None:
        props[KEY_PROPERTY] = args.key
    if args.timeout is not None:
        props[TIMEOUT_PROPERTY] = str(args.timeout)
    config = MonitorConfig.from_properties(props)

    if args.stop or args.status:
        command = CMD_STOP if args.stop else CMD_STATUS
        return cmd_send(command, config.port, config.key, args.host, args.timeout or 5.0)
    return cmd_serve(config)


if __name__ == "__main__":
    sys.exit(main())
