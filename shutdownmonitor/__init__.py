"""
Shutdown monitor — a loopback control channel that stops a running process
or reports that it is alive.

Usage:
    from shutdownmonitor import get_monitor, register

    @register
    def close_database():
        db.close()

    get_monitor()   # listens when STOP.PORT >= 0
"""

from .config import MonitorConfig, process_properties
from .hooks import ShutdownHooks, get_shutdown_hooks, register, run_shutdown_hooks
from .monitor import MonitorState, ShutdownMonitor, get_monitor
from .client import MonitorClient, send_command

__version__ = "1.0.0"
