"""Shared fixtures for the shutdown monitor test suite."""

import socket

import pytest

from shutdownmonitor.client import send_command
from shutdownmonitor.config import MonitorConfig
from shutdownmonitor.monitor import ShutdownMonitor

TEST_KEY = "s3cret-key"


class StopRecorder:
    """Stands in for the shutdown hooks and the process exit."""

    def __init__(self):
        self.hook_calls = 0
        self.exit_codes = []

    def run_hooks(self):
        self.hook_calls += 1

    def exit(self, status):
        self.exit_codes.append(status)


@pytest.fixture(autouse=True)
def clean_environ(monkeypatch):
    """Keep the developer's STOP.* settings out of the tests."""
    for name in ("STOP.PORT", "STOP_PORT", "STOP.KEY", "STOP_KEY",
                 "STOP.TIMEOUT", "STOP_TIMEOUT", "DEBUG"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def recorder():
    return StopRecorder()


@pytest.fixture
def monitor_factory(recorder):
    """Build monitors whose `stop` is recorded instead of ending pytest."""
    created = []

    def factory(port=0, key=TEST_KEY, read_timeout=2.0, debug=False):
        config = MonitorConfig(port=port, key=key, debug=debug, read_timeout=read_timeout)
        monitor = ShutdownMonitor(config, run_hooks=recorder.run_hooks, exit_process=recorder.exit)
        created.append(monitor)
        return monitor

    yield factory

    for monitor in created:
        if monitor.is_running:
            send_command(monitor.port, monitor.key, "stop", timeout=2.0)
            monitor.join(2.0)


@pytest.fixture
def monitor(monitor_factory):
    """A listening monitor on an ephemeral port with TEST_KEY."""
    return monitor_factory()


@pytest.fixture
def free_port():
    """A loopback port nothing is listening on right now."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]
