"""Tests for shutdownmonitor.client and the shutdownmonitor CLI."""

import asyncio
import os
import subprocess
import sys
from pathlib import Path

import pytest

from shutdownmonitor.__main__ import main
from shutdownmonitor.client import MonitorClient, send_command

ROOT = Path(__file__).resolve().parent.parent


class TestClient:
    def test_status_and_stop_helpers(self, monitor, recorder):
        client = MonitorClient(monitor.port, monitor.key)
        assert asyncio.run(client.status()) == "OK"
        assert asyncio.run(client.stop()) == "Stopped"
        monitor.join(3.0)
        assert recorder.exit_codes == [0]

    def test_unreachable_raises(self, free_port):
        with pytest.raises(OSError):
            send_command(free_port, "k", "status", timeout=1.0)


class TestCommandLine:
    def test_status(self, monitor):
        assert main(["--status", "--port", str(monitor.port), "--key", monitor.key]) == 0

    def test_status_from_environment(self, monitor, monkeypatch):
        monkeypatch.setenv("STOP_PORT", str(monitor.port))
        monkeypatch.setenv("STOP_KEY", monitor.key)
        assert main(["--status"]) == 0

    def test_wrong_key(self, monitor):
        assert main(["--status", "--port", str(monitor.port), "--key", "nope"]) == 1
        assert monitor.is_running

    def test_stop(self, monitor, recorder):
        assert main(["--stop", "--port", str(monitor.port), "--key", monitor.key]) == 0
        monitor.join(3.0)
        assert recorder.hook_calls == 1

    def test_timeout_bounds_the_client_wait(self, monitor):
        """With --status, --timeout bounds how long the client waits."""
        assert main(["--status", "--port", str(monitor.port), "--key", monitor.key, "--timeout", "2"]) == 0

    def test_missing_port(self):
        assert main(["--status", "--key", "k"]) == 2

    def test_unreachable(self, free_port):
        assert main(["--status", "--port", str(free_port), "--key", "k", "--timeout", "1"]) == 1


class TestProcessExit:
    def test_stop_ends_the_process_with_status_zero(self):
        """A real host process runs its hooks and exits 0 on `stop`."""
        env = {k: v for k, v in os.environ.items() if not k.startswith(("STOP.", "STOP_"))}
        env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(ROOT), env.get("PYTHONPATH")]))
        proc = subprocess.Popen(
            [sys.executable, "-m", "shutdownmonitor", "--port", "0", "--key", "k"],
            stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True, env=env, cwd=str(ROOT),
        )
        try:
            line = proc.stdout.readline().strip()
            assert line.startswith("STOP.PORT=")
            port = int(line.split("=", 1)[1])

            assert send_command(port, "k", "status") == "OK"
            assert send_command(port, "k", "stop") == "Stopped"
            assert proc.wait(timeout=10) == 0
            assert "Host process shutting down" in proc.stderr.read()
        finally:
            if proc.poll() is None:
                proc.kill()
                proc.wait()
            proc.stdout.close()
            proc.stderr.close()
