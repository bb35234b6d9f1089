"""Monitor configuration — STOP.PORT / STOP.KEY / STOP.TIMEOUT / DEBUG process properties."""

import logging
import os
from dataclasses import dataclass
from typing import Mapping

log = logging.getLogger(__name__)

PORT_PROPERTY = "STOP.PORT"
KEY_PROPERTY = "STOP.KEY"
TIMEOUT_PROPERTY = "STOP.TIMEOUT"
DEBUG_PROPERTY = "DEBUG"

DISABLED_PORT = -1
MAX_PORT = 65535
DEFAULT_READ_TIMEOUT = 30.0  # seconds per line


def process_properties(environ: Mapping[str, str] | None = None) -> dict[str, str]:
    """Collect monitor properties from the environment.

    Shells can't export dotted names, so ``STOP_PORT`` is accepted as an
    alias for ``STOP.PORT``. The dotted spelling wins when both are set.
    """
    environ = os.environ if environ is None else environ
    props = {}
    for name in (PORT_PROPERTY, KEY_PROPERTY, TIMEOUT_PROPERTY, DEBUG_PROPERTY):
        if name in environ:
            props[name] = environ[name]
            continue
        alias = name.replace(".", "_")
        if alias in environ:
            props[name] = environ[alias]
    return props


@dataclass(frozen=True)
class MonitorConfig:
    port: int = DISABLED_PORT
    key: str | None = None
    debug: bool = False
    read_timeout: float | None = DEFAULT_READ_TIMEOUT

    @property
    def enabled(self) -> bool:
        return self.port >= 0

    @classmethod
    def from_properties(cls, props: Mapping[str, str] | None = None) -> "MonitorConfig":
        """Build a config from a property mapping (defaults to the process environment)."""
        if props is None:
            props = process_properties()
        return cls(
            port=_parse_port(props.get(PORT_PROPERTY)),
            key=props.get(KEY_PROPERTY) or None,
            debug=DEBUG_PROPERTY in props,
            read_timeout=_parse_timeout(props.get(TIMEOUT_PROPERTY)),
        )


def _parse_port(raw: str | None) -> int:
    if raw is None:
        return DISABLED_PORT
    try:
        port = int(str(raw).strip())
    except ValueError:
        log.error("Invalid %s value %r, monitor disabled", PORT_PROPERTY, raw)
        return DISABLED_PORT
    if port > MAX_PORT:
        log.error("%s=%d is out of range, monitor disabled", PORT_PROPERTY, port)
        return DISABLED_PORT
    return max(port, DISABLED_PORT)


def _parse_timeout(raw: str | None) -> float | None:
    """Seconds to wait for each protocol line; None waits forever."""
    if raw is None:
        return DEFAULT_READ_TIMEOUT
    try:
        timeout = float(str(raw).strip())
    except ValueError:
        log.warning("Invalid %s value %r, using %.0fs", TIMEOUT_PROPERTY, raw, DEFAULT_READ_TIMEOUT)
        return DEFAULT_READ_TIMEOUT
    return timeout if timeout > 0 else None
