"""MonitorClient — async TCP client for a ShutdownMonitor."""

import asyncio
import logging

from .monitor import LOOPBACK
from .protocol import CMD_STATUS, CMD_STOP, decode_line, encode_request

log = logging.getLogger(__name__)


class MonitorClient:
    """Sends one command per connection to a monitor on the loopback interface."""

    def __init__(self, port: int, key: str, host: str = LOOPBACK, timeout: float = 5.0):
        self._port = port
        self._key = key
        self._host = host
        self._timeout = timeout

    async def send(self, command: str) -> str | None:
        """Send ``command`` and return the reply line, or None if the monitor closed silently.

        Raises OSError when the monitor can't be reached and
        asyncio.TimeoutError when it doesn't answer in time.
        """
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(self._host, self._port), self._timeout
        )
        log.debug("Connected to monitor at %s:%d", self._host, self._port)
        try:
            writer.write(encode_request(self._key, command))
            await writer.drain()
            try:
                line = await asyncio.wait_for(reader.readline(), self._timeout)
            except ConnectionResetError:
                # monitor hung up on unread input
                line = b""
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass

        reply = decode_line(line)
        log.debug("%s -> %r", command, reply)
        return reply

    async def stop(self) -> str | None:
        return await self.send(CMD_STOP)

    async def status(self) -> str | None:
        return await self.send(CMD_STATUS)


def send_command(port: int, key: str, command: str, host: str = LOOPBACK,
                 timeout: float = 5.0) -> str | None:
    """Blocking wrapper around MonitorClient.send."""
    client = MonitorClient(port, key, host=host, timeout=timeout)
    return asyncio.run(client.send(command))
