"""Client side of the daemon socket.

Each CLI invocation opens one connection, sends one request and reads one
response. There are no retries: if the daemon is not there the command
fails.

Usage:
    async with await ControlClient.connect(path) as client:
        await client.send(InfoRequest())
        response = await client.receive()

    # or, from synchronous code
    response = send_request(InfoRequest(), path)
"""

import asyncio
from pathlib import Path
from typing import Optional

from vpnctl.daemon.protocol import (
    Request,
    Response,
    read_response,
    write_message,
)


class DaemonNotRunningError(Exception):
    def __init__(self, path: Path):
        super().__init__(f"No daemon socket at {path}")
        self.path = path


class ControlClient:
    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self.reader = reader
        self.writer = writer

    @classmethod
    async def connect(cls, path: Path) -> "ControlClient":
        """
        Connect to the daemon.

        Raises:
            DaemonNotRunningError: The socket file does not exist
            OSError: The file exists but nothing accepts connections on it
        """
        path = Path(path)
        if not path.exists():
            raise DaemonNotRunningError(path)
        reader, writer = await asyncio.open_unix_connection(str(path))
        return cls(reader, writer)

    async def send(self, request: Request) -> None:
        await write_message(self.writer, request)

    async def receive(self) -> Optional[Response]:
        """Wait for the response, or None if the daemon hung up without one."""
        return await read_response(self.reader)

    async def close(self) -> None:
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except (ConnectionResetError, BrokenPipeError):
            pass

    async def __aenter__(self) -> "ControlClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


async def request(message: Request, path: Path) -> Optional[Response]:
    client = await ControlClient.connect(path)
    async with client:
        await client.send(message)
        return await client.receive()


def send_request(message: Request, path: Path) -> Optional[Response]:
    """Synchronous wrapper around request() for CLI commands."""
    return asyncio.run(request(message, path))
