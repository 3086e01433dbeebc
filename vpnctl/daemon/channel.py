"""Unix socket the daemon listens on.

The socket file doubles as the "daemon is running" marker: it must not exist
before the daemon binds it and must be gone once the daemon has stopped. A
stale file blocks every later start, so failing to remove it is an error
that callers get to see.
"""

import asyncio
import errno
import logging
import os
import socket
from pathlib import Path
from typing import Optional, Tuple

logger = logging.getLogger(__name__)

LISTEN_BACKLOG = 16


class ChannelError(Exception):
    """Base class for control channel failures."""


class ChannelExistsError(ChannelError):
    def __init__(self, path: Path):
        super().__init__(f"Socket {path} already exists")
        self.path = path


class ChannelCleanupError(ChannelError):
    def __init__(self, path: Path, error: OSError):
        super().__init__(f"Failed to remove socket file {path}: {error}")
        self.path = path


def exists(path: Path) -> bool:
    return Path(path).exists()


class ControlChannel:
    """
    Listening socket bound to the rendezvous path.

    Usage:
        with ControlChannel.bind(path) as channel:
            reader, writer = await channel.accept()
    """

    def __init__(self, path: Path, sock: socket.socket):
        self.path = path
        self._sock: Optional[socket.socket] = sock

    @classmethod
    def bind(cls, path: Path) -> "ControlChannel":
        """
        Bind and listen on path.

        Raises:
            ChannelExistsError: path already exists; it is left untouched
            OSError: Any other failure to create the socket
        """
        path = Path(path)
        if path.exists():
            raise ChannelExistsError(path)

        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            sock.bind(str(path))
        except OSError as e:
            sock.close()
            if e.errno == errno.EADDRINUSE:
                # created between the check above and bind()
                raise ChannelExistsError(path) from None
            raise

        try:
            os.chmod(path, 0o600)
            sock.listen(LISTEN_BACKLOG)
            sock.setblocking(False)
        except OSError:
            sock.close()
            path.unlink()
            raise

        logger.info(f"Control channel listening on {path}")
        return cls(path, sock)

    @property
    def closed(self) -> bool:
        return self._sock is None

    async def accept(self) -> Tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        """Wait for one connection and wrap it in asyncio streams."""
        if self._sock is None:
            raise ChannelError("Channel is closed")
        loop = asyncio.get_running_loop()
        conn, _ = await loop.sock_accept(self._sock)
        try:
            return await asyncio.open_unix_connection(sock=conn)
        except BaseException:
            conn.close()
            raise

    def close(self) -> None:
        """
        Stop listening and remove the socket file.

        Raises:
            ChannelCleanupError: The file exists but could not be removed
        """
        if self._sock is None:
            return
        self._sock.close()
        self._sock = None

        try:
            self.path.unlink()
        except FileNotFoundError:
            logger.warning(f"Socket file {self.path} was already removed")
        except OSError as e:
            logger.critical(f"Failed to remove socket file {self.path}: {e}")
            raise ChannelCleanupError(self.path, e) from e
        else:
            logger.info(f"Removed socket file {self.path}")

    def __enter__(self) -> "ControlChannel":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
