"""Async Unix socket server for the vpnctl daemon.

This module runs in the detached worker process and:
1. Binds the control socket (its existence marks the daemon as running)
2. Starts the VPN session through the SessionSupervisor
3. Serves one request per connection until told to stop
4. Removes the socket again on the way out

Shutdown has a single path. SIGINT, SIGTERM and SIGQUIT handlers and a
flushed Stop response all set the same shutdown event, and the accept loop
races that event against the next incoming connection.

Phases: STARTING -> RUNNING -> TERMINATING -> EXITED, never revisited.
"""

import asyncio
import logging
import os
import signal
from enum import Enum
from pathlib import Path
from typing import Optional, Set

from vpnctl.core.configs import DaemonSettings
from vpnctl.core.engine import SessionEngine
from vpnctl.core.logs import init_logging
from vpnctl.core.openconnect import OpenconnectSession
from vpnctl.core.profiles import Profile
from vpnctl.daemon.channel import ChannelExistsError, ControlChannel
from vpnctl.daemon.protocol import ProtocolError, StopResult, read_request, write_message
from vpnctl.daemon.supervisor import SessionSupervisor, SupervisorStoppingError

logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGQUIT)


class DaemonPhase(Enum):
    STARTING = "starting"
    RUNNING = "running"
    TERMINATING = "terminating"
    EXITED = "exited"


class DaemonServer:
    """
    Serves the control socket for one supervised session.

    Each connection is handled in its own task. Connections still open when
    shutdown begins get drain_timeout seconds to finish before they are
    cancelled.
    """

    def __init__(
        self,
        profile: Profile,
        engine: SessionEngine,
        socket_path: Path,
        drain_timeout: float = 2.0,
        session_timeout: float = 6.0,
    ):
        """
        Args:
            profile: Resolved profile to connect with
            engine: Session handle the supervisor drives
            socket_path: Rendezvous path to bind
            drain_timeout: Grace period for open connections at shutdown
            session_timeout: How long to wait for the session to end at shutdown
        """
        self.profile = profile
        self.socket_path = Path(socket_path)
        self.drain_timeout = drain_timeout
        self.session_timeout = session_timeout

        self.supervisor = SessionSupervisor(engine)
        self.phase = DaemonPhase.STARTING
        self.shutdown_reason: Optional[str] = None
        self._shutdown_event: asyncio.Event = asyncio.Event()
        self._connections: Set[asyncio.Task] = set()

    def _enter(self, phase: DaemonPhase) -> None:
        logger.info(f"Daemon {self.phase.value} -> {phase.value}")
        self.phase = phase

    def request_shutdown(self, reason: str) -> None:
        """Shared shutdown trigger for signal handlers and Stop requests."""
        if self._shutdown_event.is_set():
            return
        self.shutdown_reason = reason
        logger.info(f"Shutdown requested ({reason})")
        self._shutdown_event.set()

    async def serve(self) -> int:
        """Run the daemon until shutdown. Returns the process exit code."""
        try:
            channel = ControlChannel.bind(self.socket_path)
        except ChannelExistsError as e:
            logger.error(f"{e}, another daemon may be running")
            self._enter(DaemonPhase.EXITED)
            return 1
        except OSError as e:
            logger.error(f"Failed to bind {self.socket_path}: {e}")
            self._enter(DaemonPhase.EXITED)
            return 1

        loop = asyncio.get_running_loop()
        try:
            with channel:
                for sig in SHUTDOWN_SIGNALS:
                    loop.add_signal_handler(sig, self.request_shutdown, f"signal {sig.name}")
                self.supervisor.start(self.profile)
                self._enter(DaemonPhase.RUNNING)
                await self._accept_loop(channel)

                self._enter(DaemonPhase.TERMINATING)
                await self._drain()
                await self.supervisor.shutdown(self.session_timeout)
        finally:
            # Only once the socket file is gone.
            for sig in SHUTDOWN_SIGNALS:
                loop.remove_signal_handler(sig)

        self._enter(DaemonPhase.EXITED)
        return 0

    async def _accept_loop(self, channel: ControlChannel) -> None:
        shutdown = asyncio.ensure_future(self._shutdown_event.wait())
        try:
            while True:
                accept = asyncio.ensure_future(channel.accept())
                done, _ = await asyncio.wait(
                    {shutdown, accept},
                    return_when=asyncio.FIRST_COMPLETED,
                )

                if accept in done:
                    try:
                        reader, writer = accept.result()
                    except OSError as e:
                        logger.warning(f"Accept failed: {e}")
                    else:
                        self._spawn(reader, writer)
                else:
                    accept.cancel()
                    await asyncio.gather(accept, return_exceptions=True)

                if shutdown in done:
                    return
        finally:
            shutdown.cancel()

    def _spawn(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        task = asyncio.create_task(self._handle_client(reader, writer))
        self._connections.add(task)
        task.add_done_callback(self._connections.discard)

    async def _handle_client(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        """Read one request, answer it, close the connection."""
        stop_accepted = False
        try:
            request = await read_request(reader)
            if request is None:
                return
            if self._shutdown_event.is_set():
                logger.info(f"Ignoring {request.TAG} request received during shutdown")
                return

            response = await self.supervisor.handle(request)
            stop_accepted = isinstance(response, StopResult)
            await write_message(writer, response)

        except SupervisorStoppingError:
            logger.info("Ignoring request received after stop")
        except ProtocolError as e:
            logger.warning(f"Dropping connection: {e}")
        except (ConnectionError, OSError) as e:
            logger.warning(f"Client connection failed: {e}")
        except Exception as e:
            logger.exception(f"Error handling client: {e}")
        finally:
            # Only after the response is flushed (or failed), so the client
            # is never cut off by our own shutdown.
            if stop_accepted:
                self.request_shutdown("stop request")
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass

    async def _drain(self) -> None:
        pending = set(self._connections)
        if not pending:
            return

        logger.info(f"Waiting up to {self.drain_timeout}s for {len(pending)} open connection(s)")
        _, pending = await asyncio.wait(pending, timeout=self.drain_timeout)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning(f"Cancelled {len(pending)} connection(s) still open at shutdown")
            await asyncio.gather(*pending, return_exceptions=True)


def run_daemon(
    profile: Profile,
    settings: DaemonSettings,
    engine: Optional[SessionEngine] = None,
) -> int:
    """
    Worker-side entry point: set up logging and serve until shutdown.

    Args:
        profile: Profile resolved by the foreground process
        settings: Daemon settings
        engine: Session engine to use (default: openconnect)

    Returns:
        Process exit code

    Raises:
        ChannelCleanupError: The socket file could not be removed
    """
    log_file = init_logging(settings.log_dir, settings.log_level)
    logger.info(f"Daemon started (PID {os.getpid()}), logging to {log_file}")

    if engine is None:
        engine = OpenconnectSession(
            binary=settings.openconnect_binary,
            vpnc_script=settings.vpnc_script,
            disconnect_timeout=settings.disconnect_timeout,
        )

    server = DaemonServer(
        profile=profile,
        engine=engine,
        socket_path=settings.socket_path,
        drain_timeout=settings.drain_timeout,
        session_timeout=settings.disconnect_timeout + 1.0,
    )
    code = asyncio.run(server.serve())
    logger.info(f"Daemon stopped ({server.shutdown_reason or 'no shutdown request'})")
    return code
