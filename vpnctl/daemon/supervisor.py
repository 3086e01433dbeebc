"""Owner of the daemon's single VPN session.

The supervisor starts the engine's blocking connect call on its own worker
thread and answers protocol requests from the event loop. Requests are
read-only except Stop, which disconnects the session and puts the
supervisor into its stopping state; any request that arrives afterwards is
refused.

Thread safety: the supervisor itself is only touched from the event loop.
The engine is shared with the worker thread and guards its own state.
"""

import asyncio
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from vpnctl.core.engine import NetworkInfo, SessionEngine, Status
from vpnctl.core.profiles import Profile
from vpnctl.daemon.protocol import (
    InfoRequest,
    InfoResult,
    Request,
    Response,
    StopRequest,
    StopResult,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SupervisorStoppingError(Exception):
    """Raised for requests that arrive after Stop was accepted."""


@dataclass
class Session:
    name: str
    server: str
    handle: SessionEngine


class SessionSupervisor:
    def __init__(self, engine: SessionEngine):
        self.engine = engine
        self.session: Optional[Session] = None
        self.stopping = False
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="session-engine")
        self._connect_future: Optional[Future] = None

    def start(self, profile: Profile) -> SessionEngine:
        """
        Start connecting in the background and return the session handle.

        The connect call keeps running on the worker thread for as long as
        the tunnel is up.
        """
        if self.session is not None:
            raise RuntimeError("Session already started")

        self.session = Session(name=profile.name, server=profile.server, handle=self.engine)
        self._connect_future = self._executor.submit(self.session.handle.connect, profile)
        self._connect_future.add_done_callback(self._connect_finished)
        logger.info(f"Connecting session {profile.name} to {profile.server}")
        return self.session.handle

    @staticmethod
    def _connect_finished(future: Future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error(f"Session ended with error: {error}")
        else:
            logger.info("Session ended")

    async def handle(self, request: Request) -> Response:
        if self.session is None:
            raise RuntimeError("Session not started")
        if self.stopping:
            raise SupervisorStoppingError("Daemon is shutting down")
        if isinstance(request, StopRequest):
            return self._stop(self.session)
        if isinstance(request, InfoRequest):
            return self._info(self.session.handle)
        raise TypeError(f"Unsupported request: {request!r}")

    def _best_effort(self, accessor: Callable[[], T], default: T) -> T:
        try:
            return accessor()
        except Exception as e:
            logger.warning(f"{getattr(accessor, '__name__', accessor)} unavailable: {e}")
            return default

    def _info(self, handle: SessionEngine) -> InfoResult:
        status: Status = self._best_effort(handle.status, Status.ERROR)
        info: Optional[NetworkInfo] = self._best_effort(handle.snapshot, None)
        return InfoResult(
            server_name=self._best_effort(handle.server_name, ""),
            server_url=self._best_effort(handle.server_url, ""),
            hostname=self._best_effort(handle.hostname, ""),
            status=status.label,
            info=info,
        )

    def _stop(self, session: Session) -> StopResult:
        server_name = self._best_effort(session.handle.server_name, "")
        logger.info(f"Stop requested for session {session.name} ({session.server})")
        self.stopping = True
        self._disconnect(session.handle)
        return StopResult(server_name=server_name)

    @staticmethod
    def _disconnect(handle: SessionEngine) -> None:
        try:
            handle.disconnect()
        except Exception as e:
            logger.error(f"Disconnect failed: {e}")

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Disconnect if still running and wait up to timeout for connect to return."""
        if not self.stopping and self.session is not None:
            self.stopping = True
            self._disconnect(self.session.handle)

        if self._connect_future is not None and not self._connect_future.done():
            try:
                await asyncio.wait_for(
                    asyncio.shield(asyncio.wrap_future(self._connect_future)),
                    timeout,
                )
            except asyncio.TimeoutError:
                logger.error(f"Session did not end within {timeout}s")
            except Exception:
                # Already logged by _connect_finished
                pass

        self._executor.shutdown(wait=False)
