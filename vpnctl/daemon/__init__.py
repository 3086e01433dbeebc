"""Daemon architecture for vpnctl.

A foreground `vpnctl start` detaches into a background worker that owns the
VPN session; later invocations talk to it over a Unix socket.

Architecture:
- detach: double-fork into the background worker
- ControlChannel: listening socket whose file marks the daemon as running
- SessionSupervisor: owns the session and answers requests
- DaemonServer: accept loop, signal handling and shutdown sequence
- ControlClient: one-request client used by `status` and `stop`
"""

from vpnctl.daemon.client import ControlClient, DaemonNotRunningError
from vpnctl.daemon.protocol import (
    InfoRequest,
    InfoResult,
    StopRequest,
    StopResult,
    serialize_request,
    deserialize_request,
    serialize_response,
    deserialize_response,
)

__all__ = [
    "ControlClient",
    "DaemonNotRunningError",
    "InfoRequest",
    "InfoResult",
    "StopRequest",
    "StopResult",
    "serialize_request",
    "deserialize_request",
    "serialize_response",
    "deserialize_response",
]
