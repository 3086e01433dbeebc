"""Double-fork detachment.

    originator ──fork──> intermediate ──setsid, fork──> worker
        │                     │                            │
     waitpid              exits at once             runs the daemon

The intermediate becomes a session leader and exits, so the worker is
orphaned, cannot reacquire a controlling terminal, and is reparented to
init. The originator reaps the intermediate right away, leaving no zombie,
and can still report a failure of the second fork to the user.
"""

import os
import sys
from enum import Enum
from pathlib import Path
from typing import Optional


class DaemonizeError(Exception):
    """Raised in the originator when a fork fails."""


class ForkRole(Enum):
    ORIGINATOR = "originator"
    INTERMEDIATE = "intermediate"
    WORKER = "worker"


def daemonize(stdio_path: Optional[Path] = None) -> ForkRole:
    """
    Fork twice and report which process the caller now is.

    The caller must act on the role: the originator reports to the user and
    exits, the intermediate calls os._exit(0) immediately, and only the
    worker carries on.

    Args:
        stdio_path: File the worker's stdout/stderr are appended to
            (default: /dev/null)

    Raises:
        DaemonizeError: In the originator, if either fork failed
    """
    # Anything buffered now would be written twice after the fork.
    sys.stdout.flush()
    sys.stderr.flush()

    try:
        pid = os.fork()
    except OSError as e:
        raise DaemonizeError(f"First fork failed: {e}") from e

    if pid > 0:
        _, status = os.waitpid(pid, 0)
        if os.WIFEXITED(status) and os.WEXITSTATUS(status) == 0:
            return ForkRole.ORIGINATOR
        raise DaemonizeError("Second fork failed, daemon was not started")

    os.setsid()
    try:
        pid = os.fork()
    except OSError:
        os._exit(1)
    if pid > 0:
        return ForkRole.INTERMEDIATE

    os.chdir("/")
    os.umask(0o022)
    _redirect_stdio(stdio_path)
    return ForkRole.WORKER


def _redirect_stdio(stdio_path: Optional[Path]) -> None:
    devnull = os.open(os.devnull, os.O_RDWR)
    os.dup2(devnull, sys.stdin.fileno())

    if stdio_path is not None:
        stdio_path.parent.mkdir(parents=True, exist_ok=True)
        out = os.open(stdio_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
    else:
        out = devnull
    os.dup2(out, sys.stdout.fileno())
    os.dup2(out, sys.stderr.fileno())

    if out != devnull:
        os.close(out)
    os.close(devnull)
