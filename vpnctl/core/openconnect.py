"""Session engine backed by the openconnect binary.

openconnect runs in the foreground for the whole life of the tunnel, so
``connect`` spawns it and then consumes its output until it exits. The
daemon calls ``connect`` on a worker thread; everything else is called from
the event loop, hence the lock around shared state.

With --verbose openconnect prints the CSTP headers the gateway sent, which
is where the network parameters come from.
"""

import logging
import re
import signal
import subprocess
import threading
from typing import Dict, List, Optional

from vpnctl.core.engine import EngineError, NetworkInfo, SessionEngine, Status
from vpnctl.core.profiles import Profile

logger = logging.getLogger(__name__)

_HEADER_RE = re.compile(r"^\s*(X-CSTP-[A-Za-z0-9-]+):\s*(.*?)\s*$")
_CONFIGURED_RE = re.compile(r"^(?:Configured|Connected) as ([0-9A-Fa-f.:]+)")
_GATEWAY_RE = re.compile(r"^Connected to (?:HTTPS on )?(\S+)")
_CONNECT_RESPONSE_RE = re.compile(r"^Got CONNECT response")

# Headers that map onto a single NetworkInfo field.
_SCALAR_HEADERS = {
    "X-CSTP-Address": "addr",
    "X-CSTP-Netmask": "netmask",
    "X-CSTP-Default-Domain": "domain",
    "X-CSTP-MSIE-Proxy-PAC-URL": "proxy_pac",
    "X-CSTP-MTU": "mtu",
}

_ESTABLISHED_MARKERS = ("ESP session established", "DTLS connected")


def _strip_port(address: str) -> str:
    address = address.rstrip(",")
    if address.startswith("["):
        return address[1:].split("]", 1)[0]
    if address.count(":") == 1:
        return address.split(":", 1)[0]
    return address


class OpenconnectSession(SessionEngine):
    def __init__(
        self,
        binary: str = "openconnect",
        vpnc_script: Optional[str] = None,
        disconnect_timeout: float = 5.0,
    ):
        self.binary = binary
        self.vpnc_script = vpnc_script
        self.disconnect_timeout = disconnect_timeout

        self._lock = threading.Lock()
        self._status = Status.INITIALIZED
        self._profile: Optional[Profile] = None
        self._process: Optional[subprocess.Popen] = None
        self._stop_requested = False
        self._fields: Dict[str, str] = {}
        self._dns: List[str] = []
        self._nbns: List[str] = []
        self._gateway: Optional[str] = None
        self._headers_complete = False

    def build_command(self, profile: Profile) -> List[str]:
        cmd = [
            self.binary,
            "--verbose",
            "--non-inter",
            "--passwd-on-stdin",
            f"--protocol={profile.protocol}",
        ]
        if profile.username:
            cmd.append(f"--user={profile.username}")
        if profile.servercert:
            cmd.append(f"--servercert={profile.servercert}")
        if self.vpnc_script:
            cmd.append(f"--script={self.vpnc_script}")
        cmd.append(profile.server)
        return cmd

    def connect(self, profile: Profile) -> None:
        cmd = self.build_command(profile)
        with self._lock:
            if self._profile is not None:
                raise EngineError("Session already started")
            self._profile = profile
            if self._stop_requested:
                self._status = Status.DISCONNECTED
                return
            self._status = Status.CONNECTING

        logger.info(f"Starting {self.binary} for {profile.name} ({profile.server})")
        try:
            process = subprocess.Popen(
                cmd,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
            )
        except OSError as e:
            with self._lock:
                self._status = Status.ERROR
            raise EngineError(f"Failed to start {self.binary}: {e}") from e

        with self._lock:
            self._process = process
            stop_requested = self._stop_requested
        if stop_requested:
            # disconnect() ran while the process was being spawned
            self._signal_stop(process)

        try:
            process.stdin.write(profile.password + "\n")
            process.stdin.close()
        except (BrokenPipeError, OSError) as e:
            logger.warning(f"Could not pass password to {self.binary}: {e}")

        for line in process.stdout:
            self.consume_line(line.rstrip("\n"))
        code = process.wait()

        with self._lock:
            if self._stop_requested or code == 0:
                self._status = Status.DISCONNECTED
            else:
                self._status = Status.ERROR
            status = self._status
        logger.info(f"{self.binary} exited with status {code}")

        if status is Status.ERROR:
            raise EngineError(f"{self.binary} exited with status {code}")

    def consume_line(self, line: str) -> None:
        """Update status and network parameters from one line of output."""
        logger.debug(f"[openconnect] {line}")
        with self._lock:
            if _CONNECT_RESPONSE_RE.match(line):
                self._start_header_block()
                return

            header = _HEADER_RE.match(line)
            if header:
                self._record_header(header.group(1), header.group(2))
                return

            gateway = _GATEWAY_RE.match(line)
            if gateway:
                self._gateway = _strip_port(gateway.group(1))
                return

            configured = _CONFIGURED_RE.match(line)
            if configured:
                self._fields.setdefault("addr", configured.group(1).rstrip(","))
                self._headers_complete = True
                self._mark_connected()
            elif any(marker in line for marker in _ESTABLISHED_MARKERS):
                self._headers_complete = True
                self._mark_connected()

    def _start_header_block(self) -> None:
        # A reconnect replays the full header set; drop the previous one.
        self._fields.clear()
        self._dns.clear()
        self._nbns.clear()
        self._headers_complete = False

    def _record_header(self, name: str, value: str) -> None:
        if not value:
            return
        if self._headers_complete:
            self._start_header_block()
        if name == "X-CSTP-DNS":
            self._dns.append(value)
        elif name == "X-CSTP-NBNS":
            self._nbns.append(value)
        elif name == "X-CSTP-Address-IP6":
            self._fields["addr6"] = value.split("/", 1)[0]
            self._fields["netmask6"] = value
        elif name in _SCALAR_HEADERS:
            self._fields[_SCALAR_HEADERS[name]] = value

    def _mark_connected(self) -> None:
        if self._status is Status.CONNECTING:
            self._status = Status.CONNECTED
            logger.info("VPN connection established")

    def disconnect(self) -> None:
        with self._lock:
            self._stop_requested = True
            process = self._process
            if process is None:
                if self._status is Status.INITIALIZED:
                    self._status = Status.DISCONNECTED
                elif self._status is Status.CONNECTING:
                    self._status = Status.DISCONNECTING
                return
            if process.poll() is not None:
                return
            self._status = Status.DISCONNECTING
        self._signal_stop(process)

    def _signal_stop(self, process: subprocess.Popen) -> None:
        # SIGINT makes openconnect log off cleanly before exiting.
        logger.info(f"Stopping {self.binary} (PID {process.pid})")
        try:
            process.send_signal(signal.SIGINT)
        except ProcessLookupError:
            return
        timer = threading.Timer(self.disconnect_timeout, self._kill, args=(process,))
        timer.daemon = True
        timer.start()

    def _kill(self, process: subprocess.Popen) -> None:
        if process.poll() is None:
            logger.warning(
                f"{self.binary} still running {self.disconnect_timeout}s after SIGINT, killing"
            )
            process.kill()

    def status(self) -> Status:
        with self._lock:
            return self._status

    def snapshot(self) -> Optional[NetworkInfo]:
        with self._lock:
            if self._status is not Status.CONNECTED:
                return None
            try:
                mtu = int(self._fields.get("mtu", 0))
            except ValueError:
                mtu = 0
            return NetworkInfo(
                mtu=mtu,
                addr=self._fields.get("addr"),
                netmask=self._fields.get("netmask"),
                addr6=self._fields.get("addr6"),
                netmask6=self._fields.get("netmask6"),
                dns=tuple(self._dns),
                nbns=tuple(self._nbns),
                domain=self._fields.get("domain"),
                proxy_pac=self._fields.get("proxy_pac"),
                gateway_addr=self._gateway,
            )

    def _require_profile(self) -> Profile:
        with self._lock:
            profile = self._profile
        if profile is None:
            raise EngineError("No session started")
        return profile

    def server_name(self) -> str:
        return self._require_profile().name

    def server_url(self) -> str:
        return self._require_profile().server

    def hostname(self) -> str:
        profile = self._require_profile()
        with self._lock:
            gateway = self._gateway
        return gateway or profile.host
