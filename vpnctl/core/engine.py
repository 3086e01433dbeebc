"""Session engine contract.

The engine is the component that actually negotiates the tunnel. The daemon
only talks to it through this interface, so the supervisor can be driven by
the openconnect-backed implementation in production and by a scripted fake
in tests.

An engine instance *is* the session handle: it is created once per daemon,
``connect`` runs on a worker thread for the whole life of the tunnel, and the
remaining methods are called from the event loop while it runs.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Tuple

# DNS and NBNS slots are positional, the engine always reports three of each.
SERVER_SLOTS = 3


class EngineError(Exception):
    """Raised when the engine cannot answer or perform an operation."""


class Status(Enum):
    INITIALIZED = "initialized"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTING = "disconnecting"
    DISCONNECTED = "disconnected"
    ERROR = "error"

    @property
    def label(self) -> str:
        """Human-readable rendering used on the wire."""
        return self.value.capitalize()


def _slots(values: Optional[Iterable[Optional[str]]]) -> Tuple[Optional[str], ...]:
    items = list(values or [])[:SERVER_SLOTS]
    items.extend([None] * (SERVER_SLOTS - len(items)))
    return tuple(items)


@dataclass(frozen=True)
class NetworkInfo:
    """Point-in-time copy of the negotiated network parameters.

    ``None`` means the value was not negotiated.
    """

    mtu: int
    addr: Optional[str] = None
    netmask: Optional[str] = None
    addr6: Optional[str] = None
    netmask6: Optional[str] = None
    dns: Tuple[Optional[str], ...] = field(default=(None, None, None))
    nbns: Tuple[Optional[str], ...] = field(default=(None, None, None))
    domain: Optional[str] = None
    proxy_pac: Optional[str] = None
    gateway_addr: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "dns", _slots(self.dns))
        object.__setattr__(self, "nbns", _slots(self.nbns))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "addr": self.addr,
            "netmask": self.netmask,
            "addr6": self.addr6,
            "netmask6": self.netmask6,
            "dns": list(self.dns),
            "nbns": list(self.nbns),
            "domain": self.domain,
            "proxy_pac": self.proxy_pac,
            "mtu": self.mtu,
            "gateway_addr": self.gateway_addr,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NetworkInfo":
        """Build from a decoded payload, ignoring keys this version does not know."""
        return cls(
            mtu=int(data.get("mtu") or 0),
            addr=data.get("addr"),
            netmask=data.get("netmask"),
            addr6=data.get("addr6"),
            netmask6=data.get("netmask6"),
            dns=_slots(data.get("dns")),
            nbns=_slots(data.get("nbns")),
            domain=data.get("domain"),
            proxy_pac=data.get("proxy_pac"),
            gateway_addr=data.get("gateway_addr"),
        )


class SessionEngine(ABC):
    """Handle onto one tunnel session."""

    @abstractmethod
    def connect(self, profile) -> None:
        """Establish the session and block until it ends."""

    @abstractmethod
    def disconnect(self) -> None:
        """Ask the session to end. Must not block."""

    @abstractmethod
    def status(self) -> Status:
        ...

    @abstractmethod
    def snapshot(self) -> Optional[NetworkInfo]:
        """Current network parameters, or ``None`` while unavailable."""

    @abstractmethod
    def server_name(self) -> str:
        ...

    @abstractmethod
    def server_url(self) -> str:
        ...

    @abstractmethod
    def hostname(self) -> str:
        ...
