"""Read-only access to stored connection profiles.

Profiles live in ~/.config/vpnctl/profiles.cfg, one section per profile:

    [work]
    server = https://vpn.example.com
    username = alice
    password = secret
    protocol = anyconnect
    servercert = pin-sha256:AbCd...

Creating and editing profiles is left to the user; vpnctl only resolves them.
"""

import configparser
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlsplit

from vpnctl.core.configs import PROFILES_PATH


class ProfileError(Exception):
    """Raised when a profile cannot be used."""


class ProfileNotFoundError(ProfileError):
    def __init__(self, name: str):
        super().__init__(f"Server {name} not found")
        self.name = name


@dataclass(frozen=True)
class Profile:
    name: str
    server: str
    username: str = ""
    password: str = field(default="", repr=False)
    protocol: str = "anyconnect"
    servercert: str = ""

    @property
    def host(self) -> str:
        """Host part of the server address, which may be given with or without a scheme."""
        address = self.server if "//" in self.server else f"//{self.server}"
        return urlsplit(address).hostname or self.server


class ProfileStore:
    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else PROFILES_PATH

    def _read(self) -> configparser.ConfigParser:
        cfg = configparser.ConfigParser(interpolation=None)
        if self.path.exists():
            cfg.read(self.path)
        return cfg

    def names(self) -> List[str]:
        return self._read().sections()

    def resolve(self, name: str) -> Profile:
        """
        Look up a profile by name.

        Raises:
            ProfileNotFoundError: No section with that name
            ProfileError: The section has no server address
        """
        cfg = self._read()
        if not cfg.has_section(name):
            raise ProfileNotFoundError(name)

        section = cfg[name]
        server = section.get("server", "").strip()
        if not server:
            raise ProfileError(f"Profile '{name}' has no server address")

        return Profile(
            name=name,
            server=server,
            username=section.get("username", ""),
            password=section.get("password", ""),
            protocol=section.get("protocol", "anyconnect").strip() or "anyconnect",
            servercert=section.get("servercert", "").strip(),
        )
