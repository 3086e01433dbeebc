"""Configuration management for vpnctl.

Loads daemon settings from ~/.config/vpnctl/config.cfg, then applies
overrides from ~/.config/vpnctl/.env and VPNCTL_* environment variables.
"""

import configparser
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from dotenv import dotenv_values

CONFIG_DIR = Path.home() / ".config" / "vpnctl"
CONFIG_PATH = CONFIG_DIR / "config.cfg"
ENV_PATH = CONFIG_DIR / ".env"
PROFILES_PATH = CONFIG_DIR / "profiles.cfg"

ENV_PREFIX = "VPNCTL_"

DEFAULT_SOCKET_PATH = Path("/tmp/vpnctl.sock")
DEFAULT_LOG_DIR = Path.home() / ".local" / "state" / "vpnctl" / "logs"
DEFAULT_VPNC_SCRIPT = "/opt/vpnc-scripts/vpnc-script"


@dataclass
class DaemonSettings:
    socket_path: Path = DEFAULT_SOCKET_PATH
    log_dir: Path = DEFAULT_LOG_DIR
    log_level: str = "INFO"
    openconnect_binary: str = "openconnect"
    vpnc_script: Optional[str] = DEFAULT_VPNC_SCRIPT
    drain_timeout: float = 2.0
    disconnect_timeout: float = 5.0
    require_root: bool = True


def load_raw_config(
    path: Path = CONFIG_PATH,
    env_path: Optional[Path] = ENV_PATH,
) -> Dict[str, str]:
    """
    Load configuration values with lowercase keys.

    Precedence (highest first): process environment, .env file, config.cfg.
    Only VPNCTL_-prefixed variables are considered, with the prefix stripped.
    """
    cfg = configparser.ConfigParser()
    data: Dict[str, str] = {}

    if path.exists():
        cfg.read(path)
        data.update({k.lower(): v for k, v in cfg["DEFAULT"].items()})

    if env_path is not None and env_path.exists():
        data.update(_prefixed(dotenv_values(env_path)))

    data.update(_prefixed(os.environ))
    return data


def _prefixed(values) -> Dict[str, str]:
    return {
        key[len(ENV_PREFIX):].lower(): value
        for key, value in values.items()
        if key.upper().startswith(ENV_PREFIX) and value is not None
    }


def _get_bool(raw: Dict[str, str], key: str, default: bool = False) -> bool:
    value = raw.get(key)
    if value is None or str(value).strip() == "":
        return default
    return str(value).strip().lower() in {"1", "true", "yes", "y", "on"}


def _get_float(raw: Dict[str, str], key: str, default: float) -> float:
    value = raw.get(key)
    if value is None or str(value).strip() == "":
        return default
    try:
        number = float(value)
    except ValueError:
        raise ValueError(f"Invalid number for '{key}': {value!r}") from None
    if number < 0:
        raise ValueError(f"'{key}' must not be negative (got {number}).")
    return number


def get_daemon_settings(raw: Optional[Dict[str, str]] = None) -> DaemonSettings:
    """
    Build DaemonSettings from raw configuration values.
    Raises ValueError for malformed values.
    """
    raw = load_raw_config() if raw is None else raw

    log_level = raw.get("log_level", "INFO").strip().upper()
    if not isinstance(logging.getLevelName(log_level), int):
        raise ValueError(f"Unknown log level '{log_level}'.")

    # An empty vpnc_script lets openconnect fall back to its built-in default.
    vpnc_script = raw.get("vpnc_script", DEFAULT_VPNC_SCRIPT).strip() or None

    return DaemonSettings(
        socket_path=Path(raw.get("socket_path") or DEFAULT_SOCKET_PATH).expanduser(),
        log_dir=Path(raw.get("log_dir") or DEFAULT_LOG_DIR).expanduser(),
        log_level=log_level,
        openconnect_binary=raw.get("openconnect_binary", "").strip() or "openconnect",
        vpnc_script=vpnc_script,
        drain_timeout=_get_float(raw, "drain_timeout", 2.0),
        disconnect_timeout=_get_float(raw, "disconnect_timeout", 5.0),
        require_root=_get_bool(raw, "require_root", True),
    )
