"""
Table rendering for daemon status and settings.
"""

from dataclasses import fields
from typing import List, Optional, Tuple

from rich.table import Table

from vpnctl.core.configs import DaemonSettings
from vpnctl.core.engine import NetworkInfo
from vpnctl.daemon.protocol import InfoResult


def _text(value: Optional[object]) -> str:
    return "" if value is None else str(value)


def info_rows(result: InfoResult) -> List[Tuple[str, str]]:
    """Rows of the status table; absent network values render as empty cells."""
    rows = [
        ("Server Name", result.server_name),
        ("Server URL", result.server_url),
        ("Server IP", result.hostname),
        ("Connection Status", result.status),
    ]

    info: Optional[NetworkInfo] = result.info
    if info is None:
        return rows

    rows.extend([
        ("IPv4 Address", _text(info.addr)),
        ("IPv4 Netmask", _text(info.netmask)),
        ("IPv6 Address", _text(info.addr6)),
        ("IPv6 Netmask", _text(info.netmask6)),
    ])
    rows.extend((f"DNS {i}", _text(value)) for i, value in enumerate(info.dns, start=1))
    rows.extend((f"NBNS {i}", _text(value)) for i, value in enumerate(info.nbns, start=1))
    rows.extend([
        ("Domain", _text(info.domain)),
        ("Proxy PAC", _text(info.proxy_pac)),
        ("MTU", str(info.mtu)),
        ("Gateway Address", _text(info.gateway_addr)),
    ])
    return rows


def render_info(result: InfoResult) -> Table:
    table = Table(show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    for label, value in info_rows(result):
        table.add_row(label, value)
    return table


def render_settings(settings: DaemonSettings) -> Table:
    table = Table(title="vpnctl Configuration", show_header=True)
    table.add_column("Setting", style="cyan", width=22)
    table.add_column("Value", style="green")
    for item in fields(settings):
        value = getattr(settings, item.name)
        table.add_row(item.name, "[dim]not set[/dim]" if value is None else str(value))
    return table
