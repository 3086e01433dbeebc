"""vpnctl - background VPN session daemon and its command line controls."""

__version__ = "0.1.0"
