#!/usr/bin/env python3
"""
Main entry point for the vpnctl CLI.

This delegates to the UI layer in vpnctl.ui.cli to keep the
console script mapping stable.
"""

from vpnctl.ui.cli import run as vpnctl


if __name__ == "__main__":
    vpnctl()
