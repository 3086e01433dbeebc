"""Daemon log files."""

import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Optional, Union

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_FILE_NAME = "vpnctl.log"


def init_logging(log_dir: Path, level: Union[str, int] = "INFO") -> Path:
    """
    Send root logger output to a daily-rotated file under log_dir.

    Called in the detached worker only; the foreground CLI keeps Python's
    default logging setup.

    Returns:
        Path of the active log file
    """
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILE_NAME

    handler = TimedRotatingFileHandler(log_file, when="midnight", backupCount=7)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)
    return log_file


def latest_log_file(log_dir: Path) -> Optional[Path]:
    """Most recently modified file in log_dir, or None."""
    if not log_dir.is_dir():
        return None
    files = [p for p in log_dir.iterdir() if p.is_file()]
    if not files:
        return None
    return max(files, key=lambda p: p.stat().st_mtime)
