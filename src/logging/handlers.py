# src/logging/handlers.py — v1
"""Log file handlers with size- or time-based rotation.

``rotation`` accepts either a size ("512KB", "10MB", "1GB") or an interval
("daily", "hourly", "midnight", "weekly"). ``retention`` is the number of
rotated files kept in both cases.
"""

from __future__ import annotations

import logging
import re
from logging.handlers import RotatingFileHandler, TimedRotatingFileHandler
from pathlib import Path

_SIZE_RE = re.compile(r"^(\d+)\s*(B|KB|MB|GB)$", re.IGNORECASE)
_UNITS = {"B": 1, "KB": 1024, "MB": 1024**2, "GB": 1024**3}

# rotation keyword -> TimedRotatingFileHandler "when"
_INTERVALS = {"hourly": "H", "daily": "D", "midnight": "midnight", "weekly": "W0"}


def parse_size(size_str: str) -> int:
    """Bytes for a size string such as '10MB' (case-insensitive)."""
    match = _SIZE_RE.match(size_str.strip())
    if not match:
        raise ValueError(f"Invalid size format: {size_str!r}. Use e.g. '10MB'.")
    return int(match.group(1)) * _UNITS[match.group(2).upper()]


def is_interval(rotation: str) -> bool:
    return rotation.strip().lower() in _INTERVALS


def create_file_handler(
    log_file: str | Path,
    rotation: str = "10MB",
    retention: int = 5,
) -> logging.Handler:
    """Rotating file handler for ``log_file``; the parent directory is created."""
    path = Path(log_file).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)

    if is_interval(rotation):
        return TimedRotatingFileHandler(
            filename=str(path),
            when=_INTERVALS[rotation.strip().lower()],
            backupCount=retention,
            encoding="utf-8",
            utc=True,
        )
    return RotatingFileHandler(
        filename=str(path),
        maxBytes=parse_size(rotation),
        backupCount=retention,
        encoding="utf-8",
    )
