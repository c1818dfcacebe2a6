# src/logging/logger.py — v1
"""Logging setup for the ``fansync`` logger tree.

A ``SessionContextFilter`` copies the session context (identity, generation,
component) onto every record as it is handled. Records are handled in the
emitting task, so a background task of an old session keeps logging under
that session. Both formatters read the context from the record.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from fansync.logging.context import get_context

ROOT_LOGGER = "fansync"

_CONTEXT_ATTRS = ("identity", "generation", "component")


class SessionContextFilter(logging.Filter):
    """Attach the current session context to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        ctx = get_context()
        for attr in _CONTEXT_ATTRS:
            if not hasattr(record, attr):
                setattr(record, attr, getattr(ctx, attr))
        return True


def _record_context(record: logging.LogRecord) -> dict[str, Any]:
    values = {attr: getattr(record, attr, None) for attr in _CONTEXT_ATTRS}
    return {k: v for k, v in values.items() if v is not None}


def _timestamp(record: logging.LogRecord) -> datetime:
    return datetime.fromtimestamp(record.created, tz=timezone.utc)


class JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": _timestamp(record).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        context = _record_context(record)
        if context:
            entry["context"] = context
        data = getattr(record, "data", None)
        if data:
            entry["data"] = data
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """``2026-01-01 12:00:00 [INFO    ] fansync.x <alice#3> [chat] - message``"""

    def format(self, record: logging.LogRecord) -> str:
        context = _record_context(record)
        parts = [
            _timestamp(record).strftime("%Y-%m-%d %H:%M:%S"),
            f"[{record.levelname:8s}]",
            record.name,
        ]
        if "identity" in context:
            parts.append(f"<{context['identity']}#{context.get('generation', '?')}>")
        if "component" in context:
            parts.append(f"[{context['component']}]")
        parts.append(f"- {record.getMessage()}")
        line = " ".join(parts)
        if record.exc_info and record.exc_info[1] is not None:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def get_logger(name: str) -> logging.Logger:
    """Logger below the ``fansync`` tree; ``setup_logging`` configures it."""
    if name == ROOT_LOGGER or name.startswith(f"{ROOT_LOGGER}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def setup_logging(
    level: str = "INFO",
    log_format: str = "text",
    log_file: str | None = None,
    rotation: str = "10MB",
    retention: int = 5,
) -> logging.Logger:
    """(Re)configure the ``fansync`` logger; repeated calls replace handlers.

    Args:
        level: DEBUG, INFO, WARNING or ERROR.
        log_format: "json" or "text".
        log_file: Optional log file in addition to stdout.
        rotation: File rotation size ("10MB") or interval ("daily").
        retention: Rotated files to keep.
    """
    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    formatter: logging.Formatter = JsonFormatter() if log_format == "json" else TextFormatter()
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        from fansync.logging.handlers import create_file_handler

        handlers.append(create_file_handler(log_file, rotation=rotation, retention=retention))

    context_filter = SessionContextFilter()
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(context_filter)
        root.addHandler(handler)
    return root


def setup_logging_from_settings(settings: Any) -> logging.Logger:
    """Apply the logging section of a ``Settings`` instance."""
    return setup_logging(
        level=settings.log_level,
        log_format=settings.log_format,
        log_file=str(settings.log_file) if settings.log_file else None,
        rotation=settings.log_rotation,
        retention=settings.log_retention,
    )
