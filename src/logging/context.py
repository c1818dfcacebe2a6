# src/logging/context.py — v1
"""Contextual logging support: attach identity, session generation and
component to log records.

Values live in context variables so that background tasks spawned for one
session keep logging under that session even after the active identity moved
on.
"""

from __future__ import annotations

import contextvars
from dataclasses import dataclass
from typing import Any

_identity: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "identity", default=None
)
_generation: contextvars.ContextVar[int | None] = contextvars.ContextVar(
    "generation", default=None
)
_component: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "component", default=None
)


@dataclass
class LogContext:
    """Immutable snapshot of current logging context."""

    identity: str | None = None
    generation: int | None = None
    component: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Return non-None fields as dict for JSON log injection."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


def get_context() -> LogContext:
    """Snapshot current context variables."""
    return LogContext(
        identity=_identity.get(),
        generation=_generation.get(),
        component=_component.get(),
    )


def set_session_context(identity: str | None, generation: int) -> None:
    """Set session-level context (called on every identity change)."""
    _identity.set(identity)
    _generation.set(generation)


def set_component_context(component: str | None) -> None:
    """Set the component currently doing work (cache, chat, subscriptions...)."""
    _component.set(component)


def clear_context() -> None:
    """Reset all context variables."""
    _identity.set(None)
    _generation.set(None)
    _component.set(None)
