# src/session/events.py — v1
"""Explicit session event emitter.

Consumers subscribe to named events instead of reaching into a global
callback registry. Handlers run synchronously in emit order; a failing
handler is logged and does not prevent the others from running.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Callable

logger = logging.getLogger(__name__)

IDENTITY_CHANGED = "identity_changed"
CHAT_STATE_CHANGED = "chat_state_changed"
SUBSCRIPTIONS_LOADED = "subscriptions_loaded"
POSTS_LOADED = "posts_loaded"
IMAGES_PRELOADED = "images_preloaded"
CHANNELS_PROVISIONED = "channels_provisioned"

Handler = Callable[[Any], None]


class SessionEvents:
    """Named-event publish/subscribe."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = defaultdict(list)

    def on(self, event: str, handler: Handler) -> Callable[[], None]:
        """Subscribe ``handler``; returns a function that unsubscribes it."""
        self._handlers[event].append(handler)
        return lambda: self.off(event, handler)

    def off(self, event: str, handler: Handler) -> None:
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def emit(self, event: str, payload: Any = None) -> None:
        for handler in list(self._handlers.get(event, [])):
            try:
                handler(payload)
            except Exception:
                logger.exception("Handler for %r failed", event)
