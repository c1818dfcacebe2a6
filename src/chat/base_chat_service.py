# src/chat/base_chat_service.py — v1
"""Abstract chat service interface.

A concrete backend wraps a real-time chat SDK. The connection manager only
talks to this interface, so several managers (one per test, one per app
process) can coexist over different service instances.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class ChatServiceError(Exception):
    """Raised by chat backends for transport or API failures."""


class ChannelExistsError(ChatServiceError):
    """Raised by ``create()`` when the channel already exists."""


def is_already_exists(error: Exception) -> bool:
    """True for "channel already exists" failures, whatever the backend."""
    if isinstance(error, ChannelExistsError):
        return True
    return "already exists" in str(error).lower() or getattr(error, "code", None) == 4


class BaseChannelHandle(ABC):
    """Handle on one remote channel."""

    channel_type: str
    channel_id: str

    @property
    @abstractmethod
    def members(self) -> set[str]:
        """Member identities known after the last watch/create."""

    @abstractmethod
    async def watch(self) -> None:
        """Open the channel and start receiving its state."""

    @abstractmethod
    async def add_members(self, identities: list[str]) -> None:
        """Add identities to the channel."""

    @abstractmethod
    async def create(self) -> None:
        """Create the channel. Raises ChannelExistsError if it exists."""


class BaseChatService(ABC):
    """Unified interface for real-time chat backends."""

    @abstractmethod
    async def authenticate(self, identity: str, token: str, profile: dict[str, Any] | None = None) -> None:
        """Open the transport session for ``identity``."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the transport session."""

    @abstractmethod
    def channel(
        self, channel_type: str, channel_id: str, members: list[str] | None = None
    ) -> BaseChannelHandle:
        """Return a handle on a channel (no network call)."""
