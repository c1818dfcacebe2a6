# tests/conftest.py — v1
"""Shared test fixtures for all unit and integration tests.

Provides in-memory fakes for the chat backend and local storage, an
in-memory document store, settings, and a subscription document factory.
No network or filesystem access unless a test asks for ``tmp_path``.
"""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import AsyncMock

import pytest

from fansync.chat.base_chat_service import (
    BaseChannelHandle,
    BaseChatService,
    ChannelExistsError,
    ChatServiceError,
)
from fansync.chat.connection import ChatConnectionManager
from fansync.chat.tokens import ChatTokenProvider
from fansync.config.settings import Settings
from fansync.storage.base_local_storage import BaseLocalStorage, DownloadError
from fansync.store.memory_store import InMemoryDocumentStore


# === FAKES: Chat ===


class FakeChannelHandle(BaseChannelHandle):
    """Channel handle backed by the owning FakeChatService's registry."""

    def __init__(
        self, service: FakeChatService, channel_type: str, channel_id: str, members: list[str]
    ) -> None:
        self.channel_type = channel_type
        self.channel_id = channel_id
        self._service = service
        self._initial_members = set(members)

    @property
    def members(self) -> set[str]:
        return set(self._service.channel_members.get(self.channel_id, set()))

    async def watch(self) -> None:
        self._service.check("watch", self.channel_id)
        self._service.channel_members.setdefault(self.channel_id, set())
        self._service.watched.add(self.channel_id)

    async def add_members(self, identities: list[str]) -> None:
        self._service.check("add_members", self.channel_id)
        self._service.channel_members.setdefault(self.channel_id, set()).update(identities)

    async def create(self) -> None:
        self._service.check("create", self.channel_id)
        if self.channel_id in self._service.channel_members:
            raise ChannelExistsError(f"Channel {self.channel_id} already exists")
        self._service.channel_members[self.channel_id] = set(self._initial_members)
        self._service.created.append(self.channel_id)


class FakeChatService(BaseChatService):
    """Records every call; failures are injected per channel id fragment."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str | None]] = []
        self.connected_identity: str | None = None
        self.channel_members: dict[str, set[str]] = {}
        self.watched: set[str] = set()
        self.created: list[str] = []
        self.failing_channels: set[str] = set()
        self.authenticate_error: Exception | None = None
        self.disconnect_error: Exception | None = None
        self.authenticate_gate: asyncio.Event | None = None

    @property
    def authenticate_calls(self) -> int:
        return sum(1 for name, _ in self.calls if name == "authenticate")

    @property
    def disconnect_calls(self) -> int:
        return sum(1 for name, _ in self.calls if name == "disconnect")

    def check(self, operation: str, channel_id: str) -> None:
        if any(fragment in channel_id for fragment in self.failing_channels):
            raise ChatServiceError(f"{operation} failed for {channel_id}")

    async def authenticate(
        self, identity: str, token: str, profile: dict[str, Any] | None = None
    ) -> None:
        self.calls.append(("authenticate", identity))
        if self.authenticate_gate is not None:
            await self.authenticate_gate.wait()
        if self.authenticate_error is not None:
            raise self.authenticate_error
        self.connected_identity = identity

    async def disconnect(self) -> None:
        self.calls.append(("disconnect", self.connected_identity))
        if self.disconnect_error is not None:
            raise self.disconnect_error
        self.connected_identity = None

    def channel(
        self, channel_type: str, channel_id: str, members: list[str] | None = None
    ) -> FakeChannelHandle:
        return FakeChannelHandle(self, channel_type, channel_id, members or [])


# === FAKES: Local storage ===


def _strip_uri(path: str) -> str:
    return path[len("file://"):] if path.startswith("file://") else path


class FakeLocalStorage(BaseLocalStorage):
    """Dict-backed storage. Downloads can be gated or made to fail per URL."""

    def __init__(self) -> None:
        self.files: dict[str, bytes] = {}
        self.dirs: set[str] = set()
        self.manifest: bytes | None = None
        self.download_calls: list[str] = []
        self.failing_urls: set[str] = set()
        self.gate: asyncio.Event | None = None
        self.manifest_writes = 0

    async def download(self, url: str, destination: str) -> str:
        self.download_calls.append(url)
        if self.gate is not None:
            await self.gate.wait()
        else:
            await asyncio.sleep(0)
        if url in self.failing_urls:
            raise DownloadError(url, "HTTP 404")
        self.files[destination] = f"bytes of {url}".encode()
        return f"file://{destination}"

    async def read_manifest(self) -> bytes | None:
        return self.manifest

    async def write_manifest(self, content: bytes) -> None:
        self.manifest = content
        self.manifest_writes += 1

    async def delete_manifest(self) -> None:
        self.manifest = None

    async def exists(self, path: str) -> bool:
        path = _strip_uri(path)
        return path in self.files or path in self.dirs

    async def ensure_dir(self, path: str) -> None:
        self.dirs.add(_strip_uri(path))

    async def remove_dir(self, path: str) -> None:
        path = _strip_uri(path)
        self.dirs.discard(path)
        for name in [f for f in self.files if f.startswith(f"{path}/")]:
            del self.files[name]

    async def delete_file(self, path: str) -> None:
        self.files.pop(_strip_uri(path), None)

    async def file_size(self, path: str) -> int:
        return len(self.files.get(_strip_uri(path), b""))


# === FIXTURES ===


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings isolated from any local .env file."""
    return Settings(_env_file=None, cache_root=tmp_path / "cache")


@pytest.fixture
def document_store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def chat_service() -> FakeChatService:
    return FakeChatService()


@pytest.fixture
def local_storage() -> FakeLocalStorage:
    return FakeLocalStorage()


@pytest.fixture
def token_issuer() -> AsyncMock:
    return AsyncMock(side_effect=lambda identity: f"token-{identity}")


@pytest.fixture
def token_provider(document_store, token_issuer, settings) -> ChatTokenProvider:
    return ChatTokenProvider(document_store, token_issuer, settings.profile_collection)


@pytest.fixture
def chat_manager(chat_service, token_provider, settings) -> ChatConnectionManager:
    return ChatConnectionManager(chat_service, token_provider, settings)


@pytest.fixture
def subscription_doc():
    """Factory for live subscription documents in store (camelCase) form."""

    def make(
        doc_id: str,
        user_id: str = "u1",
        creator: str = "alice",
        status: str = "active",
        stripe_id: str = "sub_1",
        ends_at: str | None = None,
        **extra: Any,
    ) -> dict[str, Any]:
        doc = {
            "$id": doc_id,
            "userId": user_id,
            "creatorId": creator,
            "creatorName": creator,
            "stripeSubscriptionId": stripe_id,
            "status": status,
            "endsAt": ends_at,
        }
        doc.update(extra)
        return doc

    return make
