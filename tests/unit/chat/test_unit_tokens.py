# tests/unit/chat/test_unit_tokens.py — v1
"""Tests for chat/tokens.py — token caching on the profile document."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from fansync.chat.tokens import TOKEN_FIELD, ChatTokenProvider, TokenUnavailableError
from fansync.store.memory_store import InMemoryDocumentStore


class TestChatTokenProvider:
    @pytest.mark.asyncio
    async def test_cached_token_skips_issuer(self):
        store = InMemoryDocumentStore(
            seed={"profiles": [{"$id": "p1", "userId": "u1", TOKEN_FIELD: "cached"}]}
        )
        issuer = AsyncMock()
        assert await ChatTokenProvider(store, issuer).get_or_generate("u1") == "cached"
        issuer.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_issues_and_stores_on_existing_profile(self):
        store = InMemoryDocumentStore(seed={"profiles": [{"$id": "p1", "userId": "u1"}]})
        issuer = AsyncMock(return_value="fresh")
        provider = ChatTokenProvider(store, issuer)
        assert await provider.get_or_generate("u1") == "fresh"
        assert store.snapshot("profiles")[0][TOKEN_FIELD] == "fresh"
        assert await provider.get_or_generate("u1") == "fresh"
        issuer.assert_awaited_once_with("u1")

    @pytest.mark.asyncio
    async def test_creates_profile_when_missing(self, document_store):
        provider = ChatTokenProvider(document_store, AsyncMock(return_value="t"))
        await provider.get_or_generate("u9")
        docs = document_store.snapshot("profiles")
        assert docs[0]["userId"] == "u9"
        assert docs[0][TOKEN_FIELD] == "t"

    @pytest.mark.asyncio
    async def test_empty_token_raises(self, document_store):
        provider = ChatTokenProvider(document_store, AsyncMock(return_value=""))
        with pytest.raises(TokenUnavailableError):
            await provider.get_or_generate("u1")

    @pytest.mark.asyncio
    async def test_clear(self):
        store = InMemoryDocumentStore(
            seed={"profiles": [{"$id": "p1", "userId": "u1", TOKEN_FIELD: "old"}]}
        )
        issuer = AsyncMock(return_value="new")
        provider = ChatTokenProvider(store, issuer)
        await provider.clear("u1")
        assert await provider.get_or_generate("u1") == "new"
