# src/chat/tokens.py — v1
"""Chat token acquisition with caching on the user's profile document.

A token issuer (usually a backend function) is only called when the profile
carries no token yet; the fresh token is written back so the next session
start skips the issuer.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from fansync.store.base_document_store import BaseDocumentStore

logger = logging.getLogger(__name__)

TokenIssuer = Callable[[str], Awaitable[str]]

TOKEN_FIELD = "streamChatToken"


class TokenUnavailableError(Exception):
    """Raised when no chat token could be obtained for an identity."""


class ChatTokenProvider:
    """Get-or-generate chat tokens, cached in the profile collection."""

    def __init__(
        self,
        store: BaseDocumentStore,
        issuer: TokenIssuer,
        profile_collection: str = "profiles",
    ) -> None:
        self._store = store
        self._issuer = issuer
        self._collection = profile_collection

    async def get_or_generate(self, identity: str) -> str:
        """Return the cached token for ``identity`` or issue a new one.

        Raises:
            TokenUnavailableError: If the issuer returned nothing usable.
        """
        profiles = await self._store.list(self._collection, {"userId": identity})
        profile = profiles[0] if profiles else None
        if profile and profile.get(TOKEN_FIELD):
            logger.debug("Using cached chat token for %s", identity)
            return profile[TOKEN_FIELD]

        token = await self._issuer(identity)
        if not token:
            raise TokenUnavailableError(f"Token issuer returned no token for {identity}")

        if profile:
            await self._store.update(self._collection, profile["$id"], {TOKEN_FIELD: token})
        else:
            await self._store.create(self._collection, None, {"userId": identity, TOKEN_FIELD: token})
        logger.info("Issued and cached new chat token for %s", identity)
        return token

    async def clear(self, identity: str) -> None:
        """Drop the cached token (logout, token revocation)."""
        for profile in await self._store.list(self._collection, {"userId": identity}):
            await self._store.update(self._collection, profile["$id"], {TOKEN_FIELD: None})
