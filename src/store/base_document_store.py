# src/store/base_document_store.py — v1
"""Abstract document store interface.

Records are plain dicts carrying their id under ``$id``. Filters are
equality predicates combined conjunctively.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class DocumentStoreError(Exception):
    """Raised by document store backends for any remote failure."""


class DocumentNotFoundError(DocumentStoreError):
    """Raised when updating or deleting a record that does not exist."""


class BaseDocumentStore(ABC):
    """Unified interface for document database backends."""

    @abstractmethod
    async def list(
        self, collection: str, filters: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """Return every record in ``collection`` matching all ``filters``."""

    @abstractmethod
    async def create(
        self, collection: str, doc_id: str | None, fields: dict[str, Any]
    ) -> dict[str, Any]:
        """Create a record. ``doc_id=None`` lets the backend assign a unique id."""

    @abstractmethod
    async def update(
        self, collection: str, doc_id: str, fields: dict[str, Any]
    ) -> dict[str, Any]:
        """Merge ``fields`` into an existing record."""

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> None:
        """Remove a record."""
