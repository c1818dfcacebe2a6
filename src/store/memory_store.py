# src/store/memory_store.py — v1
"""In-memory document store.

Used for offline operation and as the backend of the test suite. Records are
deep-copied on the way in and out so callers never share mutable state with
the store.
"""

from __future__ import annotations

import copy
import uuid
from typing import Any

from fansync.core.models import utc_now
from fansync.store.base_document_store import (
    BaseDocumentStore,
    DocumentNotFoundError,
    DocumentStoreError,
)


class InMemoryDocumentStore(BaseDocumentStore):
    """Dict-of-dicts document store keyed by collection then ``$id``."""

    def __init__(self, seed: dict[str, list[dict[str, Any]]] | None = None) -> None:
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        for collection, records in (seed or {}).items():
            for record in records:
                doc_id = record.get("$id") or uuid.uuid4().hex
                self._bucket(collection)[doc_id] = {**copy.deepcopy(record), "$id": doc_id}

    def _bucket(self, collection: str) -> dict[str, dict[str, Any]]:
        return self._collections.setdefault(collection, {})

    async def list(
        self, collection: str, filters: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        filters = filters or {}
        return [
            copy.deepcopy(record)
            for record in self._bucket(collection).values()
            if all(record.get(k) == v for k, v in filters.items())
        ]

    async def create(
        self, collection: str, doc_id: str | None, fields: dict[str, Any]
    ) -> dict[str, Any]:
        doc_id = doc_id or uuid.uuid4().hex
        bucket = self._bucket(collection)
        if doc_id in bucket:
            raise DocumentStoreError(f"Document {doc_id!r} already exists in {collection!r}")
        record = {
            **copy.deepcopy(fields),
            "$id": doc_id,
            "$createdAt": fields.get("$createdAt") or utc_now().isoformat(),
        }
        bucket[doc_id] = record
        return copy.deepcopy(record)

    async def update(
        self, collection: str, doc_id: str, fields: dict[str, Any]
    ) -> dict[str, Any]:
        bucket = self._bucket(collection)
        if doc_id not in bucket:
            raise DocumentNotFoundError(f"Document {doc_id!r} not found in {collection!r}")
        bucket[doc_id].update(copy.deepcopy(fields))
        return copy.deepcopy(bucket[doc_id])

    async def delete(self, collection: str, doc_id: str) -> None:
        bucket = self._bucket(collection)
        if doc_id not in bucket:
            raise DocumentNotFoundError(f"Document {doc_id!r} not found in {collection!r}")
        del bucket[doc_id]

    def snapshot(self, collection: str) -> list[dict[str, Any]]:
        """Synchronous copy of a collection's records (diagnostics and tests)."""
        return copy.deepcopy(list(self._bucket(collection).values()))
