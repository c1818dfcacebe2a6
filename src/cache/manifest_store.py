# src/cache/manifest_store.py — v1
"""JSON persistence of the image cache manifest.

The whole manifest is one record. Unreadable content is reported as
``ManifestCorruptError`` so the cache can decide to start over.
"""

from __future__ import annotations

import json
import logging

from pydantic import ValidationError

from fansync.core.models import CacheManifest
from fansync.storage.base_local_storage import BaseLocalStorage

logger = logging.getLogger(__name__)


class ManifestCorruptError(Exception):
    """Raised when the persisted manifest cannot be parsed."""


class ManifestStore:
    """Read and write the manifest through a local storage backend."""

    def __init__(self, storage: BaseLocalStorage) -> None:
        self._storage = storage

    async def load(self) -> CacheManifest | None:
        """Return the persisted manifest, or None if nothing was saved yet.

        Raises:
            ManifestCorruptError: If the stored bytes are not a valid manifest.
        """
        raw = await self._storage.read_manifest()
        if raw is None:
            return None
        try:
            return CacheManifest.model_validate_json(raw)
        except (ValidationError, json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ManifestCorruptError(str(e)) from e

    async def save(self, manifest: CacheManifest) -> None:
        await self._storage.write_manifest(manifest.model_dump_json().encode("utf-8"))
        logger.debug("Manifest saved (%d entries)", len(manifest.entries))

    async def delete(self) -> None:
        await self._storage.delete_manifest()
