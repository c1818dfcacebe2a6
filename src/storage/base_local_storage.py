# src/storage/base_local_storage.py — v1
"""Abstract local durable storage interface.

Covers what the image cache needs from the device: downloading a remote
asset to a path, reading and writing the manifest record, and directory
housekeeping.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class DownloadError(Exception):
    """Raised when a remote asset could not be fetched or written."""

    def __init__(self, url: str, reason: str) -> None:
        self.url = url
        self.reason = reason
        super().__init__(f"Download failed for {url}: {reason}")


class BaseLocalStorage(ABC):
    """Unified interface for on-device storage backends."""

    @abstractmethod
    async def download(self, url: str, destination: str) -> str:
        """Fetch ``url`` into ``destination``; return the local URI."""

    @abstractmethod
    async def read_manifest(self) -> bytes | None:
        """Return the persisted manifest, or None if none was written yet."""

    @abstractmethod
    async def write_manifest(self, content: bytes) -> None:
        """Durably replace the manifest."""

    @abstractmethod
    async def delete_manifest(self) -> None:
        """Remove the manifest (no-op if absent)."""

    @abstractmethod
    async def exists(self, path: str) -> bool:
        """Check if a file or directory exists."""

    @abstractmethod
    async def ensure_dir(self, path: str) -> None:
        """Create a directory if it does not exist yet."""

    @abstractmethod
    async def remove_dir(self, path: str) -> None:
        """Recursively remove a directory (no-op if absent)."""

    @abstractmethod
    async def delete_file(self, path: str) -> None:
        """Remove a single file (no-op if absent)."""

    @abstractmethod
    async def file_size(self, path: str) -> int:
        """Size in bytes of a local file, 0 if it is missing."""
