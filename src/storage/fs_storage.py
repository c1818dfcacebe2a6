# src/storage/fs_storage.py — v1
"""Local filesystem storage backend (default).

Downloads stream through httpx into a ``.part`` file that is renamed into
place once complete, so a crashed download never leaves a truncated asset
behind under its final name. The manifest is written the same way.
"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path

import httpx

from fansync.storage.base_local_storage import BaseLocalStorage, DownloadError

logger = logging.getLogger(__name__)


class FileSystemStorage(BaseLocalStorage):
    """Store cached assets and the manifest on the local filesystem."""

    def __init__(
        self,
        manifest_path: str | Path,
        timeout_s: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize storage.

        Args:
            manifest_path: File holding the serialized cache manifest.
            timeout_s: Per-request download timeout.
            transport: Optional httpx transport (mock transports in tests).
        """
        self._manifest_path = Path(manifest_path).expanduser()
        self._timeout_s = timeout_s
        self._transport = transport

    async def download(self, url: str, destination: str) -> str:
        dest = Path(destination).expanduser()
        dest.parent.mkdir(parents=True, exist_ok=True)
        partial = dest.with_name(dest.name + ".part")
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout_s,
                transport=self._transport,
                follow_redirects=True,
            ) as client:
                async with client.stream("GET", url) as response:
                    response.raise_for_status()
                    with partial.open("wb") as handle:
                        async for chunk in response.aiter_bytes():
                            handle.write(chunk)
            os.replace(partial, dest)
        except httpx.TimeoutException as e:
            partial.unlink(missing_ok=True)
            raise DownloadError(url, "timeout") from e
        except httpx.HTTPStatusError as e:
            partial.unlink(missing_ok=True)
            raise DownloadError(url, f"HTTP {e.response.status_code}") from e
        except (httpx.RequestError, OSError) as e:
            partial.unlink(missing_ok=True)
            raise DownloadError(url, str(e) or type(e).__name__) from e

        logger.debug("Downloaded %s -> %s", url, dest)
        return dest.as_uri()

    async def read_manifest(self) -> bytes | None:
        if not self._manifest_path.exists():
            return None
        return self._manifest_path.read_bytes()

    async def write_manifest(self, content: bytes) -> None:
        self._manifest_path.parent.mkdir(parents=True, exist_ok=True)
        partial = self._manifest_path.with_name(self._manifest_path.name + ".part")
        partial.write_bytes(content)
        os.replace(partial, self._manifest_path)

    async def delete_manifest(self) -> None:
        self._manifest_path.unlink(missing_ok=True)

    async def exists(self, path: str) -> bool:
        return _to_path(path).exists()

    async def ensure_dir(self, path: str) -> None:
        p = _to_path(path)
        if not p.is_dir():
            p.mkdir(parents=True, exist_ok=True)

    async def remove_dir(self, path: str) -> None:
        p = _to_path(path)
        if p.is_dir():
            shutil.rmtree(p)

    async def delete_file(self, path: str) -> None:
        _to_path(path).unlink(missing_ok=True)

    async def file_size(self, path: str) -> int:
        p = _to_path(path)
        return p.stat().st_size if p.is_file() else 0


def _to_path(path: str) -> Path:
    """Accept both plain paths and ``file://`` URIs."""
    if path.startswith("file://"):
        from urllib.parse import unquote, urlparse

        return Path(unquote(urlparse(path).path))
    return Path(path).expanduser()
