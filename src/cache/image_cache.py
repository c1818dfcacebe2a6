# src/cache/image_cache.py — v1
"""Content-addressable image cache.

Maps remote media URLs to durable local files. Lookups never block on the
network: a miss hands the remote URL back to the caller and caches the asset
in the background so the next lookup hits.

Guarantees:
  - one download per URL at a time (in-flight map of shared tasks)
  - the manifest is persisted once per batch, never per entry
  - a failed download leaves the manifest untouched for that URL
  - entries whose file vanished are tolerated; ``verify`` re-caches them
  - past the size cap the oldest entries are evicted down to 80% of it
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta

from fansync.cache.fingerprint import cache_file_name, compute_cache_key, is_local_uri
from fansync.cache.manifest_store import ManifestCorruptError, ManifestStore
from fansync.config.settings import Settings
from fansync.core.models import CacheEntry, CacheManifest, PreloadResult, utc_now
from fansync.storage.base_local_storage import BaseLocalStorage, DownloadError

logger = logging.getLogger(__name__)


class ImageCacheManager:
    """Resolve remote image URLs to cached local files.

    Args:
        storage: Local storage backend (downloads, manifest, directories).
        settings: Cache directory, max age and app version.
    """

    def __init__(self, storage: BaseLocalStorage, settings: Settings | None = None) -> None:
        self._storage = storage
        self._settings = settings or Settings()
        self._manifest_store = ManifestStore(storage)
        self._manifest = CacheManifest(version=self._settings.app_version)
        self._key_owners: dict[str, str] = {}
        self._in_flight: dict[str, asyncio.Task[str | None]] = {}
        self._background: set[asyncio.Task[None]] = set()
        self._dirty = False
        # Bumped by clear(); downloads started before a clear are discarded.
        self._epoch = 0

    @property
    def cache_dir(self) -> str:
        return str(self._settings.image_cache_dir)

    @property
    def manifest(self) -> CacheManifest:
        return self._manifest

    def __len__(self) -> int:
        return len(self._manifest.entries)

    # --- Lookups ---

    def lookup(self, url: str) -> CacheEntry | None:
        return self._manifest.entries.get(url)

    def resolve(self, url: str | None) -> str | None:
        """Local path for ``url`` if cached, else ``url`` itself.

        A hit is returned optimistically, without checking the file. A miss
        schedules a background download so a later call can hit.
        """
        if not url:
            return None
        entry = self._manifest.entries.get(url)
        if entry is not None:
            return entry.local_path
        if not is_local_uri(url):
            self._spawn(self._cache_and_persist(url))
        return url

    def cache_size(self) -> int:
        """Total size in bytes of all cached assets."""
        return sum(entry.size for entry in self._manifest.entries.values())

    # --- Downloads ---

    async def ensure_cached(self, url: str) -> str | None:
        """Download ``url`` into the cache unless already cached or in flight.

        Returns the local path, or None if the asset is local or the download
        failed. Does not persist the manifest; see ``preload`` and ``persist``.
        """
        entry = self._manifest.entries.get(url)
        if entry is not None:
            return entry.local_path
        if is_local_uri(url):
            logger.debug("Local file, skipping cache: %s", url)
            return None

        task = self._in_flight.get(url)
        if task is None:
            task = asyncio.ensure_future(self._download(url, self._epoch))
            self._in_flight[url] = task
            task.add_done_callback(lambda t, u=url: self._release_in_flight(u, t))
        # Shielded: a cancelled waiter must not cancel the shared download.
        return await asyncio.shield(task)

    def _release_in_flight(self, url: str, task: asyncio.Task[str | None]) -> None:
        if self._in_flight.get(url) is task:
            del self._in_flight[url]

    async def _download(self, url: str, epoch: int) -> str | None:
        key = self._reserve_key(url)
        destination = f"{self.cache_dir}/{cache_file_name(key, url)}"
        try:
            await self._ensure_dir()
            local_uri = await self._storage.download(url, destination)
            size = await self._storage.file_size(local_uri)
        except (DownloadError, OSError) as e:
            logger.warning("Failed to cache %s, falling back to remote URL: %s", url, e)
            self._release_key(key, url)
            return None
        except Exception:
            logger.exception("Unexpected error caching %s", url)
            self._release_key(key, url)
            return None

        if epoch != self._epoch:
            logger.debug("Cache cleared during download of %s, discarding", url)
            # A download started after the clear may own the same file.
            if url not in self._in_flight and url not in self._manifest.entries:
                try:
                    await self._storage.delete_file(local_uri)
                except OSError as e:
                    logger.debug("Could not remove discarded download %s: %s", local_uri, e)
            return None

        self._manifest.entries[url] = CacheEntry(
            source_url=url, cache_key=key, local_path=local_uri, size=size
        )
        self._dirty = True
        logger.debug("Cached %s (%d bytes) as %s", url, size, key)
        return local_uri

    async def _ensure_dir(self) -> None:
        if not await self._storage.exists(self.cache_dir):
            await self._storage.ensure_dir(self.cache_dir)

    def _reserve_key(self, url: str) -> str:
        """Cache key for ``url``, suffixed when another URL already owns it."""
        base = compute_cache_key(url)
        key, n = base, 1
        while self._key_owners.get(key, url) != url:
            key = f"{base}-{n}"
            n += 1
        self._key_owners[key] = url
        return key

    def _release_key(self, key: str, url: str) -> None:
        if self._key_owners.get(key) == url:
            del self._key_owners[key]

    async def preload(self, urls: list[str]) -> PreloadResult:
        """Cache a batch of URLs concurrently, then persist the manifest once.

        Failures are isolated per URL and reported in the result.
        """
        result = PreloadResult()
        pending: list[str] = []
        for url in dict.fromkeys(u for u in urls if u):
            if url in self._manifest.entries or is_local_uri(url):
                result.skipped.append(url)
            else:
                pending.append(url)

        outcomes = await asyncio.gather(
            *(self.ensure_cached(url) for url in pending), return_exceptions=True
        )
        for url, outcome in zip(pending, outcomes):
            if isinstance(outcome, BaseException) or outcome is None:
                result.failed.append(url)
            else:
                result.cached.append(url)

        if result.cached:
            await self.enforce_size_limit()
            await self.persist()
        logger.info(
            "Preload complete: %d cached, %d failed, %d skipped",
            len(result.cached), len(result.failed), len(result.skipped),
        )
        return result

    async def _cache_and_persist(self, url: str) -> None:
        if await self.ensure_cached(url) is not None:
            await self.enforce_size_limit()
            await self.persist()

    # --- Persistence & housekeeping ---

    async def persist(self) -> bool:
        """Write the manifest if it changed since the last write."""
        if not self._dirty:
            return True
        self._manifest.version = self._settings.app_version
        try:
            await self._manifest_store.save(self._manifest)
        except Exception as e:
            logger.error("Failed to save image cache manifest: %s", e)
            return False
        self._dirty = False
        return True

    async def load(self, now: datetime | None = None) -> None:
        """Load the persisted manifest and drop what is stale.

        A corrupt manifest or a manifest written by another app version
        clears the whole cache.
        """
        try:
            manifest = await self._manifest_store.load()
        except ManifestCorruptError as e:
            logger.error("Image cache manifest unreadable, clearing cache: %s", e)
            await self.clear()
            return
        except Exception as e:
            logger.error("Failed to read image cache manifest, clearing cache: %s", e)
            await self.clear()
            return

        if manifest is None:
            logger.info("No image cache manifest found")
            return
        if manifest.version != self._settings.app_version:
            logger.info(
                "App version changed from %s to %s, clearing image cache",
                manifest.version or "unknown", self._settings.app_version,
            )
            await self.clear()
            return

        self._manifest = manifest
        self._key_owners = {e.cache_key: url for url, e in manifest.entries.items()}
        logger.info("Image cache initialized with %d entries", len(manifest.entries))
        await self.purge_expired(now)

    async def purge_expired(self, now: datetime | None = None) -> int:
        """Remove entries older than the configured max age."""
        now = now or utc_now()
        cutoff = now - timedelta(seconds=self._settings.image_cache_max_age_s)
        expired = [url for url, e in self._manifest.entries.items() if e.cached_at < cutoff]
        await self._evict(expired)
        if expired:
            logger.info("Purged %d expired image cache entries", len(expired))
            await self.persist()
        return len(expired)

    async def enforce_size_limit(self) -> int:
        """Evict the oldest entries once the cache outgrows its size cap.

        Eviction stops at 80% of the cap so that the next few downloads do
        not trigger another round. Does not persist the manifest.
        """
        limit = self._settings.image_cache_max_bytes
        total = self.cache_size()
        if not limit or total <= limit:
            return 0
        target = limit * 0.8
        victims: list[str] = []
        for url, entry in sorted(self._manifest.entries.items(), key=lambda kv: kv[1].cached_at):
            if total <= target:
                break
            victims.append(url)
            total -= entry.size
        await self._evict(victims)
        logger.info(
            "Image cache over %d bytes, evicted %d oldest entries (%d bytes left)",
            limit, len(victims), total,
        )
        return len(victims)

    async def _evict(self, urls: list[str]) -> None:
        for url in urls:
            entry = self._manifest.entries.pop(url)
            self._release_key(entry.cache_key, url)
            try:
                await self._storage.delete_file(entry.local_path)
            except OSError as e:
                logger.warning("Failed to delete cache file %s: %s", entry.local_path, e)
        if urls:
            self._dirty = True

    async def verify(self, url: str) -> bool:
        """Check the file behind a manifest entry; re-cache it if missing."""
        entry = self._manifest.entries.get(url)
        if entry is None:
            return False
        try:
            present = await self._storage.exists(entry.local_path)
        except OSError:
            present = False
        if present:
            return True

        logger.info("Cached file missing, re-caching %s", url)
        del self._manifest.entries[url]
        self._release_key(entry.cache_key, url)
        self._dirty = True
        self._spawn(self._cache_and_persist(url))
        return False

    async def clear(self) -> None:
        """Drop every entry, the manifest and the cached files."""
        self._epoch += 1
        # Later requests start fresh downloads instead of joining discarded ones.
        self._in_flight.clear()
        self._manifest = CacheManifest(version=self._settings.app_version)
        self._key_owners.clear()
        self._dirty = False
        try:
            await self._manifest_store.delete()
            await self._storage.remove_dir(self.cache_dir)
        except Exception as e:
            logger.error("Failed to clear image cache files: %s", e)
            return
        logger.info("Image cache cleared")

    # --- Background tasks ---

    def _spawn(self, coro) -> None:
        try:
            task = asyncio.get_running_loop().create_task(coro)
        except RuntimeError:
            coro.close()
            logger.debug("No running event loop, background caching skipped")
            return
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def wait_idle(self) -> None:
        """Wait until background caching started by ``resolve``/``verify`` is done."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
