# src/cache/data_cache.py — v1
"""Small in-memory TTL cache for remote lookups.

Holds short-lived answers (creator profiles, purchase status, follower
counts) so that list screens do not hit the document store once per row.
Expired entries are dropped lazily on access and in bulk by ``cleanup``.
Concurrent misses on one key share a single fetch.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MISSING = object()


@dataclass
class _Slot:
    value: Any
    stored_at: float
    ttl_s: float

    def expired(self, now: float) -> bool:
        return now - self.stored_at > self.ttl_s


class DataCache:
    """Key/value cache with per-entry time-to-live.

    Args:
        default_ttl_s: TTL used when ``set`` is called without one.
        clock: Monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        default_ttl_s: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._default_ttl_s = default_ttl_s
        self._clock = clock
        self._slots: dict[str, _Slot] = {}
        self._in_flight: dict[str, asyncio.Future[Any]] = {}

    def set(self, key: str, value: Any, ttl_s: float | None = None) -> None:
        ttl = self._default_ttl_s if ttl_s is None else ttl_s
        self._slots[key] = _Slot(value=value, stored_at=self._clock(), ttl_s=ttl)

    def get(self, key: str, default: Any = None) -> Any:
        slot = self._slots.get(key)
        if slot is None:
            return default
        if slot.expired(self._clock()):
            del self._slots[key]
            return default
        return slot.value

    def has(self, key: str) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def delete(self, key: str) -> bool:
        """Drop ``key``; a fetch for it still running will not repopulate it."""
        self._in_flight.pop(key, None)
        return self._slots.pop(key, None) is not None

    def clear(self) -> None:
        self._in_flight.clear()
        self._slots.clear()

    def cleanup(self) -> int:
        """Drop every expired entry; return how many were removed."""
        now = self._clock()
        expired = [k for k, slot in self._slots.items() if slot.expired(now)]
        for key in expired:
            del self._slots[key]
        if expired:
            logger.debug("Data cache cleanup removed %d entries", len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._slots)

    async def get_or_fetch(
        self,
        key: str,
        fetch: Callable[[], Awaitable[T]],
        ttl_s: float | None = None,
        cache_none: bool = True,
    ) -> T:
        """Cached value for ``key``, calling ``fetch`` on a miss.

        Callers missing on the same key while a fetch runs await that fetch
        instead of starting their own. Exceptions from ``fetch`` propagate
        to every waiter and nothing is cached.

        Args:
            key: Cache key.
            fetch: Coroutine function producing the value.
            ttl_s: TTL for the stored value; default TTL if None.
            cache_none: Whether a None result is stored.
        """
        cached = self.get(key, _MISSING)
        if cached is not _MISSING:
            return cached
        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.ensure_future(fetch())
            self._in_flight[key] = task
            task.add_done_callback(
                lambda t, k=key: self._settle(k, t, ttl_s, cache_none)
            )
        # Shielded: a cancelled waiter must not cancel the shared fetch.
        return await asyncio.shield(task)

    def _settle(
        self, key: str, task: asyncio.Future[Any], ttl_s: float | None, cache_none: bool
    ) -> None:
        if self._in_flight.get(key) is not task:
            return
        del self._in_flight[key]
        if task.cancelled() or task.exception() is not None:
            return
        value = task.result()
        if value is None and not cache_none:
            return
        self.set(key, value, ttl_s)
