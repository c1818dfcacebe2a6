# src/cache/fingerprint.py — v2
"""Cache key derivation for remote media URLs.

The key is a 32-bit polymorphic string hash (``h = h * 31 + c`` over UTF-16
code units, wrapped to a signed int, absolute value in decimal). It is not
cryptographic; it only has to be stable across restarts and unique enough
within one device's cache. Collisions are resolved by the image cache.
"""

from __future__ import annotations

import re

DEFAULT_EXTENSION = "jpg"

_EXTENSION_RE = re.compile(r"\.([^.?/#]+)(?:[?#].*)?$")
_LOCAL_MARKERS = ("/ImagePicker/",)


def compute_cache_key(url: str) -> str:
    """Deterministic cache key for ``url``."""
    h = 0
    encoded = url.encode("utf-16-be")
    for i in range(0, len(encoded), 2):
        unit = (encoded[i] << 8) | encoded[i + 1]
        h = ((h << 5) - h + unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return str(abs(h))


def extension_for(url: str) -> str:
    """File extension taken from the URL path, ``jpg`` when there is none."""
    match = _EXTENSION_RE.search(url)
    if not match:
        return DEFAULT_EXTENSION
    ext = match.group(1).lower()
    return ext if ext.isalnum() and len(ext) <= 5 else DEFAULT_EXTENSION


def cache_file_name(cache_key: str, url: str) -> str:
    return f"{cache_key}.{extension_for(url)}"


def is_local_uri(url: str) -> bool:
    """Local files (already on device) are never downloaded into the cache."""
    return url.startswith("file://") or any(m in url for m in _LOCAL_MARKERS)
