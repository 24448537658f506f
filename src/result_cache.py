"""
Scan Result Cache
Keeps the last completed scan per page on top of a key-value store.

- Entries expire after a fixed TTL, checked against the clock on read
- The content map is dropped when the entry would exceed the byte budget
- A failed write is retried once without the content map, then dropped
"""

import json
import time
from typing import Optional, Tuple

from scan_models import ScanResult
from storage import MemoryStore, StorageError
from utils import format_bytes

CACHE_KEY_PREFIX = 'scan_cache_'
CACHE_TTL_SECONDS = 2 * 60 * 60
MAX_CACHE_SIZE_BYTES = 30 * 1024 * 1024


def page_identity(tab_id, url):
    """Cache/scan key for a page: 'tabId|url', or the URL alone when not scoped to a tab"""
    if tab_id is None:
        return url
    return f"{tab_id}|{url}"


class ResultCache:
    """TTL and size bounded cache of ScanResult keyed by page identity"""

    def __init__(self, store=None, ttl_seconds=CACHE_TTL_SECONDS,
                 max_bytes=MAX_CACHE_SIZE_BYTES, clock=time.time):
        self.store = store if store is not None else MemoryStore()
        self.ttl_seconds = ttl_seconds
        self.max_bytes = max_bytes
        self.clock = clock

    def _key(self, identity):
        return f"{CACHE_KEY_PREFIX}{identity}"

    def get(self, identity) -> Optional[ScanResult]:
        """
        Return the cached result for a page, or None if absent, unreadable or expired.
        """
        entry = self.get_entry(identity)
        return entry[0] if entry is not None else None

    def get_entry(self, identity) -> Optional[Tuple[ScanResult, float]]:
        """Cached (result, cached_at) for a page, or None if absent, unreadable or expired"""
        key = self._key(identity)
        try:
            raw = self.store.get(key)
        except StorageError as e:
            print(f"[Cache] Read failed for {identity}: {e}")
            return None
        if not raw:
            return None

        try:
            entry = json.loads(raw)
            cached_at = float(entry['timestamp'])
        except (ValueError, KeyError, TypeError) as e:
            print(f"[Cache] Ignoring corrupt entry for {identity}: {e}")
            return None

        if self.is_expired(cached_at):
            age = self.clock() - cached_at
            print(f"[Cache] Results cache is expired for {identity} ({age / 3600:.1f}h old)")
            return None

        return ScanResult.from_dict(entry.get('result') or {}), cached_at

    def is_expired(self, cached_at) -> bool:
        return self.clock() - cached_at > self.ttl_seconds

    def put(self, identity, result: ScanResult) -> bool:
        """
        Store a result for a page.

        Returns:
            bool: True if the entry was written (with or without content map)
        """
        key = self._key(identity)

        # Nothing to look up later when nothing was found
        if result.is_empty():
            result = result.without_content()

        payload = self._serialize(result, include_content=True)
        estimated_size = len(payload.encode('utf-8'))
        stripped = not result.content_map

        if estimated_size > self.max_bytes:
            print(f"[Cache] Total cache size ({format_bytes(estimated_size)}) exceeds limit. "
                  f"Caching results without source content.")
            payload = self._serialize(result, include_content=False)
            stripped = True

        try:
            self.store.set(key, payload)
            return True
        except StorageError as e:
            if stripped:
                print(f"[Cache] Failed to set cache for {identity}: {e}")
                return False
            print(f"[Cache] Write failed for {identity} ({e}). Retrying without source content.")

        try:
            self.store.set(key, self._serialize(result, include_content=False))
            return True
        except StorageError as e:
            print(f"[Cache] Failed to set cache for {identity}, even without source content: {e}")
            return False

    def _serialize(self, result, include_content):
        return json.dumps({
            'timestamp': self.clock(),
            'result': result.to_dict(include_content=include_content),
        })

    def delete(self, identity):
        try:
            self.store.delete(self._key(identity))
        except StorageError as e:
            print(f"[Cache] Delete failed for {identity}: {e}")

    def delete_for_tab(self, tab_id):
        """Remove every cached page of a tab"""
        prefix = self._key(f"{tab_id}|")
        try:
            for key in self.store.keys(prefix):
                self.store.delete(key)
        except StorageError as e:
            print(f"[Cache] Purge failed for tab {tab_id}: {e}")

