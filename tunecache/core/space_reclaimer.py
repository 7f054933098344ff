"""
Frees disk space by evicting least-recently-used cache entries.
"""

import logging
from collections.abc import Callable

from tunecache.models.entry import CacheEntry
from tunecache.storage.entry_store import EntryStore
from tunecache.utils.path import file_size

log = logging.getLogger(__name__)


class SpaceReclaimer:
    """
    Keeps the cache within its byte budget.

    Entries for which `is_protected` returns True (songs being downloaded or
    pinned for playback) are never chosen. The budget is read on every call
    so that configuration changes apply without a restart.
    """

    def __init__(
        self,
        store: EntryStore,
        budget_bytes: Callable[[], int],
        is_protected: Callable[[int], bool],
        on_evict: Callable[[CacheEntry], None] | None = None,
    ):
        self._store = store
        self._budget_bytes = budget_bytes
        self._is_protected = is_protected
        self._on_evict = on_evict

    def available_bytes(self) -> int:
        return self._budget_bytes() - self._store.total_cached_bytes()

    def reclaim(self, needed_bytes: int) -> bool:
        """
        Tries to make room for needed_bytes more bytes.

        Entries are deleted oldest-access first until enough space is free.
        Entries with equal access times are taken in no particular order.

        Returns:
            True if the space is available, False if nothing more could be evicted.
        """
        available = self.available_bytes()
        if needed_bytes <= available:
            return True

        log.debug(f"Making space for {needed_bytes} bytes ({available} available)")
        for song_id in self._store.song_ids_by_age():
            if needed_bytes <= available:
                break
            if self._is_protected(song_id):
                continue

            entry = self._store.get(song_id)
            if entry is None:
                log.error(f"Missing cache entry for song {song_id}")
                continue

            freed = self._evict(entry)
            if freed is not None:
                available += freed

        if needed_bytes > available:
            log.warning(
                f"Could only make {available} of {needed_bytes} bytes available"
            )
        return needed_bytes <= available

    def evict_all(self) -> int:
        """Evicts every entry, protected or not. Returns the number evicted."""
        count = 0
        for song_id in self._store.song_ids_by_age():
            entry = self._store.get(song_id)
            if entry is not None and self._evict(entry) is not None:
                count += 1
        return count

    def _evict(self, entry: CacheEntry) -> int | None:
        """Deletes an entry's file and record. Returns the bytes freed, or None."""
        path = entry.local_path
        size = file_size(path)
        log.debug(f"Deleting song {entry.song_id} ({path}, {size} bytes)")
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            log.warning(f"Failed to delete cached file '{path}': {e}")
            return None

        self._store.remove(entry.song_id)
        if self._on_evict:
            self._on_evict(entry.copy())
        return size
