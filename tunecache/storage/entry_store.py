"""
Manages the SQLite database that records which songs are cached and how
recently each one was used.
"""

import logging
import sqlite3
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any

from tunecache.models.entry import CacheEntry
from tunecache.utils.path import create_dir, file_size

log = logging.getLogger(__name__)


class EntryStore:
    """
    A persistent map from song ID to cache entry with an in-memory mirror.

    Reads are served from the mirror. Writes update the mirror immediately and
    are then applied to SQLite on a single background thread, in the order
    they were submitted. A failed write is logged and otherwise ignored; the
    mirror stays authoritative for the running process.

    The mirror is not locked: everything except load() and close() must be
    called from the thread that owns the cache.
    """

    def __init__(self, db_path: Path, music_dir: Path):
        self.db_path = db_path
        self.music_dir = music_dir
        self._entries: dict[int, CacheEntry] = {}
        self._writer: ThreadPoolExecutor | None = None
        self._write_conn: sqlite3.Connection | None = None

    def _get_connection(self) -> sqlite3.Connection:
        """Gets a new database connection with optimized PRAGMA settings."""
        try:
            conn = sqlite3.connect(self.db_path, timeout=30, check_same_thread=False)
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
            conn.execute("PRAGMA temp_store=MEMORY;")
            return conn
        except sqlite3.Error as e:
            log.error(f"Failed to connect to cache database: {e}")
            raise

    def _initialize_db(self, conn: sqlite3.Connection) -> None:
        """Creates the entries table if it doesn't exist."""
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS cache_entries (
                song_id INTEGER PRIMARY KEY NOT NULL,
                total_bytes INTEGER NOT NULL DEFAULT 0,
                last_access_time REAL NOT NULL
            );
            """
        )
        conn.commit()

    def load(self) -> dict[int, CacheEntry]:
        """
        Loads all entries into memory and starts the background writer.

        The number of cached bytes isn't stored; it's taken from the size of
        each entry's file, since the file is what playback and resumption
        actually rely on.

        Raises:
            sqlite3.Error: If the database cannot be opened or read.
        """
        log.debug(f"Loading cache entries from '{self.db_path}'")
        create_dir(self.db_path.parent)
        conn = self._get_connection()
        try:
            self._initialize_db(conn)
            rows = conn.execute(
                "SELECT song_id, total_bytes, last_access_time FROM cache_entries"
            ).fetchall()
        finally:
            conn.close()

        self._entries.clear()
        for song_id, total_bytes, last_access_time in rows:
            entry = CacheEntry(
                song_id=song_id,
                music_dir=self.music_dir,
                total_bytes=total_bytes,
                last_access_time=last_access_time,
            )
            entry.cached_bytes = file_size(entry.local_path)
            self._entries[song_id] = entry
        log.debug(f"Finished loading {len(self._entries)} cache entries")

        if self._writer is None:
            self._writer = ThreadPoolExecutor(
                max_workers=1, thread_name_prefix="EntryStore"
            )
        return self.snapshot()

    def _execute(self, sql: str, params: tuple[Any, ...]) -> None:
        """Runs a single write on the writer thread, logging any failure."""
        try:
            if self._write_conn is None:
                self._write_conn = self._get_connection()
            self._write_conn.execute(sql, params)
            self._write_conn.commit()
        except sqlite3.Error as e:
            log.error(f"Cache database write failed ({sql.split()[0]}): {e}")

    def _post(self, sql: str, params: tuple[Any, ...]) -> None:
        if self._writer is None:
            log.warning("Cache database isn't open; dropping write.")
            return
        self._writer.submit(self._execute, sql, params)

    def get(self, song_id: int) -> CacheEntry | None:
        """Returns the live mirror entry for song_id, or None."""
        return self._entries.get(song_id)

    def snapshot(self) -> dict[int, CacheEntry]:
        """Returns copies of all entries, keyed by song ID."""
        return {song_id: entry.copy() for song_id, entry in self._entries.items()}

    def add(self, song_id: int) -> CacheEntry:
        """Creates (or replaces) an empty entry for song_id, accessed now."""
        entry = CacheEntry(
            song_id=song_id, music_dir=self.music_dir, last_access_time=time.time()
        )
        self.upsert(entry)
        return entry

    def upsert(self, entry: CacheEntry) -> None:
        self._entries[entry.song_id] = entry
        self._post(
            "REPLACE INTO cache_entries (song_id, total_bytes, last_access_time) "
            "VALUES (?, ?, ?)",
            (entry.song_id, entry.total_bytes, entry.last_access_time),
        )

    def remove(self, song_id: int) -> None:
        self._entries.pop(song_id, None)
        self._post("DELETE FROM cache_entries WHERE song_id = ?", (song_id,))

    def set_total_bytes(self, song_id: int, total_bytes: int) -> None:
        entry = self._entries.get(song_id)
        if entry is None:
            return
        entry.total_bytes = total_bytes
        self._post(
            "UPDATE cache_entries SET total_bytes = ? WHERE song_id = ?",
            (total_bytes, song_id),
        )

    def touch(self, song_id: int) -> None:
        """Records that song_id was just accessed."""
        entry = self._entries.get(song_id)
        if entry is None:
            return
        entry.last_access_time = time.time()
        self._post(
            "UPDATE cache_entries SET last_access_time = ? WHERE song_id = ?",
            (entry.last_access_time, song_id),
        )

    def song_ids_by_age(self) -> list[int]:
        """Song IDs ordered from least to most recently accessed."""
        return sorted(self._entries, key=lambda sid: self._entries[sid].last_access_time)

    def total_cached_bytes(self) -> int:
        return sum(entry.cached_bytes for entry in self._entries.values())

    def fully_cached_entries(self) -> list[CacheEntry]:
        return [e.copy() for e in self._entries.values() if e.is_fully_cached]

    def __len__(self) -> int:
        return len(self._entries)

    def flush(self) -> None:
        """Blocks until every write submitted so far has been applied."""
        if self._writer is not None:
            self._writer.submit(lambda: None).result()

    def _close_connection(self) -> None:
        if self._write_conn is not None:
            self._write_conn.close()
            self._write_conn = None

    def close(self) -> None:
        """Applies pending writes and closes the database."""
        if self._writer is None:
            return
        self._writer.submit(self._close_connection)
        self._writer.shutdown(wait=True)
        self._writer = None
        log.debug("Cache database closed.")
