"""
Deciding when a partially downloaded song can be played, and steering the
cache to keep a playlist playing without gaps.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path

from tunecache.core.file_cache import FileCache
from tunecache.models.entry import CacheEntry, Song
from tunecache.models.events import (
    CacheEvent,
    DownloadComplete,
    DownloadFatal,
    DownloadProgress,
    EntryEvicted,
)

log = logging.getLogger(__name__)

MIN_BYTES_BEFORE_PLAYING = 128 * 1024
EXTRA_BUFFER_MS = 10 * 1000


def can_start_playback(
    entry: CacheEntry,
    downloaded_bytes: int,
    elapsed_ms: int,
    song_length_sec: int,
    min_bytes: int = MIN_BYTES_BEFORE_PLAYING,
    extra_buffer_ms: int = EXTRA_BUFFER_MS,
) -> bool:
    """
    Returns True if playback can start now without catching up to the download.

    A fully cached song can always be played. Otherwise at least `min_bytes`
    must be on disk, and at the throughput seen so far the rest of the file
    must arrive `extra_buffer_ms` before the song would finish playing.
    Without a throughput sample there's nothing to project from, so the
    answer is False.
    """
    if entry.is_fully_cached:
        return True
    if downloaded_bytes <= 0 or elapsed_ms <= 0:
        return False
    if entry.cached_bytes < min_bytes:
        return False

    bytes_per_ms = downloaded_bytes / elapsed_ms
    remaining_ms = (entry.total_bytes - entry.cached_bytes) / bytes_per_ms
    return remaining_ms + extra_buffer_ms <= song_length_sec * 1000


class Player(ABC):
    """Plays local files. Implemented by whatever drives audio output."""

    @abstractmethod
    def play_file(self, path: Path, total_bytes: int) -> None:
        """Starts playing a file that may still be growing."""

    @abstractmethod
    def queue_file(self, path: Path, total_bytes: int) -> None:
        """Prepares a file to be played after the current one."""

    @abstractmethod
    def abort_playback(self) -> None:
        """Stops whatever is playing."""


class PlaybackCoordinator:
    """
    Plays a playlist from the file cache.

    The current song is played as soon as enough of it has arrived. Songs
    within `songs_to_preload` positions after it are downloaded one at a time
    and pinned so that making room for later songs can't evict them.
    Cache events must be passed to handle_event(), typically from the thread
    that drains `FileCache.events`.
    """

    def __init__(self, cache: FileCache, player: Player, songs_to_preload: int = 5):
        self.cache = cache
        self.player = player
        self.songs_to_preload = songs_to_preload
        self.songs: list[Song] = []
        self.current_index = -1
        self.waiting_for_download = False
        self._download_song_id: int | None = None
        self._download_index = -1

    @property
    def current_song(self) -> Song | None:
        if 0 <= self.current_index < len(self.songs):
            return self.songs[self.current_index]
        return None

    @property
    def next_song(self) -> Song | None:
        if 0 <= self.current_index + 1 < len(self.songs):
            return self.songs[self.current_index + 1]
        return None

    def _song_by_id(self, song_id: int) -> Song | None:
        return next((s for s in self.songs if s.id == song_id), None)

    def set_playlist(self, songs: list[Song], play_index: int = 0) -> None:
        """Replaces the playlist and starts playing at play_index."""
        self.songs = list(songs)
        self.current_index = -1
        if self.songs:
            self.play_song_at_index(play_index)

    def play_song_at_index(self, index: int) -> None:
        if not 0 <= index < len(self.songs):
            log.warning(f"Ignoring request to play song at invalid index {index}")
            return
        self.current_index = index
        song = self.songs[index]
        self.cache.clear_pinned_song_ids()

        entry = self.cache.get_entry(song.id)
        if entry is not None and entry.is_fully_cached:
            log.debug(f"Song {song.id} is already cached; playing it")
            self.waiting_for_download = False
            self._play_entry(entry)
            # Whatever we were downloading is no longer needed first.
            if self._download_song_id is not None and self._download_song_id != song.id:
                self.cache.abort_download(self._download_song_id)
                self._download_song_id = None
                self._download_index = -1
            self._maybe_download_another_song(index + 1)
        else:
            self.player.abort_playback()
            if self._download_song_id != song.id:
                if self._download_song_id is not None:
                    self.cache.abort_download(self._download_song_id)
                self.cache.download_song(song)
                self._download_song_id = song.id
                self._download_index = index
            self.waiting_for_download = True

        next_song = self.next_song
        if next_song is not None:
            next_entry = self.cache.get_entry(next_song.id)
            if next_entry is not None and next_entry.is_fully_cached:
                self.player.queue_file(next_entry.local_path, next_entry.total_bytes)

        self.cache.pin_song_id(song.id)

    def _play_entry(self, entry: CacheEntry) -> None:
        song = self.current_song
        if song is None or song.id != entry.song_id:
            log.error(f"Entry for song {entry.song_id} doesn't match the current song")
            return
        self.player.play_file(entry.local_path, entry.total_bytes)
        self.cache.update_last_access_time(entry.song_id)

    def _maybe_download_another_song(self, start_index: int) -> None:
        """Starts downloading the first uncached song in the preload window."""
        if self._download_song_id is not None:
            log.debug(
                f"Not prefetching; song {self._download_song_id} is being downloaded"
            )
            return

        index = start_index
        while (
            index < len(self.songs)
            and index - self.current_index <= self.songs_to_preload
        ):
            song = self.songs[index]
            entry = self.cache.get_entry(song.id)
            self.cache.pin_song_id(song.id)
            if entry is None or not entry.is_fully_cached:
                log.debug(f"Prefetching song {song.id} at index {index}")
                self.cache.download_song(song)
                self._download_song_id = song.id
                self._download_index = index
                return
            index += 1

    def handle_event(self, event: CacheEvent) -> None:
        """Reacts to an event published by the cache."""
        if isinstance(event, DownloadProgress):
            self._on_progress(event)
        elif isinstance(event, DownloadComplete):
            self._on_complete(event)
        elif isinstance(event, DownloadFatal):
            self._on_fatal(event)
        elif isinstance(event, EntryEvicted):
            log.debug(f"Song {event.entry.song_id} was evicted")

    def _on_progress(self, event: DownloadProgress) -> None:
        song = self.current_song
        if song is None or song.id != event.entry.song_id or not self.waiting_for_download:
            return
        if can_start_playback(
            event.entry, event.downloaded_bytes, event.elapsed_ms, song.length_sec
        ):
            self.waiting_for_download = False
            self._play_entry(event.entry)

    def _on_complete(self, event: DownloadComplete) -> None:
        entry = event.entry
        current, upcoming = self.current_song, self.next_song
        if current is not None and current.id == entry.song_id and self.waiting_for_download:
            self.waiting_for_download = False
            self._play_entry(entry)
        elif upcoming is not None and upcoming.id == entry.song_id:
            self.player.queue_file(entry.local_path, entry.total_bytes)

        if entry.song_id == self._download_song_id:
            next_index = self._download_index + 1
            self._download_song_id = None
            self._download_index = -1
            self._maybe_download_another_song(next_index)

    def _on_fatal(self, event: DownloadFatal) -> None:
        log.error(f"[red]Download of song {event.entry.song_id} failed: {event.reason}[/red]")
        if event.entry.song_id == self._download_song_id:
            self._download_song_id = None
            self._download_index = -1
            self.waiting_for_download = False
