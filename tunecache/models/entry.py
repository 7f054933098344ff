"""
Descriptors for songs and the bookkeeping records the cache keeps about them.
"""

from dataclasses import dataclass, field, replace
from pathlib import Path


@dataclass(frozen=True)
class Song:
    """The minimal view of a song the cache needs: its ID, where to fetch it, and its length."""

    id: int
    url: str
    length_sec: int = 0


@dataclass
class CacheEntry:
    """Information about a song that has been (or is being) cached locally."""

    song_id: int
    music_dir: Path = field(repr=False)
    total_bytes: int = 0
    cached_bytes: int = 0
    last_access_time: float = 0.0

    @property
    def local_path(self) -> Path:
        """The file backing this entry; always derived from the song ID."""
        return self.music_dir / f"{self.song_id}.mp3"

    @property
    def is_fully_cached(self) -> bool:
        return self.total_bytes > 0 and self.cached_bytes == self.total_bytes

    def increment_cached_bytes(self, count: int) -> None:
        self.cached_bytes += count

    def copy(self) -> "CacheEntry":
        """Returns a detached snapshot that is safe to hand to other threads."""
        return replace(self)
