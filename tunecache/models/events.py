"""
Events published by the file cache to its consumer.

All five kinds travel over a single queue; consumers dispatch on the type.
Each event carries a snapshot of the entry taken when the event was created.
"""

from dataclasses import dataclass
from typing import Union

from .entry import CacheEntry


@dataclass(frozen=True)
class DownloadProgress:
    """More bytes were written. Counts are for the current attempt only."""

    entry: CacheEntry
    downloaded_bytes: int
    elapsed_ms: int


@dataclass(frozen=True)
class DownloadComplete:
    entry: CacheEntry


@dataclass(frozen=True)
class DownloadFailed:
    """A retryable error occurred; the task is still running and will retry."""

    entry: CacheEntry
    reason: str


@dataclass(frozen=True)
class DownloadFatal:
    """The task gave up. The song is no longer in flight."""

    entry: CacheEntry
    reason: str


@dataclass(frozen=True)
class EntryEvicted:
    entry: CacheEntry


CacheEvent = Union[
    DownloadProgress, DownloadComplete, DownloadFailed, DownloadFatal, EntryEvicted
]
