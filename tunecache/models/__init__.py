"""
Data Models Layer.

This package contains the core data structures used throughout the
application: configuration, cache entries, and the events the cache publishes.
"""

from .config import CacheConfig
from .entry import CacheEntry, Song
from .events import (
    CacheEvent,
    DownloadComplete,
    DownloadFailed,
    DownloadFatal,
    DownloadProgress,
    EntryEvicted,
)

__all__ = [
    "CacheConfig",
    "CacheEntry",
    "CacheEvent",
    "DownloadComplete",
    "DownloadFailed",
    "DownloadFatal",
    "DownloadProgress",
    "EntryEvicted",
    "Song",
]
