"""
Storage Layer.

This package handles all data persistence: the configuration file and the
database of cache entries.
"""

from .config_manager import ConfigManager
from .entry_store import EntryStore

__all__ = ["ConfigManager", "EntryStore"]
