"""
tunecache: a persistent local cache of remotely-hosted songs that can be
played while they are still downloading.
"""

__version__ = "0.3.0"
