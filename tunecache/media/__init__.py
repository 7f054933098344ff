"""
Media Transport Layer.

This package is responsible for fetching song files over HTTP on behalf of
the cache.
"""

from .downloader import DownloadResponse, Downloader, HttpDownloader

__all__ = ["DownloadResponse", "Downloader", "HttpDownloader"]
