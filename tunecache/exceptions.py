"""
Defines custom exceptions for the application to allow for more specific error handling.
"""


class TuneCacheError(Exception):
    """Base exception for all application-specific errors."""


class ConfigurationError(TuneCacheError):
    """Raised for issues related to configuration loading or validation."""


class TransportError(TuneCacheError):
    """
    Raised when an HTTP request or a response body read fails at the I/O level.
    Download tasks treat it as retryable.
    """


class CacheNotRunningError(TuneCacheError):
    """Raised when the file cache is used before start() or after quit()."""
