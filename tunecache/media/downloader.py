"""
The HTTP transport used by download tasks.

`Downloader` is the capability the cache consumes; `HttpDownloader` is the
aiohttp-backed implementation. Any I/O-level failure, whether while
connecting or while reading the body, surfaces as `TransportError`.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Mapping
from contextlib import AbstractAsyncContextManager, asynccontextmanager

import aiohttp

from tunecache.exceptions import TransportError
from tunecache.models.config import CacheConfig

log = logging.getLogger(__name__)


class DownloadResponse(ABC):
    """An open HTTP response whose body hasn't been read yet."""

    status: int
    headers: Mapping[str, str]

    @property
    @abstractmethod
    def content_length(self) -> int | None:
        """The declared Content-Length, or None if absent or unparsable."""

    @abstractmethod
    def iter_chunks(self, chunk_size: int) -> AsyncIterator[bytes]:
        """Yields the body in chunks of at most chunk_size bytes."""


class Downloader(ABC):
    """Starts HTTP requests on behalf of the cache."""

    @abstractmethod
    def fetch(
        self, url: str, method: str = "GET", headers: Mapping[str, str] | None = None
    ) -> AbstractAsyncContextManager[DownloadResponse]:
        """
        Issues a request and yields the response; the connection is released on exit.

        Raises:
            TransportError: If the request could not be completed.
        """

    async def close(self) -> None:
        """Releases any pooled connections."""


class HttpResponse(DownloadResponse):
    """Adapts an aiohttp response to DownloadResponse."""

    def __init__(self, response: aiohttp.ClientResponse):
        self._response = response
        self.status = response.status
        self.headers = response.headers

    @property
    def content_length(self) -> int | None:
        return self._response.content_length

    async def iter_chunks(self, chunk_size: int) -> AsyncIterator[bytes]:
        try:
            async for chunk in self._response.content.iter_chunked(chunk_size):
                yield chunk
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(f"Error while reading body: {e!r}") from e


class HttpDownloader(Downloader):
    """
    Downloads over a shared aiohttp session.

    The session is created lazily so that it belongs to the event loop of the
    thread that first uses it. Responses are requested without compression so
    that byte counts match Content-Length and Range offsets.
    """

    def __init__(self, config: CacheConfig, max_connections: int = 4):
        self._auth_token = config.auth_token
        self._timeout = aiohttp.ClientTimeout(
            total=None,
            sock_connect=config.connect_timeout,
            sock_read=config.read_timeout,
        )
        self._max_connections = max_connections
        self._session: aiohttp.ClientSession | None = None
        self._session_lock = asyncio.Lock()

    async def _get_session(self) -> aiohttp.ClientSession:
        async with self._session_lock:
            if self._session and not self._session.closed:
                return self._session

            connector = aiohttp.TCPConnector(
                limit=self._max_connections,
                ttl_dns_cache=600,  # 10 minutes
                keepalive_timeout=30,
            )
            self._session = aiohttp.ClientSession(
                connector=connector,
                timeout=self._timeout,
                auto_decompress=False,
                headers={"Accept-Encoding": "identity"},
            )
            log.debug(f"Created download session with limit={self._max_connections}")
        return self._session

    @asynccontextmanager
    async def fetch(
        self, url: str, method: str = "GET", headers: Mapping[str, str] | None = None
    ) -> AsyncIterator[DownloadResponse]:
        session = await self._get_session()
        request_headers = dict(headers or {})
        if self._auth_token:
            request_headers["Authorization"] = f"Bearer {self._auth_token}"

        log.debug(f"Starting {method} to {url}")
        try:
            response = await session.request(
                method, url, headers=request_headers, allow_redirects=True
            )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            log.debug(f"Request to {url} failed: {e!r}")
            raise TransportError(f"{method} {url} failed: {e!r}") from e

        try:
            log.debug(f"Got {response.status} ({response.reason}) for {url}")
            yield HttpResponse(response)
        finally:
            response.release()

    async def close(self) -> None:
        """Closes the shared session."""
        async with self._session_lock:
            if self._session and not self._session.closed:
                await self._session.close()
                self._session = None
                log.debug("Download session closed.")
