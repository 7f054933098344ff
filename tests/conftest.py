"""Shared fixtures: a scripted transport, a config rooted in tmp_path, and caches."""

import asyncio
import queue
import threading
import time
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from pathlib import Path

import pytest

from tunecache.core.file_cache import FileCache
from tunecache.exceptions import TransportError
from tunecache.media.downloader import DownloadResponse, Downloader
from tunecache.models.config import CacheConfig
from tunecache.models.entry import CacheEntry
from tunecache.storage.entry_store import EntryStore


class FakeResponse(DownloadResponse):
    """
    A canned response.

    If `fail_after` is set, only that many body bytes are sent before the
    stream breaks. If `gate` is set, every chunk after the first waits for it.
    """

    def __init__(
        self,
        status: int = 200,
        body: bytes = b"",
        headers: Mapping[str, str] | None = None,
        fail_after: int | None = None,
        gate: threading.Event | None = None,
    ):
        self.status = status
        self.body = body
        self.headers = (
            dict(headers) if headers is not None else {"Content-Length": str(len(body))}
        )
        self.fail_after = fail_after
        self.gate = gate

    @property
    def content_length(self) -> int | None:
        try:
            return int(self.headers["Content-Length"])
        except (KeyError, ValueError):
            return None

    async def iter_chunks(self, chunk_size: int) -> AsyncIterator[bytes]:
        data = self.body if self.fail_after is None else self.body[: self.fail_after]
        for i in range(0, len(data), chunk_size):
            if i > 0 and self.gate is not None:
                while not self.gate.is_set():
                    await asyncio.sleep(0.005)
            yield data[i : i + chunk_size]
            await asyncio.sleep(0)
        if self.fail_after is not None:
            raise TransportError("Connection reset by peer")


def partial_response(body: bytes, start: int, **kwargs) -> FakeResponse:
    """A 206 response carrying body[start:]."""
    return FakeResponse(
        status=206,
        body=body[start:],
        headers={
            "Content-Length": str(len(body) - start),
            "Content-Range": f"bytes {start}-{len(body) - 1}/{len(body)}",
        },
        **kwargs,
    )


class FakeDownloader(Downloader):
    """Replays queued responses (or raises queued exceptions) and records requests."""

    def __init__(self, *responses: FakeResponse | Exception):
        self.responses: list[FakeResponse | Exception] = list(responses)
        self.requests: list[dict] = []
        self.closed = False

    def add(self, *responses: FakeResponse | Exception) -> None:
        self.responses.extend(responses)

    @asynccontextmanager
    async def fetch(
        self, url: str, method: str = "GET", headers: Mapping[str, str] | None = None
    ) -> AsyncIterator[DownloadResponse]:
        self.requests.append({"url": url, "method": method, "headers": dict(headers or {})})
        if not self.responses:
            raise TransportError(f"No response scripted for {url}")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        yield response

    async def close(self) -> None:
        self.closed = True


def make_body(size: int) -> bytes:
    return bytes(i % 251 for i in range(size))


def drain_until(events: queue.Queue, event_type: type, song_id: int, timeout: float = 5.0):
    """Returns the first event of event_type for song_id, plus every event seen before it."""
    seen = []
    deadline = time.monotonic() + timeout
    while True:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise AssertionError(
                f"No {event_type.__name__} for song {song_id}; got {seen!r}"
            )
        try:
            event = events.get(timeout=remaining)
        except queue.Empty:
            continue
        seen.append(event)
        if isinstance(event, event_type) and event.entry.song_id == song_id:
            return event, seen


def add_cached_file(
    store: EntryStore, song_id: int, size: int, access_time: float
) -> CacheEntry:
    """Writes a complete file for song_id and records it in the store."""
    entry = CacheEntry(
        song_id=song_id,
        music_dir=store.music_dir,
        total_bytes=size,
        cached_bytes=size,
        last_access_time=access_time,
    )
    entry.local_path.write_bytes(b"x" * size)
    store.upsert(entry)
    return entry


@pytest.fixture
def config(tmp_path: Path) -> CacheConfig:
    return CacheConfig(
        cache_dir=str(tmp_path / "cache"),
        chunk_size=1024,
        progress_interval_ms=0,
    )


@pytest.fixture
def store(config: CacheConfig):
    config.music_dir.mkdir(parents=True, exist_ok=True)
    entry_store = EntryStore(config.db_path, config.music_dir)
    entry_store.load()
    yield entry_store
    entry_store.close()


@pytest.fixture
def downloader() -> FakeDownloader:
    return FakeDownloader()


@pytest.fixture
def cache(config: CacheConfig, downloader: FakeDownloader):
    file_cache = FileCache(config, downloader=downloader)
    file_cache.start()
    yield file_cache
    file_cache.quit()
