"""
Downloads a single song into the cache, resuming partial files and retrying
transient failures until the song is complete or the task is aborted.
"""

import asyncio
import logging
import re
import time
from collections.abc import Callable
from enum import Enum, auto

import aiofiles

from tunecache.core.progress_reporter import ProgressReporter
from tunecache.core.space_reclaimer import SpaceReclaimer
from tunecache.exceptions import TransportError
from tunecache.media.downloader import DownloadResponse, Downloader
from tunecache.models.config import CacheConfig
from tunecache.models.entry import CacheEntry
from tunecache.models.events import CacheEvent, DownloadFailed, DownloadProgress
from tunecache.storage.entry_store import EntryStore
from tunecache.utils.path import file_size

log = logging.getLogger(__name__)

_CONTENT_RANGE_RE = re.compile(r"^\s*bytes\s+(\d+)-(\d+)/(\d+|\*)\s*$")


class DownloadStatus(Enum):
    SUCCESS = auto()
    ABORTED = auto()
    RETRYABLE_ERROR = auto()
    FATAL_ERROR = auto()


class RetryBackoff:
    """
    Tracks how long to wait before the next attempt.

    A failed attempt that still transferred data resets the delay to zero.
    Otherwise the delay starts at `initial_ms` and doubles up to `max_ms`.
    """

    INITIAL_MS = 1000
    MAX_MS = 60000

    def __init__(self, initial_ms: int = INITIAL_MS, max_ms: int = MAX_MS):
        self.initial_ms = initial_ms
        self.max_ms = max_ms
        self.delay_ms = 0

    def record_failure(self, made_progress: bool) -> int:
        """Updates and returns the delay to apply before the next attempt."""
        if made_progress:
            self.delay_ms = 0
        elif self.delay_ms == 0:
            self.delay_ms = self.initial_ms
        else:
            self.delay_ms = min(self.delay_ms * 2, self.max_ms)
        return self.delay_ms


def _parse_content_range(content_range: str) -> tuple[int | None, int | None]:
    """Returns the first byte position and the complete length (None if '*')."""
    match = _CONTENT_RANGE_RE.match(content_range)
    if not match:
        return None, None
    total = match.group(3)
    return int(match.group(1)), int(total) if total != "*" else None


class DownloadTask:
    """
    Drives the download of one cache entry.

    The task writes into the live entry owned by the store, so `cached_bytes`
    always reflects what is on disk. It runs on the cache's event loop and
    must only be touched from there. Completion and fatal failure are
    reported through the return value of run(); retryable failures and
    progress are emitted as events while the task keeps going.
    """

    def __init__(
        self,
        entry: CacheEntry,
        url: str,
        *,
        store: EntryStore,
        downloader: Downloader,
        reclaimer: SpaceReclaimer,
        config_provider: Callable[[], CacheConfig],
        emit: Callable[[CacheEvent], None],
        backoff: RetryBackoff | None = None,
    ):
        self.entry = entry
        self.url = url
        self.reason = ""
        self._store = store
        self._downloader = downloader
        self._reclaimer = reclaimer
        self._config_provider = config_provider
        self._emit = emit
        self._backoff = backoff or RetryBackoff()
        self._aborted = asyncio.Event()
        self._restart = False
        self._expected_bytes = 0

    @property
    def song_id(self) -> int:
        return self.entry.song_id

    @property
    def is_active(self) -> bool:
        return not self._aborted.is_set()

    def abort(self) -> None:
        """Asks the task to stop at the next chunk boundary or sleep."""
        self._aborted.set()

    async def run(self) -> DownloadStatus:
        log.debug(f"Starting download of song {self.song_id} from {self.url}")
        while True:
            if not self.is_active:
                return DownloadStatus.ABORTED

            status, made_progress = await self._attempt()
            if not self.is_active:
                return DownloadStatus.ABORTED
            if status is not DownloadStatus.RETRYABLE_ERROR:
                log.debug(f"Download of song {self.song_id} finished: {status.name}")
                return status

            delay_ms = self._backoff.record_failure(made_progress)
            log.warning(
                f"[yellow]Download of song {self.song_id} failed: {self.reason}. "
                f"Retrying in {delay_ms} ms.[/yellow]"
            )
            self._emit(DownloadFailed(self.entry.copy(), self.reason))
            if delay_ms and not await self._sleep_unless_aborted(delay_ms / 1000):
                return DownloadStatus.ABORTED

    async def _sleep_unless_aborted(self, seconds: float) -> bool:
        """Sleeps for `seconds`. Returns False if the task was aborted meanwhile."""
        if not self.is_active:
            return False
        try:
            await asyncio.wait_for(self._aborted.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return True
        return False

    def _reconcile_with_file(self) -> None:
        """Sets cached_bytes from the file, which is the only source of truth."""
        size = file_size(self.entry.local_path)
        if self._restart:
            self._restart = False
            size = 0
        elif self.entry.total_bytes and size > self.entry.total_bytes:
            log.warning(
                f"Cached file for song {self.song_id} is larger than expected "
                f"({size} > {self.entry.total_bytes}); downloading it again."
            )
            size = 0
        self.entry.cached_bytes = size

    async def _attempt(self) -> tuple[DownloadStatus, bool]:
        """Makes one request. Returns the outcome and whether any bytes were written."""
        self._reconcile_with_file()
        if self.entry.is_fully_cached:
            return DownloadStatus.SUCCESS, False

        headers = {}
        if 0 < self.entry.cached_bytes < self.entry.total_bytes:
            headers["Range"] = f"bytes={self.entry.cached_bytes}-"
            log.debug(
                f"Resuming song {self.song_id} at byte {self.entry.cached_bytes} "
                f"of {self.entry.total_bytes}"
            )

        try:
            async with self._downloader.fetch(self.url, headers=headers) as response:
                if not self.is_active:
                    return DownloadStatus.ABORTED, False
                status = self._start_download(response)
                if status is not None:
                    return status, False
                return await self._write_file(response)
        except TransportError as e:
            self.reason = str(e)
            return DownloadStatus.RETRYABLE_ERROR, False

    def _start_download(self, response: DownloadResponse) -> DownloadStatus | None:
        """
        Validates the response and prepares the entry for writing.

        Returns:
            None if the body should be written, otherwise the attempt's outcome.
        """
        length = response.content_length
        if response.status == 200:
            if not length or length <= 0:
                self.reason = (
                    f"Missing or invalid Content-Length "
                    f"({response.headers.get('Content-Length')!r})"
                )
                return DownloadStatus.FATAL_ERROR
            self.entry.cached_bytes = 0
            self._store.set_total_bytes(self.song_id, length)
            self._expected_bytes = length
            return None

        if response.status == 206:
            content_range = response.headers.get("Content-Range", "")
            start, total = _parse_content_range(content_range)
            if start != self.entry.cached_bytes:
                self.reason = (
                    f"Got Content-Range '{content_range}' when resuming at byte "
                    f"{self.entry.cached_bytes}"
                )
                self._restart = True
                return DownloadStatus.RETRYABLE_ERROR
            if not length or length <= 0:
                self.reason = (
                    f"Missing or invalid Content-Length "
                    f"({response.headers.get('Content-Length')!r})"
                )
                return DownloadStatus.FATAL_ERROR
            if not self.entry.total_bytes:
                # Partial content for a request that didn't ask for a range.
                self._store.set_total_bytes(self.song_id, total or start + length)
            self._expected_bytes = length
            return None

        self.reason = f"Got unexpected HTTP status {response.status}"
        return DownloadStatus.FATAL_ERROR

    def _report_progress(self, downloaded_bytes: int, elapsed_ms: int) -> None:
        if self.is_active:
            self._emit(DownloadProgress(self.entry.copy(), downloaded_bytes, elapsed_ms))

    async def _write_file(self, response: DownloadResponse) -> tuple[DownloadStatus, bool]:
        if not self.is_active:
            return DownloadStatus.ABORTED, False
        expected = self._expected_bytes
        if not self._reclaimer.reclaim(expected):
            self.reason = f"Unable to make space for {expected} bytes"
            return DownloadStatus.FATAL_ERROR, False

        path = self.entry.local_path
        mode = "ab" if self.entry.cached_bytes > 0 else "wb"
        try:
            file = await aiofiles.open(path, mode)
        except OSError as e:
            self.reason = f"Unable to open {path}: {e}"
            return DownloadStatus.FATAL_ERROR, False

        config = self._config_provider()
        reporter = ProgressReporter(self._report_progress, config.progress_interval_ms)
        written = 0
        complete = False
        start_time = time.monotonic()
        try:
            async for chunk in response.iter_chunks(config.chunk_size):
                if not self.is_active:
                    return DownloadStatus.ABORTED, written > 0

                await file.write(chunk)
                written += len(chunk)
                self.entry.increment_cached_bytes(len(chunk))
                elapsed_ms = int((time.monotonic() - start_time) * 1000)
                reporter.update(written, elapsed_ms)

                # Re-read each chunk so a new rate limit applies immediately.
                max_bps = self._config_provider().max_bytes_per_second
                if max_bps > 0:
                    target_ms = written * 1000 / max_bps
                    if target_ms > elapsed_ms and not await self._sleep_unless_aborted(
                        (target_ms - elapsed_ms) / 1000
                    ):
                        return DownloadStatus.ABORTED, True
            complete = written == expected
        except (TransportError, OSError) as e:
            self.reason = str(e)
            return DownloadStatus.RETRYABLE_ERROR, written > 0
        finally:
            await file.close()
            if complete:
                reporter.flush()
            reporter.close()

        if not complete:
            self.reason = f"Expected {expected} bytes but got {written}"
            return DownloadStatus.RETRYABLE_ERROR, written > 0
        return DownloadStatus.SUCCESS, True
