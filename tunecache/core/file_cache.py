"""
The file cache: a persistent, size-bounded store of downloaded songs that can
be played while they are still being fetched.

All cache state is owned by a dedicated worker thread running an asyncio
event loop. Public methods may be called from any thread; they hand work to
the worker and, where they return a value, wait for it. Events describing
download progress and evictions are delivered on a `queue.Queue`.
"""

import asyncio
import concurrent.futures
import logging
import queue
import sqlite3
import threading
from collections.abc import Callable
from typing import Any

from tunecache.core.download_task import DownloadStatus, DownloadTask
from tunecache.core.space_reclaimer import SpaceReclaimer
from tunecache.exceptions import CacheNotRunningError
from tunecache.media.downloader import Downloader, HttpDownloader
from tunecache.models.config import CacheConfig
from tunecache.models.entry import CacheEntry, Song
from tunecache.models.events import (
    CacheEvent,
    DownloadComplete,
    DownloadFatal,
    EntryEvicted,
)
from tunecache.storage.entry_store import EntryStore
from tunecache.utils.path import create_dir

log = logging.getLogger(__name__)


class FileCache:
    """
    Downloads songs into a local directory and keeps it within a byte budget.

    At most one download per song is in flight at a time. Songs that are being
    downloaded or have been pinned are never evicted to make room for others.
    """

    def __init__(
        self,
        config: CacheConfig,
        downloader: Downloader | None = None,
        events: "queue.Queue[CacheEvent] | None" = None,
    ):
        self._config = config
        self._downloader = downloader or HttpDownloader(config)
        self.events: "queue.Queue[CacheEvent]" = events if events is not None else queue.Queue()

        self._store = EntryStore(config.db_path, config.music_dir)
        self._reclaimer = SpaceReclaimer(
            self._store,
            budget_bytes=lambda: self._config.max_cache_bytes,
            is_protected=self._is_protected,
            on_evict=self._on_evict,
        )

        # Worker-thread state.
        self._in_flight: dict[int, DownloadTask] = {}
        self._running: dict[DownloadTask, asyncio.Task] = {}
        self._pinned: set[int] = set()

        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._ready = threading.Event()
        self._state_lock = threading.Lock()
        self._startup_error: BaseException | None = None
        self._stopped = False

    @property
    def config(self) -> CacheConfig:
        return self._config

    # --- Lifecycle ---

    def start(self) -> None:
        """
        Starts the worker thread. Returns without waiting for the entries to load;
        the first call that needs them blocks until they are available.
        """
        with self._state_lock:
            if self._thread is not None:
                log.warning("File cache already started.")
                return
            self._thread = threading.Thread(
                target=self._run, name="FileCache", daemon=True
            )
            self._thread.start()

    def wait_until_ready(self, timeout: float | None = None) -> bool:
        """Blocks until startup has finished (successfully or not)."""
        return self._ready.wait(timeout)

    def _run(self) -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        try:
            create_dir(self._config.music_dir)
            self._store.load()
        except (OSError, sqlite3.Error) as e:
            log.error(f"[red]Failed to open the file cache: {e}[/red]")
            self._startup_error = e
            loop.close()
            self._ready.set()
            return

        self._loop = loop
        self._ready.set()
        log.debug(f"File cache started with {len(self._store)} entries")
        try:
            loop.run_forever()
            loop.run_until_complete(self._shutdown())
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.run_until_complete(loop.shutdown_default_executor())
        finally:
            loop.close()
            self._store.close()
            log.debug("File cache stopped.")

    async def _shutdown(self) -> None:
        for task in self._running:
            task.abort()
        pending = list(self._running.values())
        for running in pending:
            running.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._in_flight.clear()
        self._running.clear()
        await self._downloader.close()

    def quit(self) -> None:
        """
        Aborts all downloads, stops the worker and closes the database.

        Safe to call at any time, including before startup has finished and
        more than once.
        """
        with self._state_lock:
            thread = self._thread
            if thread is None or self._stopped:
                self._stopped = True
                return
            self._stopped = True

        self._ready.wait()
        if self._loop is not None:
            self._loop.call_soon_threadsafe(self._loop.stop)
        if thread is not threading.current_thread():
            thread.join()

    # --- Command plumbing ---

    def _ensure_running(self) -> asyncio.AbstractEventLoop:
        if self._thread is None:
            raise CacheNotRunningError("The file cache hasn't been started.")
        self._ready.wait()
        if self._startup_error is not None:
            raise CacheNotRunningError(
                f"The file cache failed to start: {self._startup_error}"
            )
        if self._stopped or self._loop is None:
            raise CacheNotRunningError("The file cache has been shut down.")
        return self._loop

    def _on_worker(self) -> bool:
        return threading.current_thread() is self._thread

    def _post(self, func: Callable[..., Any], *args: Any) -> None:
        """Runs func on the worker without waiting for it."""
        loop = self._ensure_running()
        if self._on_worker():
            func(*args)
            return
        with self._state_lock:
            if self._stopped:
                raise CacheNotRunningError("The file cache has been shut down.")
            loop.call_soon_threadsafe(func, *args)

    def _submit(self, func: Callable[..., Any], *args: Any) -> Any:
        """Runs func on the worker and returns its result."""
        loop = self._ensure_running()
        if self._on_worker():
            return func(*args)

        future: concurrent.futures.Future = concurrent.futures.Future()

        def call() -> None:
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(func(*args))
            except Exception as e:
                future.set_exception(e)

        with self._state_lock:
            if self._stopped:
                raise CacheNotRunningError("The file cache has been shut down.")
            loop.call_soon_threadsafe(call)
        return future.result()

    # --- Public operations ---

    def download_song(self, song: Song) -> CacheEntry | None:
        """
        Starts downloading a song unless it's already being downloaded.

        Returns:
            A snapshot of the song's entry, or None if no download was started.
        """
        return self._submit(self._download_song, song)

    def abort_download(self, song_id: int) -> None:
        self._post(self._abort_download, song_id)

    def pin_song_id(self, song_id: int) -> None:
        """Protects a song from eviction until the pins are cleared."""
        self._post(self._pinned.add, song_id)

    def clear_pinned_song_ids(self) -> None:
        self._post(self._pinned.clear)

    def update_last_access_time(self, song_id: int) -> None:
        self._post(self._store.touch, song_id)

    def get_entry(self, song_id: int) -> CacheEntry | None:
        return self._submit(self._get_entry, song_id)

    def all_fully_cached_entries(self) -> list[CacheEntry]:
        return self._submit(self._store.fully_cached_entries)

    def total_cached_bytes(self) -> int:
        return self._submit(self._store.total_cached_bytes)

    def active_downloads(self) -> list[int]:
        """The IDs of songs currently being downloaded."""
        return self._submit(lambda: sorted(self._in_flight))

    def update_config(self, config: CacheConfig) -> None:
        """
        Applies a new budget, rate limit and download settings.

        The new values are seen by running downloads at their next chunk. The
        cache directory can't be changed while the cache is running.
        """
        self._post(self._update_config, config)

    def clear(self) -> int:
        """
        Aborts every download and deletes every cached file, pinned or not.

        Returns:
            The number of entries removed.
        """
        return self._submit(self._clear)

    # --- Worker-side implementations ---

    def _emit(self, event: CacheEvent) -> None:
        self.events.put(event)

    def _on_evict(self, entry: CacheEntry) -> None:
        log.info(f"Evicted song {entry.song_id} from the cache")
        self._emit(EntryEvicted(entry))

    def _is_protected(self, song_id: int) -> bool:
        if song_id in self._pinned or song_id in self._in_flight:
            return True
        # An aborted task may still be unwinding and holding the file open.
        return any(task.song_id == song_id for task in self._running)

    def _get_entry(self, song_id: int) -> CacheEntry | None:
        entry = self._store.get(song_id)
        return entry.copy() if entry else None

    def _download_song(self, song: Song) -> CacheEntry | None:
        if not song.url:
            log.warning(f"[yellow]Song {song.id} has no URL; not downloading it.[/yellow]")
            return None
        if song.id in self._in_flight:
            log.debug(f"Song {song.id} is already being downloaded")
            return None

        entry = self._store.get(song.id)
        if entry is None:
            entry = self._store.add(song.id)
        else:
            self._store.touch(song.id)

        task = DownloadTask(
            entry,
            song.url,
            store=self._store,
            downloader=self._downloader,
            reclaimer=self._reclaimer,
            config_provider=lambda: self._config,
            emit=self._emit,
        )
        previous = [
            running
            for other, running in self._running.items()
            if other.song_id == song.id
        ]
        self._in_flight[song.id] = task
        self._running[task] = self._loop.create_task(self._run_download(task, previous))
        return entry.copy()

    async def _run_download(self, task: DownloadTask, previous: list[asyncio.Task]) -> None:
        try:
            if previous:
                # Let an aborted download of the same song finish with the file first.
                await asyncio.wait(previous)
            status = await task.run()
        except Exception as e:
            log.error(
                f"[red]Unexpected error downloading song {task.song_id}: {e!r}[/red]",
                exc_info=True,
            )
            task.reason = f"Unexpected error: {e!r}"
            status = DownloadStatus.FATAL_ERROR
        finally:
            self._running.pop(task, None)
            if self._in_flight.get(task.song_id) is task:
                del self._in_flight[task.song_id]

        if status is DownloadStatus.SUCCESS:
            log.info(f"[green]✓ Cached song {task.song_id}[/green]")
            self._emit(DownloadComplete(task.entry.copy()))
        elif status is DownloadStatus.FATAL_ERROR:
            log.error(f"[red]✗ Giving up on song {task.song_id}: {task.reason}[/red]")
            self._emit(DownloadFatal(task.entry.copy(), task.reason))

    def _abort_download(self, song_id: int) -> None:
        task = self._in_flight.pop(song_id, None)
        if task is None:
            log.warning(f"Got request to abort song {song_id}, which isn't being downloaded")
            return
        log.debug(f"Aborting download of song {song_id}")
        task.abort()

    def _update_config(self, config: CacheConfig) -> None:
        if config.cache_dir != self._config.cache_dir:
            log.warning(
                "[yellow]Ignoring cache directory change until the cache is restarted.[/yellow]"
            )
            config = config.model_copy(update={"cache_dir": self._config.cache_dir})
        self._config = config
        log.debug(
            f"Cache budget is now {config.max_cache_bytes} bytes, rate limit "
            f"{config.max_bytes_per_second} bytes/sec"
        )
        # Shrink to the new budget if it went down.
        self._reclaimer.reclaim(0)

    def _clear(self) -> int:
        for task in list(self._in_flight.values()):
            task.abort()
        self._in_flight.clear()
        self._pinned.clear()

        count = self._reclaimer.evict_all()
        # The directory may have been removed from outside the cache.
        create_dir(self._config.music_dir)
        for path in self._config.music_dir.iterdir():
            if path.is_file():
                log.debug(f"Deleting untracked file '{path}'")
                try:
                    path.unlink()
                except OSError as e:
                    log.warning(f"Failed to delete '{path}': {e}")
        log.info(f"Cleared {count} entries from the cache")
        return count
