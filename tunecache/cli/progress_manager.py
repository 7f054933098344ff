"""
Renders download progress from cache events with a Rich progress display.
"""

import logging

from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)

from tunecache.models.events import (
    CacheEvent,
    DownloadComplete,
    DownloadFailed,
    DownloadFatal,
    DownloadProgress,
    EntryEvicted,
)

log = logging.getLogger(__name__)


class ProgressManager:
    """
    Shows one progress bar per song, driven by the events the cache publishes.

    Use as a context manager around the code that drains the event queue.
    """

    def __init__(self, console: Console):
        self.console = console
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}", justify="left"),
            BarColumn(bar_width=30),
            "[progress.percentage]{task.percentage:>3.0f}%",
            "•",
            DownloadColumn(),
            "•",
            TransferSpeedColumn(),
            "•",
            TimeRemainingColumn(),
            console=console,
            transient=False,
        )
        self._tasks: dict[int, TaskID] = {}
        self._labels: dict[int, str] = {}

    def __enter__(self) -> "ProgressManager":
        self.progress.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.progress.stop()

    def add_song(self, song_id: int, label: str | None = None) -> None:
        """Adds a bar for a song; its total is filled in once the server reports it."""
        if song_id in self._tasks:
            return
        self._labels[song_id] = label or f"Song {song_id}"
        self._tasks[song_id] = self.progress.add_task(self._labels[song_id], total=None)

    def handle_event(self, event: CacheEvent) -> None:
        if isinstance(event, EntryEvicted):
            log.info(f"[dim]Evicted song {event.entry.song_id} to make room.[/dim]")
            return

        task_id = self._tasks.get(event.entry.song_id)
        if task_id is None:
            return
        entry = event.entry
        label = self._labels[entry.song_id]
        total = entry.total_bytes or None

        if isinstance(event, DownloadProgress):
            self.progress.update(
                task_id, total=total, completed=entry.cached_bytes, description=label
            )
        elif isinstance(event, DownloadComplete):
            self.progress.update(
                task_id,
                total=total,
                completed=entry.cached_bytes,
                description=f"[green]✓ {label}[/green]",
            )
        elif isinstance(event, DownloadFailed):
            self.progress.update(
                task_id,
                completed=entry.cached_bytes,
                description=f"[yellow]↻ {label}[/yellow]",
            )
        elif isinstance(event, DownloadFatal):
            self.progress.update(task_id, description=f"[red]✗ {label}[/red]")
