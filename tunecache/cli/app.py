"""
Defines the command-line interface for the application using Typer.
"""

import logging
import os
import queue
import time
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.logging import RichHandler

from tunecache import __version__
from tunecache.core.file_cache import FileCache
from tunecache.core.playback import can_start_playback
from tunecache.exceptions import TuneCacheError
from tunecache.models.config import CacheConfig
from tunecache.models.entry import Song
from tunecache.models.events import DownloadComplete, DownloadFatal, DownloadProgress
from tunecache.storage.config_manager import ConfigManager

from .formatters import print_entries_table, print_fetch_summary, print_validation_table
from .progress_manager import ProgressManager

console = Console()

logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[
        RichHandler(
            console=console,
            rich_tracebacks=True,
            show_path=False,
            show_level=False,
            markup=True,
        )
    ],
)
log = logging.getLogger("tunecache")

app = typer.Typer(
    name="tunecache",
    help=(
        "A persistent, size-bounded cache of downloaded songs. Use 'tunecache"
        " <command> --help' for more info."
    ),
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    add_completion=False,
)


def get_config_dir() -> Path:
    if os.name == "nt":
        base_dir = Path(os.getenv("APPDATA", "~\\AppData\\Roaming"))
    else:
        base_dir = Path(os.getenv("XDG_CONFIG_HOME", "~/.config"))
    return base_dir.expanduser() / "tunecache"


def get_cache_dir() -> Path:
    if os.name == "nt":
        base_dir = Path(os.getenv("LOCALAPPDATA", "~\\AppData\\Local"))
    else:
        base_dir = Path(os.getenv("XDG_CACHE_HOME", "~/.cache"))
    return base_dir.expanduser() / "tunecache"


CONFIG_DIR = get_config_dir()
CONFIG_FILE = CONFIG_DIR / "config.ini"
CACHE_DIR = get_cache_dir()


def _load_config(cli_options: dict[str, Any] | None = None) -> CacheConfig:
    return ConfigManager(CONFIG_FILE, CACHE_DIR).load_config(cli_options)


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase logging verbosity (-v for debug).",
    ),
    version: bool = typer.Option(
        False, "--version", help="Show version and exit.", is_eager=True
    ),
):
    """TuneCache CLI"""
    if version:
        console.print(f"[bold]tunecache[/bold] version [cyan]{__version__}[/cyan]")
        raise typer.Exit()

    logging.getLogger("tunecache").setLevel("DEBUG" if verbose >= 1 else "INFO")

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@app.command()
def init(
    cache_size: int = typer.Option(
        512, "--cache-size", "-s", help="Maximum size of the cache in megabytes."
    ),
    preload: int = typer.Option(
        5, "--preload", "-p", help="Number of upcoming songs to download ahead."
    ),
    rate: int = typer.Option(
        0, "--rate", "-r", help="Maximum download rate in KB/s (0 for unlimited)."
    ),
    token: str = typer.Option(
        "", "--token", "-t", help="Bearer token sent with every download request."
    ),
    force: bool = typer.Option(
        False, "--force", "-f", help="Overwrite an existing configuration without asking."
    ),
):
    """Create the configuration file."""
    if (
        CONFIG_FILE.exists()
        and not force
        and not typer.confirm("Configuration file already exists. Overwrite it?")
    ):
        raise typer.Abort()

    settings = {
        "cache_size_mb": cache_size,
        "songs_to_preload": preload,
        "download_rate_kbps": rate,
        "auth_token": token,
    }
    ConfigManager(CONFIG_FILE, CACHE_DIR).save_new_config(settings)
    console.print(f"\n[bold green]✓ Configuration saved to '{CONFIG_FILE}'[/bold green]")
    console.print("Ready to cache! Try: [cyan]tunecache fetch <SONG_ID> <URL>[/cyan]")


@app.command()
def fetch(
    song_id: int = typer.Argument(..., help="Numeric ID to cache the song under."),
    url: str = typer.Argument(..., help="URL to download the song from."),
    length: int = typer.Option(
        0, "--length", "-l", help="Song length in seconds, used to report playability."
    ),
    rate: int | None = typer.Option(
        None, "--rate", "-r", help="Override the maximum download rate in KB/s."
    ),
):
    """Download a song into the cache, resuming any partial download."""
    config = _load_config({"download_rate_kbps": rate})
    cache = FileCache(config)
    cache.start()
    start_time = time.monotonic()
    result = None
    try:
        with ProgressManager(console) as progress:
            progress.add_song(song_id)
            if cache.download_song(Song(song_id, url, length)) is None:
                console.print(f"[yellow]⚠️  Song {song_id} can't be downloaded now.[/yellow]")
                raise typer.Exit(code=1)

            announced_playable = False
            while result is None:
                try:
                    event = cache.events.get(timeout=0.5)
                except queue.Empty:
                    continue
                progress.handle_event(event)
                if event.entry.song_id != song_id:
                    continue
                if isinstance(event, (DownloadComplete, DownloadFatal)):
                    result = event
                elif (
                    isinstance(event, DownloadProgress)
                    and not announced_playable
                    and length
                    and can_start_playback(
                        event.entry, event.downloaded_bytes, event.elapsed_ms, length
                    )
                ):
                    announced_playable = True
                    log.info(f"[green]▶ Song {song_id} can start playing now.[/green]")
    except KeyboardInterrupt:
        cache.abort_download(song_id)
        console.print("\n[yellow]⚠️  Download aborted; it will resume next time.[/yellow]")
        raise typer.Exit(code=1) from None
    finally:
        cache.quit()

    if isinstance(result, DownloadFatal):
        console.print(f"[bold red]✗ Download failed: {result.reason}[/bold red]")
        raise typer.Exit(code=1)
    print_fetch_summary(result.entry, time.monotonic() - start_time)


@app.command()
def status():
    """Show cached songs and how much of the cache budget they use."""
    config = _load_config()
    cache = FileCache(config)
    cache.start()
    try:
        print_entries_table(
            cache.all_fully_cached_entries(),
            cache.total_cached_bytes(),
            config.max_cache_bytes,
            cache.active_downloads(),
        )
    finally:
        cache.quit()


@app.command()
def clear(
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Bypass the confirmation prompt.",
    ),
):
    """Delete every cached song."""
    if not force and not typer.confirm(
        "Are you sure you want to delete every cached song? This cannot be undone."
    ):
        console.print("[yellow]Operation cancelled.[/yellow]")
        raise typer.Abort()

    config = _load_config()
    cache = FileCache(config)
    cache.start()
    try:
        console.print("[cyan]Clearing cache...[/cyan]")
        count = cache.clear()
    finally:
        cache.quit()
    console.print(f"[green]✓ Cache cleared ({count} songs removed).[/green]")


@app.command()
def validate():
    """Validate the current configuration."""
    try:
        config = _load_config()
        print_validation_table(config, CONFIG_FILE)
    except TuneCacheError as e:
        console.print(f"[red]✗ Configuration is invalid: {e}[/red]")
        raise typer.Exit(code=1) from e
