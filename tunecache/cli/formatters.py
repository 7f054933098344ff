"""
Functions for formatting and displaying data in the console using Rich.
"""

from datetime import datetime
from pathlib import Path

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from tunecache.models.config import CacheConfig
from tunecache.models.entry import CacheEntry
from tunecache.utils.formatting import format_duration, format_size


def format_error_with_suggestions(
    error: Exception, context: dict | None = None
) -> Panel:
    """Formats an error with actionable suggestions into a Rich Panel."""
    error_type = type(error).__name__
    error_msg = str(error)

    suggestions_map = {
        "ConfigurationError": [
            "• Run `tunecache init` to create a configuration file.",
            "• Run `tunecache validate` to see which setting is wrong.",
        ],
        "CacheNotRunningError": [
            "• Check that the cache directory exists and is writable.",
            "• Another process may be holding the cache database open.",
        ],
        "TransportError": [
            "• A network connection issue occurred.",
            "• Check the song URL and your internet connection.",
        ],
        "OperationalError": [
            "• The cache database could not be opened.",
            "• Run `tunecache clear` to start over with an empty cache.",
        ],
    }

    suggestions = suggestions_map.get(
        error_type, ["• Run the command with -v for detailed logs."]
    )

    error_text = Text()
    error_text.append(f"{error_type}: ", style="bold red")
    error_text.append(error_msg)

    content = Table.grid(padding=(1, 0))
    content.add_row(error_text)
    content.add_row()
    content.add_row(Text("Suggestions", style="bold yellow"))
    content.add_row(Text("\n".join(suggestions)))

    if context:
        content.add_row()
        content.add_row(Text(f"Context: {context}", style="dim"))

    return Panel(
        content,
        title="[bold red]An Error Occurred[/bold red]",
        border_style="red",
        expand=False,
    )


def print_validation_table(config: CacheConfig, config_path: Path):
    """Displays a summary of the current settings."""
    console = Console()
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan")
    table.add_column()

    rate = (
        f"{config.download_rate_kbps} KB/s" if config.download_rate_kbps else "Unlimited"
    )
    table.add_row("Config File:", f"[dim]{config_path}[/dim]")
    table.add_row("Cache Directory:", f"[dim]{config.cache_dir}[/dim]")
    table.add_row("Cache Size:", format_size(config.max_cache_bytes))
    table.add_row("Songs to Preload:", str(config.songs_to_preload))
    table.add_row("Download Rate:", rate)
    table.add_row("Chunk Size:", format_size(config.chunk_size))
    table.add_row(
        "Timeouts:", f"connect {config.connect_timeout}s, read {config.read_timeout}s"
    )
    table.add_row(
        "Auth Token:", "[green]✓ Set[/green]" if config.auth_token else "[dim]✗ None[/dim]"
    )

    console.print(
        Panel(
            table,
            title="[bold green]✓ Validated Settings[/bold green]",
            border_style="green",
        )
    )


def print_entries_table(
    entries: list[CacheEntry], total_bytes: int, budget_bytes: int, active: list[int]
):
    """Displays the fully cached songs and how much of the budget they use."""
    console = Console()

    if entries:
        table = Table(title="Cached Songs", box=box.ROUNDED)
        table.add_column("Song ID", style="cyan", justify="right")
        table.add_column("Size", justify="right", style="green")
        table.add_column("Last Played", style="dim")
        for entry in sorted(entries, key=lambda e: e.last_access_time, reverse=True):
            accessed = datetime.fromtimestamp(entry.last_access_time)
            table.add_row(
                str(entry.song_id),
                format_size(entry.total_bytes),
                accessed.strftime("%Y-%m-%d %H:%M"),
            )
        console.print(table)
    else:
        console.print("[dim]No songs are fully cached yet.[/dim]")

    percent = total_bytes / budget_bytes * 100 if budget_bytes else 0
    console.print(
        f"\n[bold]Cache Usage:[/] [cyan]{format_size(total_bytes)}[/cyan] of "
        f"{format_size(budget_bytes)} ([magenta]{percent:.1f}%[/magenta])"
    )
    if active:
        console.print(
            f"[bold]Downloading:[/] {', '.join(str(song_id) for song_id in active)}"
        )


def print_fetch_summary(entry: CacheEntry, duration_s: float):
    """Displays the result of a finished download."""
    console = Console()
    stats_table = Table(show_header=False, box=None, padding=(0, 2))
    stats_table.add_column(style="bold cyan", justify="right", width=14)
    stats_table.add_column(style="white", justify="left")

    stats_table.add_row("Song ID:", str(entry.song_id))
    stats_table.add_row("File:", f"[dim]{entry.local_path}[/dim]")
    stats_table.add_row("Size:", f"[cyan]{format_size(entry.total_bytes)}[/cyan]")
    stats_table.add_row("Time Elapsed:", f"[blue]{format_duration(duration_s)}[/blue]")

    console.print()
    console.print(
        Panel(
            stats_table,
            title="🎵 [bold]Download Complete![/bold]",
            border_style="green",
            box=box.DOUBLE,
            expand=False,
            padding=(1, 2),
        )
    )
