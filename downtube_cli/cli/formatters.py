"""
Functions for formatting and displaying data in the console using Rich.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from downtube_cli.models.config import AppConfig
from downtube_cli.models.job import DownloadJob, JobStatus, MediaInfo
from downtube_cli.utils.formatting import (
    classify_error,
    format_clock,
    format_duration,
    format_size,
)


def format_error_with_suggestions(
    error: Exception, context: dict | None = None
) -> Panel:
    """Formats an error with actionable suggestions into a Rich Panel."""
    error_type = type(error).__name__
    error_msg = str(error)

    suggestions_map = {
        "SpawnError": [
            "• yt-dlp or ffmpeg could not be started.",
            "• Run `downtube-cli diagnose` to see which binary is missing.",
            "• Run `downtube-cli update-ytdlp` to install a private yt-dlp copy.",
        ],
        "ProcessExitError": [
            "• The extractor rejected the URL or the site changed.",
            "• Run `downtube-cli update-ytdlp` to get the latest extractor.",
        ],
        "PlaylistTimeoutError": [
            "• Very large playlists can take a while to list.",
            "• Lower `--limit` or raise `playlist_timeout_ms` in the config.",
        ],
        "InvalidUrlError": [
            "• Check that the URL starts with https:// and is not truncated.",
        ],
        "MetadataProbeError": [
            "• The video may be private, removed or region-locked.",
            "• Run the command with -vv for the full extractor output.",
        ],
        "ConfigurationError": [
            "• Check the values in your config file.",
            "• Run `downtube-cli init --force` to recreate it with defaults.",
        ],
        "UpdateError": [
            "• GitHub may be rate-limiting anonymous API requests.",
            "• Check your internet connection and try again later.",
        ],
        "ClientResponseError": [
            "• A network connection issue occurred.",
            "• Please try again in a few minutes.",
        ],
    }

    suggestions = suggestions_map.get(
        error_type, ["• Run the command with -vv for detailed logs."]
    )

    error_text = Text()
    error_text.append(f"{error_type}: ", style="bold red")
    error_text.append(error_msg)

    suggestion_text = Text("\n".join(suggestions))

    content = Table.grid(padding=(1, 0))
    content.add_row(error_text)
    content.add_row()
    content.add_row(Text("Suggestions", style="bold yellow"))
    content.add_row(suggestion_text)

    if context:
        content.add_row()
        content.add_row(Text(f"Context: {context}", style="dim"))

    return Panel(
        content,
        title="[bold red]An Error Occurred[/bold red]",
        border_style="red",
        expand=False,
    )


def print_config(config_path: Path, config_data: Dict[str, Any]):
    """Displays the current configuration."""
    console = Console()
    content = "\n".join(f"{key} = {value}" for key, value in config_data.items())
    console.print(
        Panel(
            escape(content),
            title=f"Configuration ([dim]{config_path}[/dim])",
            border_style="cyan",
        )
    )


def print_validation_table(config: AppConfig, checks: Dict[str, Optional[str]]):
    """
    Displays the effective settings and the result of each binary check.

    Args:
        config: The loaded configuration.
        checks: Binary name -> version string, or None if it could not run.
    """
    console = Console()
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan")
    table.add_column()

    table.add_row("Output Dir:", f"[dim]{escape(config.output_dir)}[/dim]")
    table.add_row("Audio Format:", config.audio_format)
    table.add_row("Playlist Limit:", str(config.playlist_limit))
    table.add_row(
        "Playlist Timeout:", format_duration(config.playlist_timeout_ms / 1000)
    )
    table.add_row(
        "Verify Audio:", "✓ Enabled" if config.verify_audio else "✗ Disabled"
    )
    for name, version in checks.items():
        status = (
            f"[green]✓ {escape(version)}[/green]" if version else "[red]✗ Not found[/red]"
        )
        table.add_row(f"{name}:", status)

    ok = all(checks.values())
    console.print(
        Panel(
            table,
            title=(
                "[bold green]✓ Ready[/bold green]"
                if ok
                else "[bold red]✗ Missing Tools[/bold red]"
            ),
            border_style="green" if ok else "red",
        )
    )


def print_info_panel(info: MediaInfo):
    """Displays the metadata of a single media item."""
    console = Console()
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan", justify="right")
    table.add_column()

    table.add_row("ID:", escape(info.id))
    table.add_row("Uploader:", escape(info.uploader or info.channel or "—"))
    table.add_row("Duration:", format_clock(info.duration))
    if info.is_live:
        table.add_row("Live:", "[red]● live[/red]")
    if info.availability:
        table.add_row("Availability:", escape(info.availability))
    if info.formats_count is not None:
        table.add_row("Formats:", str(info.formats_count))
    if info.extractor:
        table.add_row("Extractor:", escape(info.extractor))
    if info.thumbnail:
        table.add_row("Thumbnail:", f"[dim]{escape(info.thumbnail)}[/dim]")
    table.add_row("URL:", f"[dim]{escape(info.webpage_url or info.url)}[/dim]")

    console.print(
        Panel(
            table,
            title=f"[bold]{escape(info.title)}[/bold]",
            border_style="cyan",
            expand=False,
        )
    )


def print_playlist_table(infos: List[MediaInfo], limit: int):
    """Displays the entries of an expanded playlist."""
    console = Console()
    table = Table(box=box.ROUNDED)
    table.add_column("#", style="dim", justify="right")
    table.add_column("Title", style="cyan")
    table.add_column("Channel")
    table.add_column("Length", justify="right", style="green")

    for index, info in enumerate(infos, 1):
        title = escape(info.title)
        if info.is_live:
            title += " [red](live)[/red]"
        table.add_row(
            str(index),
            title,
            escape(info.channel or info.uploader or ""),
            format_clock(info.duration),
        )
    console.print(table)
    if len(infos) >= limit:
        console.print(
            f"[yellow]Showing the first {limit} entries; use --limit to see more.[/yellow]"
        )


def print_summary_panel(jobs: List[DownloadJob], duration_s: float):
    """Displays the final summary of a download session."""
    console = Console()

    counts = {status: 0 for status in JobStatus}
    total_size = 0
    for job in jobs:
        counts[job.status] += 1
        if job.output_file and job.output_file.is_file():
            total_size += job.output_file.stat().st_size

    stats_table = Table(show_header=False, box=None, padding=(0, 2))
    stats_table.add_column(style="bold cyan", justify="right", width=16)
    stats_table.add_column(style="white", justify="left")
    stats_table.add_row(
        "✓ Completed:", f"[bold green]{counts[JobStatus.COMPLETED]}[/bold green]"
    )
    if counts[JobStatus.FAILED]:
        stats_table.add_row(
            "✗ Failed:", f"[bold red]{counts[JobStatus.FAILED]}[/bold red]"
        )
    if counts[JobStatus.CANCELLED]:
        stats_table.add_row(
            "○ Cancelled:", f"[yellow]{counts[JobStatus.CANCELLED]}[/yellow]"
        )
    if counts[JobStatus.QUEUED]:
        stats_table.add_row("… Not started:", f"[cyan]{counts[JobStatus.QUEUED]}[/cyan]")
    stats_table.add_row("", "")
    stats_table.add_row("Total Size:", f"[cyan]{format_size(total_size)}[/cyan]")
    stats_table.add_row("Time Elapsed:", f"[blue]{format_duration(duration_s)}[/blue]")

    failed = counts[JobStatus.FAILED] > 0
    console.print()
    console.print(
        Panel(
            stats_table,
            title=(
                "⚠️  [bold]Finished With Errors[/bold]"
                if failed
                else "📺 [bold]Downloads Complete![/bold]"
            ),
            border_style="yellow" if failed else "green",
            box=box.DOUBLE,
            expand=False,
            padding=(1, 2),
        )
    )

    failures = [job for job in jobs if job.status is JobStatus.FAILED]
    if failures:
        table = Table(title="Failed Downloads", box=box.ROUNDED)
        table.add_column("Item", style="cyan")
        table.add_column("Problem", style="bold red")
        table.add_column("Details")
        for job in failures:
            category = classify_error(job.error)
            table.add_row(
                escape(job.display_name), category.title, escape(category.hint)
            )
        console.print(table)
    console.print()
