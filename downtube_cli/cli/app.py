"""
Defines the command-line interface for the application using Typer.
Supports URL arguments and stdin URL processing.
"""

import asyncio
import logging
import sys
import time
from pathlib import Path

import aiohttp
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TextColumn,
    TransferSpeedColumn,
)

from downtube_cli import __version__
from downtube_cli.core.download_queue import DownloadQueue
from downtube_cli.core.events import EventBus
from downtube_cli.exceptions import DownTubeError
from downtube_cli.media.binaries import Binaries, app_bin_dir, binary_version
from downtube_cli.media.playlist import PlaylistExpander, normalize_limit
from downtube_cli.media.probe import MetadataProbe
from downtube_cli.media.runner import ProcessRunner
from downtube_cli.models.config import PLAYLIST_MAX_ENTRIES, AppConfig
from downtube_cli.models.job import JobStatus, JobType
from downtube_cli.storage.config_manager import ConfigManager, get_config_dir
from downtube_cli.utils.path import is_playlist_url
from downtube_cli.utils.structured_logger import create_event_logger
from downtube_cli.web.release_fetcher import YtDlpUpdater

from .formatters import (
    print_config,
    print_info_panel,
    print_playlist_table,
    print_summary_panel,
    print_validation_table,
)
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
log = logging.getLogger("downtube_cli")

app = typer.Typer(
    name="downtube-cli",
    help=(
        "Queue-based video and audio downloader built on yt-dlp and ffmpeg. Use"
        " 'downtube-cli <command> --help' for more info."
    ),
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    add_completion=False,
)

CONFIG_DIR = get_config_dir()
CONFIG_FILE = CONFIG_DIR / "config.ini"
LOG_DIR = CONFIG_DIR / "logs"


def _load_config(cli_options: dict | None = None) -> AppConfig:
    return ConfigManager(CONFIG_FILE).load_config(cli_options)


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase logging verbosity (-vv for debug).",
    ),
    version: bool = typer.Option(
        False, "--version", help="Show version and exit.", is_eager=True
    ),
    show_config: bool = typer.Option(
        False, "--show-config", help="Display the current configuration."
    ),
):
    """DownTube Downloader CLI"""
    if version:
        console.print(f"[bold]downtube-cli[/bold] version [cyan]{__version__}[/cyan]")
        raise typer.Exit()

    log_level = "INFO"
    if verbose >= 2:
        log_level = "DEBUG"
    logging.getLogger("downtube_cli").setLevel(log_level)

    if show_config:
        config = _load_config()
        config_data = config.model_dump(include=AppConfig.get_ini_keys())
        print_config(CONFIG_FILE, dict(sorted(config_data.items())))
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@app.command()
def init(
    output_dir: Path | None = typer.Option(
        None, "--output-dir", "-d", help="Where downloaded files are saved."
    ),
    audio_format: str | None = typer.Option(
        None, "--audio-format", help="mp3, m4a, opus, flac or wav."
    ),
    force: bool = typer.Option(
        False, "--force", "-f", help="Overwrite an existing config without asking."
    ),
):
    """Create a configuration file with default settings."""
    if (
        CONFIG_FILE.exists()
        and not force
        and not typer.confirm("Configuration file already exists. Overwrite it?")
    ):
        raise typer.Abort()

    settings = {}
    if output_dir:
        settings["output_dir"] = str(output_dir)
    if audio_format:
        settings["audio_format"] = audio_format

    ConfigManager(CONFIG_FILE).save_new_config(settings)
    console.print(f"\n[bold green]✓ Configuration saved to '{CONFIG_FILE}'[/bold green]")
    console.print("Ready to download! Try: [cyan]downtube-cli download <URL>[/cyan]")


@app.command()
def info(
    url: str = typer.Argument(..., help="A single video URL."),
    as_json: bool = typer.Option(
        False, "--json", help="Print the normalized metadata as JSON."
    ),
):
    """Show metadata for a single video without downloading it."""
    config = _load_config()
    probe = MetadataProbe(Binaries.from_config(config).ytdlp)

    async def _info_async():
        with console.status("[cyan]Fetching metadata...[/cyan]"):
            return await probe.download_info(url)

    media = asyncio.run(_info_async())
    if as_json:
        console.print_json(data=media.to_dict())
    else:
        print_info_panel(media)


@app.command(name="playlist")
def playlist_command(
    url: str = typer.Argument(..., help="A playlist URL."),
    limit: int | None = typer.Option(
        None, "--limit", "-l", help=f"Maximum entries to list (1-{PLAYLIST_MAX_ENTRIES})."
    ),
):
    """List the entries of a playlist without downloading them."""
    config = _load_config()
    expander = PlaylistExpander(
        Binaries.from_config(config).ytdlp,
        default_limit=config.playlist_limit,
        default_timeout_ms=config.playlist_timeout_ms,
    )
    effective_limit = normalize_limit(limit, config.playlist_limit, PLAYLIST_MAX_ENTRIES)

    async def _playlist_async():
        with console.status("[cyan]Expanding playlist...[/cyan]"):
            return await expander.parse_playlist_infos(url, effective_limit)

    infos = asyncio.run(_playlist_async())
    if not infos:
        console.print("[yellow]⚠️  The playlist has no downloadable entries.[/yellow]")
        raise typer.Exit()
    print_playlist_table(infos, effective_limit)


def _read_urls_from_stdin() -> list[str]:
    """Reads URLs from stdin, one per line."""
    if sys.stdin.isatty():
        console.print(
            "[yellow]⚠️  No input detected on stdin. Please pipe URLs or redirect"
            " a file.[/yellow]"
        )
        console.print(
            "[dim]Examples:[/dim]\n"
            "  [cyan]cat urls.txt | downtube-cli download --stdin[/cyan]\n"
            "  [cyan]downtube-cli download --stdin < urls.txt[/cyan]"
        )
        raise typer.Exit(code=1)

    urls = []
    console.print("[dim]Reading URLs from stdin...[/dim]")
    try:
        for line in sys.stdin:
            line = line.strip()
            if line and not line.startswith("#"):
                urls.append(line)
    except KeyboardInterrupt:
        console.print("\n[yellow]⚠️  Input interrupted.[/yellow]")
        raise typer.Exit(code=1) from None

    if not urls:
        console.print("[yellow]⚠️  No valid URLs found in stdin.[/yellow]")
        raise typer.Exit(code=1)

    console.print(f"[green]✓ Read {len(urls)} URLs from stdin.[/green]")
    return urls


def build_queue(config: AppConfig, bus: EventBus) -> DownloadQueue:
    """Wires the runner, probe and expander for `config` into a paused queue."""
    binaries = Binaries.from_config(config)
    log.debug(f"Using yt-dlp={binaries.ytdlp} ffmpeg={binaries.ffmpeg}")
    return DownloadQueue(
        ProcessRunner.from_config(config, binaries),
        config.output_path,
        bus=bus,
        probe=MetadataProbe(binaries.ytdlp),
        expander=PlaylistExpander(
            binaries.ytdlp,
            default_limit=config.playlist_limit,
            default_timeout_ms=config.playlist_timeout_ms,
        ),
        playlist_limit=config.playlist_limit,
    )


@app.command(name="download")
def download_command(
    urls: list[str] | None = typer.Argument(  # noqa: B008
        None, help="One or more video or playlist URLs."
    ),
    audio: bool = typer.Option(
        False, "--audio", "-a", help="Extract audio only instead of video."
    ),
    limit: int | None = typer.Option(
        None,
        "--limit",
        "-l",
        help=f"Maximum entries taken from each playlist (1-{PLAYLIST_MAX_ENTRIES}).",
    ),
    prefix: str | None = typer.Option(
        None, "--prefix", "-p", help="Base filename for the downloaded files."
    ),
    output_dir: Path | None = typer.Option(
        None, "--output-dir", "-d", help="Override the configured output directory."
    ),
    audio_format: str | None = typer.Option(
        None, "--audio-format", help="Audio format for --audio downloads."
    ),
    no_probe: bool = typer.Option(
        False, "--no-probe", help="Skip the metadata lookup before queueing."
    ),
    event_log: bool | None = typer.Option(
        None,
        "--event-log/--no-event-log",
        help=f"Write a JSON-lines event log to {LOG_DIR}.",
    ),
    stdin: bool = typer.Option(
        False, "--stdin", help="Read URLs from standard input, one URL per line."
    ),
):
    """Download videos, audio or whole playlists."""
    if stdin and urls:
        console.print(
            "[yellow]⚠️  Both URLs and --stdin provided. Using --stdin only.[/yellow]"
        )
        urls = _read_urls_from_stdin()
    elif stdin:
        urls = _read_urls_from_stdin()
    elif not urls:
        console.print(
            "[red]✗ No URLs provided.[/red] "
            "Use: [cyan]downtube-cli download <URL>[/cyan] or [cyan]--stdin[/cyan]"
        )
        raise typer.Exit(code=1)

    config = _load_config(
        {
            "output_dir": str(output_dir) if output_dir else None,
            "audio_format": audio_format,
            "event_log": event_log,
        }
    )
    job_type = JobType.AUDIO if audio else JobType.VIDEO
    source_urls = list(dict.fromkeys(urls))

    async def _download_async():
        bus = EventBus()
        queue = build_queue(config, bus)
        event_logger = None
        if config.event_log:
            event_logger, _ = create_event_logger(bus, LOG_DIR)
            log.info(f"Event log: [dim]{event_logger.path}[/dim]")

        console.print(
            f"[bold cyan]📺 Starting {job_type.value} download session...[/bold cyan]"
        )
        start_time = time.monotonic()
        try:
            async with ProgressManager(console=console) as progress_manager:
                unsubscribe = progress_manager.attach(bus)
                try:
                    for url in source_urls:
                        await _enqueue_source(queue, url, job_type, limit, prefix, no_probe)
                    queue.start()
                    await queue.wait_until_idle()
                except asyncio.CancelledError:
                    # Ctrl-C: kill the running job and remove its partial files.
                    await queue.pause()
                    raise
                finally:
                    unsubscribe()
        finally:
            if event_logger:
                event_logger.close()

        jobs = queue.list_jobs()
        print_summary_panel(jobs, time.monotonic() - start_time)
        return jobs

    jobs = asyncio.run(_download_async())
    if any(job.status is JobStatus.FAILED for job in jobs):
        raise typer.Exit(code=1)


async def _enqueue_source(
    queue: DownloadQueue,
    url: str,
    job_type: JobType,
    limit: int | None,
    prefix: str | None,
    no_probe: bool,
) -> None:
    if is_playlist_url(url):
        try:
            await queue.enqueue_playlist(url, job_type, limit, prefix)
        except DownTubeError as e:
            log.error(f"[red]Could not expand playlist {url}:[/red] {e}")
        return

    result = await queue.add_url(
        url, job_type, probe=not no_probe, filename_prefix=prefix
    )
    if not result.success:
        log.warning(f"[yellow]Skipped {url}:[/yellow] {result.message}")


@app.command(name="update-ytdlp")
def update_ytdlp(
    force: bool = typer.Option(
        False, "--force", "-f", help="Reinstall even if already up to date."
    ),
):
    """Install or update the private yt-dlp binary from GitHub releases."""
    config = _load_config()
    current = Binaries.from_config(config).ytdlp

    progress = Progress(
        TextColumn("[bold blue]{task.description}"),
        BarColumn(bar_width=40),
        "[progress.percentage]{task.percentage:>3.0f}%",
        "•",
        DownloadColumn(),
        "•",
        TransferSpeedColumn(),
        console=console,
    )
    task_id = progress.add_task("yt-dlp", total=None)

    def on_progress(received: int, total: int) -> None:
        progress.update(task_id, completed=received, total=total or None)

    async def _update_async():
        updater = YtDlpUpdater(app_bin_dir(), on_progress=on_progress)
        with progress:
            return await updater.update(current_path=current, force=force)

    result = asyncio.run(_update_async())
    if result.updated:
        previous = result.previous_version or "none"
        console.print(
            f"[green]✓ yt-dlp updated[/green] {previous} → [cyan]{result.version}[/cyan]"
        )
    else:
        console.print(
            f"[green]✓ yt-dlp is up to date[/green] ([cyan]{result.version}[/cyan])"
        )


async def _check_binaries(binaries: Binaries) -> dict[str, str | None]:
    ytdlp_version, ffmpeg_version = await asyncio.gather(
        binary_version(binaries.ytdlp),
        binary_version(binaries.ffmpeg, "-version"),
    )
    return {"yt-dlp": ytdlp_version, "ffmpeg": ffmpeg_version}


@app.command()
def validate():
    """Validate the configuration and check that yt-dlp and ffmpeg run."""
    try:
        config = _load_config()
    except DownTubeError as e:
        console.print(f"[red]✗ Configuration is invalid: {e}[/red]")
        raise typer.Exit(code=1) from e

    checks = asyncio.run(_check_binaries(Binaries.from_config(config)))
    print_validation_table(config, checks)
    if not all(checks.values()):
        raise typer.Exit(code=1)


@app.command()
def diagnose():
    """Diagnose common configuration, tooling and connectivity issues."""
    console.print("\n[bold cyan]Running diagnostics...[/bold cyan]\n")
    issues_found = False
    if CONFIG_FILE.is_file():
        console.print(f"[green]✓[/] Config file exists at: [dim]{CONFIG_FILE}[/dim]")
    else:
        console.print(
            "[yellow]○ No config file, using defaults.[/] "
            "Run [cyan]downtube-cli init[/cyan] to create one."
        )

    config = None
    try:
        config = _load_config()
        console.print("[green]✓[/] Configuration is valid and can be loaded.")
    except DownTubeError as e:
        console.print(f"[red]✗ Configuration validation failed: {e}[/red]")
        issues_found = True

    if config:
        output = config.output_path
        if output.exists() and not output.is_dir():
            console.print(f"[red]✗ Output path is not a directory:[/] {output}")
            issues_found = True
        else:
            console.print(f"[green]✓[/] Output directory: [dim]{output}[/dim]")

        binaries = Binaries.from_config(config)
        checks = asyncio.run(_check_binaries(binaries))
        for name, version in checks.items():
            if version:
                console.print(f"[green]✓[/] {name} {version}")
            else:
                console.print(f"[red]✗ {name} could not be run.[/]")
                issues_found = True

    console.print("\n[dim]Testing connectivity to YouTube...[/dim]")

    async def test_connection():
        try:
            timeout = aiohttp.ClientTimeout(total=10)
            async with (
                aiohttp.ClientSession(timeout=timeout) as session,
                session.get("https://www.youtube.com") as resp,
            ):
                if resp.status == 200:
                    console.print("[green]✓[/] Successfully connected to YouTube.")
                    return True
                console.print(
                    f"[red]✗ Could not connect to YouTube (Status: {resp.status}).[/red]"
                )
                return False
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            console.print(f"[red]✗ Connection test failed: {e}[/red]")
            return False

    if not asyncio.run(test_connection()):
        issues_found = True
    console.print()
    if not issues_found:
        console.print(
            "[bold green]✓ All checks passed! Your setup looks good.[/bold green]\n"
        )
    else:
        console.print(
            "[bold red]✗ Some issues were found. "
            "Please review the messages above.[/bold red]\n"
        )
        raise typer.Exit(code=1)
