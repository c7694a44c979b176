"""
Manages a Rich Live display for the download queue.
Shows the queue state, per-job progress and running totals, fed entirely by
EventBus notifications.
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, Dict

from rich.console import Console
from rich.layout import Layout
from rich.live import Live
from rich.markup import escape
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table
from rich.text import Text

from downtube_cli.core.events import (
    EventBus,
    JobAdded,
    JobRemoved,
    JobUpdated,
    QueueEvent,
    QueueStateChanged,
)
from downtube_cli.models.job import DownloadJob, JobStatus, QueueState

log = logging.getLogger(__name__)

_PHASE_LABELS = {
    "init": "[dim]starting[/dim]",
    "video": "[cyan]video[/cyan]",
    "audio": "[magenta]audio[/magenta]",
    "complete": "[green]done[/green]",
}
_MAX_DESCRIPTION = 48


def _shorten(text: str, limit: int = _MAX_DESCRIPTION) -> str:
    return text if len(text) <= limit else text[: limit - 1] + "…"


class ProgressManager:
    """Live view over the queue; subscribe it with `attach(bus)`."""

    def __init__(self, console: Console, quiet: bool = False):
        self.console = console
        self.quiet = quiet

        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}", justify="left"),
            BarColumn(bar_width=24),
            "[progress.percentage]{task.percentage:>3.0f}%",
            "•",
            TextColumn("{task.fields[phase]}"),
            "•",
            TimeElapsedColumn(),
            console=console,
            transient=False,
        )
        self.overall_progress = Progress(
            TextColumn("[bold blue]{task.description}"),
            BarColumn(bar_width=40),
            "[progress.percentage]{task.percentage:>3.0f}%",
            console=console,
        )

        self._live: Live | None = None
        self._layout: Layout | None = None
        self._state = QueueState(running=False, paused=True)
        self._start_time: datetime | None = None
        self._jobs: Dict[str, DownloadJob] = {}
        self._tasks: Dict[str, TaskID] = {}
        self._overall_task_id: TaskID | None = None

    def attach(self, bus: EventBus) -> Callable[[], None]:
        return bus.subscribe(self.handle_event)

    # ---------------------------------------------------------------- events

    def handle_event(self, event: QueueEvent) -> None:
        if isinstance(event, (JobAdded, JobUpdated)):
            self._on_job(event.job)
        elif isinstance(event, JobRemoved):
            self._jobs.pop(event.id, None)
            self._drop_task(event.id)
        elif isinstance(event, QueueStateChanged):
            self._state = event.state
        self._refresh_overall()
        self._update_display()

    def _on_job(self, job: DownloadJob) -> None:
        previous = self._jobs.get(job.id)
        self._jobs[job.id] = job

        if job.status is JobStatus.RUNNING:
            task_id = self._tasks.get(job.id)
            phase = job.progress.current.value if job.progress.current else "init"
            if task_id is None:
                task_id = self.progress.add_task(
                    escape(_shorten(job.display_name)),
                    total=100,
                    phase=_PHASE_LABELS[phase],
                )
                self._tasks[job.id] = task_id
            self.progress.update(
                task_id, completed=job.progress.percent, phase=_PHASE_LABELS[phase]
            )
            return

        self._drop_task(job.id)
        if previous is not None and previous.status is job.status:
            return
        if job.status is JobStatus.COMPLETED:
            self._print(
                f"[green]✓[/green] {escape(job.display_name)} → [dim]{job.output_file}[/dim]"
            )
        elif job.status is JobStatus.FAILED:
            error = escape(job.error or "")
            self._print(f"[red]✗[/red] {escape(job.display_name)}: [red]{error}[/red]")
        elif job.status is JobStatus.CANCELLED:
            self._print(f"[yellow]○[/yellow] {escape(job.display_name)} cancelled")

    def _drop_task(self, job_id: str) -> None:
        task_id = self._tasks.pop(job_id, None)
        if task_id is not None:
            self.progress.remove_task(task_id)

    def _print(self, message: str) -> None:
        if not self.quiet:
            self.console.print(message)

    # ---------------------------------------------------------------- totals

    def get_statistics(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in JobStatus}
        for job in self._jobs.values():
            counts[job.status.value] += 1
        counts["total"] = len(self._jobs)
        return counts

    def _refresh_overall(self) -> None:
        if self._overall_task_id is None:
            return
        finished = sum(1 for job in self._jobs.values() if job.status.is_terminal)
        self.overall_progress.update(
            self._overall_task_id, total=max(len(self._jobs), 1), completed=finished
        )

    # ---------------------------------------------------------------- layout

    def _create_layout(self) -> Layout:
        layout = Layout()
        layout.split_column(
            Layout(name="header", size=3),
            Layout(name="stats", size=7),
            Layout(name="progress", ratio=1),
        )
        return layout

    def _generate_header(self) -> Panel:
        if self._start_time:
            elapsed = int((datetime.now() - self._start_time).total_seconds())
            elapsed_str = f"{elapsed // 3600:02d}:{(elapsed % 3600) // 60:02d}:{elapsed % 60:02d}"
        else:
            elapsed_str = "00:00:00"
        if self._state.paused:
            state_text, state_style = "⏸ Paused", "yellow"
        elif self._state.running:
            state_text, state_style = "▶ Running", "green"
        else:
            state_text, state_style = "■ Idle", "dim"

        header_text = Text()
        header_text.append("📺 DownTube ", style="bold cyan")
        header_text.append("│ ", style="dim")
        header_text.append(f"Session: {elapsed_str}", style="yellow")
        header_text.append(" │ ", style="dim")
        header_text.append(state_text, style=state_style)
        return Panel(header_text, border_style="cyan")

    def _generate_stats_panel(self) -> Panel:
        stats = self.get_statistics()
        stats_table = Table.grid(padding=(0, 2))
        stats_table.add_column(style="bold cyan", justify="right")
        stats_table.add_column(style="white")
        stats_table.add_column(style="bold cyan", justify="right")
        stats_table.add_column(style="white")
        stats_table.add_row(
            "Completed:",
            f"[green]{stats['completed']}[/green]",
            "Failed:",
            f"[red]{stats['failed']}[/red]",
        )
        stats_table.add_row(
            "Queued:",
            f"[cyan]{stats['queued']}[/cyan]",
            "Cancelled:",
            f"[yellow]{stats['cancelled']}[/yellow]",
        )
        combined = Table.grid()
        combined.add_row(stats_table)
        if self._overall_task_id is not None:
            combined.add_row(self.overall_progress)
        return Panel(combined, title="[bold]📊 Queue[/bold]", border_style="blue")

    def _generate_progress_panel(self) -> Panel:
        if not self._tasks:
            return Panel(
                Text("Waiting for a job to start...", style="dim italic", justify="center"),
                title="[bold]📥 Active Download[/bold]",
                border_style="green",
            )
        return Panel(
            self.progress, title="[bold]📥 Active Download[/bold]", border_style="green"
        )

    def _update_display(self) -> None:
        if self.quiet or not self._layout:
            return
        self._layout["header"].update(self._generate_header())
        self._layout["stats"].update(self._generate_stats_panel())
        self._layout["progress"].update(self._generate_progress_panel())

    async def __aenter__(self):
        self._start_time = datetime.now()
        self._overall_task_id = self.overall_progress.add_task("Overall", total=1)
        self._refresh_overall()
        if self.quiet:
            return self
        self._layout = self._create_layout()
        self._update_display()
        self._live = Live(
            self._layout,
            console=self.console,
            refresh_per_second=8,
            vertical_overflow="visible",
        )
        self._live.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._live:
            await asyncio.sleep(0.2)
            self._live.stop()
            self._live = None
