"""
The job registry and its single-worker scheduling loop.

Jobs run strictly one at a time in insertion order. Control operations mutate
state immediately and publish every change on the EventBus; only the worker
task ever calls into the runner.
"""

import asyncio
import logging
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from downtube_cli.core.events import (
    EventBus,
    JobAdded,
    JobRemoved,
    JobUpdated,
    QueueStateChanged,
)
from downtube_cli.exceptions import MetadataProbeError
from downtube_cli.media.playlist import PlaylistExpander, normalize_limit
from downtube_cli.media.probe import MetadataProbe
from downtube_cli.media.runner import OutcomeKind, ProcessRunner, RunOutcome
from downtube_cli.models.config import DEFAULT_PLAYLIST_LIMIT, PLAYLIST_MAX_ENTRIES
from downtube_cli.models.job import (
    DownloadJob,
    JobProgress,
    JobStatus,
    JobType,
    MediaInfo,
    OperationResult,
    PlaylistEnqueueResult,
    ProgressUpdate,
    QueueState,
)
from downtube_cli.utils.files import find_job_files
from downtube_cli.utils.path import (
    default_base_name,
    playlist_entry_name,
    sanitize_base_name,
    unique_base_name,
)

log = logging.getLogger(__name__)


class DownloadQueue:
    """Owns the ordered job collection and drives the runner."""

    def __init__(
        self,
        runner: ProcessRunner,
        output_dir: Path,
        bus: Optional[EventBus] = None,
        probe: Optional[MetadataProbe] = None,
        expander: Optional[PlaylistExpander] = None,
        playlist_limit: int = DEFAULT_PLAYLIST_LIMIT,
        autostart: bool = False,
    ):
        self.runner = runner
        self.output_dir = Path(output_dir)
        self.bus = bus or EventBus()
        self.probe = probe
        self.expander = expander
        self.playlist_limit = playlist_limit

        # Insertion-ordered; dicts keep FIFO order for scheduling.
        self._jobs: Dict[str, DownloadJob] = {}
        self._paused = not autostart
        self._current: Optional[DownloadJob] = None
        self._worker: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------ state

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def state(self) -> QueueState:
        return QueueState(
            running=self._current is not None,
            paused=self._paused,
            current_job_id=self._current.id if self._current else None,
        )

    def list_jobs(self) -> List[DownloadJob]:
        """Snapshot copies of all jobs, in insertion order."""
        return [job.snapshot() for job in self._jobs.values()]

    def get_job(self, job_id: str) -> Optional[DownloadJob]:
        job = self._jobs.get(job_id)
        return job.snapshot() if job else None

    def has_url(self, url: str) -> bool:
        """True if a queued or running job already targets `url`."""
        return any(
            job.url == url and job.status.is_active for job in self._jobs.values()
        )

    # --------------------------------------------------------------- creation

    def create_job(
        self,
        url: str,
        job_type: JobType,
        *,
        filename: Optional[str] = None,
        output_dir: Optional[Path] = None,
        info: Optional[MediaInfo] = None,
    ) -> DownloadJob:
        """
        Builds a job whose base filename clashes with no other job in its directory
        and with no file already there.

        Args:
            url: Media URL.
            job_type: Video or audio.
            filename: Preferred base name; sanitized. Defaults to a timestamped name.
            output_dir: Target directory. Defaults to the queue's directory.
            info: Optional metadata from a probe or playlist expansion.
        """
        target_dir = Path(output_dir) if output_dir else self.output_dir
        base = sanitize_base_name(filename) if filename else ""
        if not base:
            base = default_base_name(job_type)
        taken = [
            job.filename for job in self._jobs.values() if job.output_dir == target_dir
        ]
        unique = unique_base_name(
            base, taken, in_use=lambda name: bool(find_job_files(target_dir, name))
        )
        return DownloadJob.create(url, job_type, unique, target_dir, info=info)

    def enqueue(self, job: DownloadJob) -> DownloadJob:
        """
        Appends `job` as queued and triggers scheduling.

        URL uniqueness is not checked here; callers consult `has_url` first.
        Safe to call before the event loop runs; scheduling then waits for
        `wait_until_idle`.
        """
        job.status = JobStatus.QUEUED
        self._jobs[job.id] = job
        log.debug(f"Enqueued job {job.short_id} ({job.type.value}) {job.url}")
        self.bus.publish(JobAdded(job.snapshot()))
        self._kick()
        return job

    async def add_url(
        self,
        url: str,
        job_type: JobType,
        *,
        probe: bool = True,
        filename_prefix: Optional[str] = None,
        output_dir: Optional[Path] = None,
    ) -> OperationResult:
        """Single-item enqueue with duplicate check and best-effort metadata."""
        url = url.strip()
        if not url:
            return OperationResult(False, "URL is empty")
        if self.has_url(url):
            return OperationResult(False, "This URL is already in the queue")

        info = None
        if probe and self.probe is not None:
            try:
                info = await self.probe.download_info(url)
            except MetadataProbeError as e:
                log.warning(f"[yellow]Could not fetch metadata for {url}:[/yellow] {e}")

        # The probe awaited; another caller may have queued the same URL meanwhile.
        if self.has_url(url):
            return OperationResult(False, "This URL is already in the queue")

        job = self.create_job(
            url, job_type, filename=filename_prefix, output_dir=output_dir, info=info
        )
        self.enqueue(job)
        return OperationResult(True, job.id)

    async def enqueue_playlist(
        self,
        url: str,
        job_type: JobType,
        playlist_limit: Any = None,
        filename_prefix: Optional[str] = None,
        output_dir: Optional[Path] = None,
    ) -> PlaylistEnqueueResult:
        """
        Expands a playlist and enqueues one job per new entry.

        Nothing is enqueued if expansion fails; the error propagates.

        Returns:
            How many jobs were added, whether the entry list hit the limit,
            and how many entries were skipped as already queued.
        """
        if self.expander is None:
            raise RuntimeError("No playlist expander configured for this queue")

        limit = normalize_limit(playlist_limit, self.playlist_limit, PLAYLIST_MAX_ENTRIES)
        infos = await self.expander.parse_playlist_infos(url, limit)
        limited = len(infos) >= limit
        infos = infos[:limit]

        prefix = sanitize_base_name(filename_prefix) if filename_prefix else ""
        if not prefix:
            prefix = default_base_name(job_type)

        added = skipped = 0
        for index, info in enumerate(infos, start=1):
            if self.has_url(info.url):
                skipped += 1
                continue
            job = self.create_job(
                info.url,
                job_type,
                filename=playlist_entry_name(prefix, index),
                output_dir=output_dir,
                info=info,
            )
            self.enqueue(job)
            added += 1

        log.info(
            f"Playlist: added [bold]{added}[/bold] job(s)"
            + (f", skipped {skipped} already queued" if skipped else "")
            + (f" (limited to {limit})" if limited else "")
        )
        return PlaylistEnqueueResult(added=added, limited=limited, skipped=skipped)

    # ---------------------------------------------------------------- control

    def set_type(self, job_id: str, job_type: JobType) -> OperationResult:
        job = self._jobs.get(job_id)
        if job is None:
            return OperationResult(False, "Job not found")
        if job.status is not JobStatus.QUEUED:
            return OperationResult(
                False, f"Type can only be changed while queued (job is {job.status.value})"
            )
        job.type = JobType(job_type)
        self._publish_job(job)
        return OperationResult(True)

    def start(self) -> OperationResult:
        """Unpauses the queue. Idempotent while already running."""
        if not self._paused and self._worker_active:
            return OperationResult(True, "Queue is already running")
        self._paused = False
        if not self._kick():
            self._publish_state()
        return OperationResult(True)

    async def pause(self) -> OperationResult:
        """
        Pauses the queue, force-stopping the running job if any.

        The running job goes back to queued with its progress reset and is
        restarted from scratch on the next `start`.
        """
        self._paused = True
        job = self._current
        if job is not None and job.status is JobStatus.RUNNING:
            job.status = JobStatus.QUEUED
            job.started_at = None
            job.progress = JobProgress()
            self._publish_job(job)
            log.info(f"Pausing: stopping [cyan]{job.display_name}[/cyan]")
            await self.runner.stop_current_job_and_cleanup(job)
        self._publish_state()
        return OperationResult(True)

    async def cancel_by_url(self, url: str) -> OperationResult:
        job = next(
            (j for j in self._jobs.values() if j.url == url and j.status.is_active),
            None,
        )
        if job is None:
            return OperationResult(False, "No active download found for this URL")

        was_running = job.status is JobStatus.RUNNING
        job.status = JobStatus.CANCELLED
        job.finished_at = time.time()
        self._publish_job(job)
        if was_running:
            await self.runner.stop_current_job_and_cleanup(job)
        log.info(f"Cancelled [cyan]{job.display_name}[/cyan]")
        return OperationResult(True)

    def remove(self, job_id: str) -> OperationResult:
        job = self._jobs.get(job_id)
        if job is None:
            return OperationResult(False, "Job not found")
        if job.status is JobStatus.RUNNING:
            return OperationResult(False, "Cannot remove a running job")
        del self._jobs[job_id]
        self.bus.publish(JobRemoved(job_id))
        return OperationResult(True)

    async def wait_until_idle(self) -> None:
        """Returns once the worker has stopped (idle or paused)."""
        if not self._paused and self._next_queued() is not None:
            self._kick()
        while self._worker is not None and not self._worker.done():
            await asyncio.wait({self._worker})

    # ------------------------------------------------------------- scheduling

    @property
    def _worker_active(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def _kick(self) -> bool:
        """
        Starts the worker unless one is already active. Returns True if started.

        Without a running event loop nothing starts; `wait_until_idle` picks
        the pending work up once a loop exists.
        """
        if self._worker_active:
            return False
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            log.debug("No running event loop, worker start deferred")
            return False
        self._worker = loop.create_task(self._process())
        return True

    def _next_queued(self) -> Optional[DownloadJob]:
        return next(
            (j for j in self._jobs.values() if j.status is JobStatus.QUEUED), None
        )

    async def _process(self) -> None:
        while True:
            if self._paused:
                self._publish_state()
                return
            job = self._next_queued()
            if job is None:
                self._publish_state()
                return

            self._current = job
            job.status = JobStatus.RUNNING
            job.started_at = time.time()
            job.finished_at = None
            job.error = None
            job.progress = JobProgress()
            self._publish_job(job)
            self._publish_state()

            try:
                outcome = await self.runner.run_download_job(
                    job.snapshot(), lambda update, j=job: self._on_progress(j, update)
                )
            except Exception as e:
                log.debug("Runner raised instead of returning an outcome", exc_info=True)
                outcome = RunOutcome.failed(e)

            self._settle(job, outcome)
            self._current = None
            self._publish_state()

    def _on_progress(self, job: DownloadJob, update: ProgressUpdate) -> None:
        if job.status is not JobStatus.RUNNING or self._current is not job:
            return
        if update.percent is not None:
            job.progress.percent = max(0, min(100, update.percent))
        job.progress.current = update.current
        self._publish_job(job)

    def _settle(self, job: DownloadJob, outcome: RunOutcome) -> None:
        if outcome.kind is OutcomeKind.STOPPED:
            # Whoever requested the stop (pause or cancel) already set the status.
            log.debug(f"Job {job.short_id} stopped at {outcome.step}")
            return

        if job.status is not JobStatus.RUNNING:
            log.debug(
                f"Job {job.short_id} settled as {outcome.kind.value} "
                f"after becoming {job.status.value}, keeping {job.status.value}"
            )
            return

        job.finished_at = time.time()
        if outcome.kind is OutcomeKind.OK:
            job.status = JobStatus.COMPLETED
            job.output_file = outcome.output_file
            job.progress.percent = 100
            log.info(f"[green]✓ Completed[/green] {job.display_name}")
        else:
            job.status = JobStatus.FAILED
            job.error = str(outcome.error) if outcome.error else "Unknown error"
            log.error(f"[red]✗ Failed[/red] {job.display_name}: {job.error}")
        self._publish_job(job)

    # ----------------------------------------------------------------- events

    def _publish_job(self, job: DownloadJob) -> None:
        self.bus.publish(JobUpdated(job.snapshot()))

    def _publish_state(self) -> None:
        self.bus.publish(QueueStateChanged(self.state))
