"""
Executes a single download job by driving yt-dlp and ffmpeg subprocesses.

Video jobs fetch the best video-only and audio-only streams separately and
stream-copy them into one `.mkv`. Audio jobs run one extraction that converts
straight to the configured audio format.
"""

import asyncio
import logging
import os
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Deque, Iterator, List, Optional

from downtube_cli.exceptions import (
    DownTubeError,
    FileIntegrityError,
    OutputNotFoundError,
    ProcessExitError,
)
from downtube_cli.media.binaries import Binaries
from downtube_cli.media.integrity import FileIntegrityChecker
from downtube_cli.media.process import kill_tree, pump_lines, spawn, tail
from downtube_cli.media.progress import parse_progress_percent
from downtube_cli.models.config import AppConfig
from downtube_cli.models.job import DownloadJob, JobType, Phase, ProgressUpdate
from downtube_cli.utils.files import find_output_file, remove_job_files
from downtube_cli.utils.path import create_dir

log = logging.getLogger(__name__)

MERGED_EXTENSION = "mkv"
STDERR_TAIL_LINES = 40

COMMON_YTDLP_ARGS = [
    "--no-part",
    "--restrict-filenames",
    "--no-warnings",
    "--no-check-certificate",
    "--newline",
]

ProgressCallback = Callable[[ProgressUpdate], None]


class DownloadStopped(Exception):
    """Unwinds the pipeline once a stop was requested for the running job."""

    def __init__(self, step: str):
        self.step = step
        super().__init__(f"Stopped by user during {step}")


class OutcomeKind(str, Enum):
    OK = "ok"
    STOPPED = "stopped"
    FAILED = "failed"


@dataclass(frozen=True)
class RunOutcome:
    """Tagged result of `ProcessRunner.run_download_job`."""

    kind: OutcomeKind
    output_file: Optional[Path] = None
    error: Optional[Exception] = None
    step: Optional[str] = None

    @classmethod
    def ok(cls, output_file: Path) -> "RunOutcome":
        return cls(OutcomeKind.OK, output_file=output_file)

    @classmethod
    def stopped(cls, step: str) -> "RunOutcome":
        return cls(OutcomeKind.STOPPED, step=step)

    @classmethod
    def failed(cls, error: Exception) -> "RunOutcome":
        return cls(OutcomeKind.FAILED, error=error)


@dataclass
class RunningTask:
    """Handles of the job currently owning the runner."""

    job_id: str
    filename: str
    output_dir: Path
    video_process: Optional[asyncio.subprocess.Process] = None
    audio_process: Optional[asyncio.subprocess.Process] = None
    merge_process: Optional[asyncio.subprocess.Process] = None
    stop_requested: bool = False
    # Set once a stop has finished deleting the job's files.
    cleaned_up: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def processes(self) -> List[asyncio.subprocess.Process]:
        candidates = (self.video_process, self.audio_process, self.merge_process)
        return [p for p in candidates if p is not None]


@contextmanager
def _timed_step(ctx: str, step: str) -> Iterator[None]:
    started = time.monotonic()
    log.debug(f"[dl] {ctx} step={step} start")
    try:
        yield
    except BaseException as e:
        elapsed = int((time.monotonic() - started) * 1000)
        log.debug(f"[dl] {ctx} step={step} fail ms={elapsed} err={e}")
        raise
    elapsed = int((time.monotonic() - started) * 1000)
    log.debug(f"[dl] {ctx} step={step} ok ms={elapsed}")


class ProcessRunner:
    """
    Runs one job at a time and owns the single RunningTask slot.

    A second `run_download_job` while the slot is taken fails immediately. A
    stopped run keeps the slot until its files have been removed.
    """

    def __init__(
        self,
        binaries: Binaries,
        audio_format: str = "mp3",
        stop_grace_seconds: float = 0.2,
        verify_audio: bool = True,
    ):
        self.binaries = binaries
        self.audio_format = audio_format
        self.stop_grace_seconds = stop_grace_seconds
        self.verify_audio = verify_audio
        self._task: Optional[RunningTask] = None

    @classmethod
    def from_config(
        cls, config: AppConfig, binaries: Optional[Binaries] = None
    ) -> "ProcessRunner":
        return cls(
            binaries or Binaries.from_config(config),
            audio_format=config.audio_format,
            stop_grace_seconds=config.stop_grace_seconds,
            verify_audio=config.verify_audio,
        )

    @property
    def current_task(self) -> Optional[RunningTask]:
        return self._task

    async def run_download_job(
        self, job: DownloadJob, on_progress: ProgressCallback
    ) -> RunOutcome:
        """
        Executes `job` to completion.

        Args:
            job: The job to run. Only its url, type, filename and output_dir are read.
            on_progress: Receives phase changes and integer percentages.

        Returns:
            ``ok`` with the final file, ``stopped`` if a stop was requested,
            or ``failed`` with the cause.
        """
        if self._task is not None:
            return RunOutcome.failed(
                DownTubeError(f"Runner is busy with job {self._task.job_id[:8]}")
            )

        task = RunningTask(job.id, job.filename, Path(job.output_dir))
        self._task = task
        ctx = f"id={job.short_id} type={job.type.value} name={job.filename}"
        started = time.monotonic()
        log.debug(f"[dl] {ctx} start url={job.url}")

        try:
            on_progress(ProgressUpdate(Phase.INIT))
            create_dir(task.output_dir)
            if job.type is JobType.AUDIO:
                output = await self._run_audio(task, job.url, on_progress, ctx)
            else:
                output = await self._run_video(task, job.url, on_progress, ctx)
            on_progress(ProgressUpdate(Phase.COMPLETE, 100))
            elapsed = int((time.monotonic() - started) * 1000)
            log.debug(f"[dl] {ctx} done file={output.name} ms={elapsed}")
            return RunOutcome.ok(output)
        except DownloadStopped as e:
            log.debug(f"[dl] {ctx} stopped during {e.step}")
            return RunOutcome.stopped(e.step)
        except (DownTubeError, OSError) as e:
            if task.stop_requested:
                # A killed process usually surfaces as a non-zero exit first.
                log.debug(f"[dl] {ctx} stopped ({e})")
                return RunOutcome.stopped("kill")
            log.debug(f"[dl] {ctx} failed: {e}")
            return RunOutcome.failed(e)
        except asyncio.CancelledError:
            await self._kill_processes(task)
            raise
        finally:
            if task.stop_requested:
                # The slot stays taken until the stop has removed this run's files.
                await task.cleaned_up.wait()
            if self._task is task:
                self._task = None

    async def stop_current_job_and_cleanup(self, job: DownloadJob) -> None:
        """
        Kills the subprocess tree of `job` and deletes its files.

        Every file the job wrote (`<base>.*`, `<base>_video.*`, `<base>_audio.*`)
        is removed, finished output included. A no-op when `job` does not own
        the runner.
        """
        task = self._task
        if task is None or task.job_id != job.id:
            log.debug(f"Stop requested for idle job {job.short_id}, nothing to do")
            return

        task.stop_requested = True
        try:
            await self._kill_processes(task)
            await asyncio.sleep(self.stop_grace_seconds)

            removed = remove_job_files(task.output_dir, task.filename)
            log.debug(
                f"Stopped job {job.short_id}, removed {len(removed)} file(s) "
                f"with prefix '{task.filename}'"
            )
        finally:
            task.cleaned_up.set()

    async def _kill_processes(self, task: RunningTask) -> None:
        for process in task.processes:
            await kill_tree(process)

    def _check_stop(self, task: RunningTask, step: str) -> None:
        if task.stop_requested:
            raise DownloadStopped(step)

    async def _run_process(
        self,
        task: RunningTask,
        slot: str,
        program: str,
        args: List[str],
        label: str,
        on_output: Optional[Callable[[str], None]] = None,
    ) -> None:
        """Spawns a process into `slot` of the task and waits for a clean exit."""
        process = await spawn(program, args, label=label)
        setattr(task, slot, process)
        if task.stop_requested:
            # Stop arrived while spawning; the kill pass could not see this child.
            await kill_tree(process)
            await process.wait()
            raise DownloadStopped(label)

        stderr_lines: Deque[str] = deque(maxlen=STDERR_TAIL_LINES)

        def on_stdout(line: str) -> None:
            if on_output:
                on_output(line)

        def on_stderr(line: str) -> None:
            stderr_lines.append(line)
            if on_output:
                on_output(line)

        await asyncio.gather(
            pump_lines(process.stdout, on_stdout),
            pump_lines(process.stderr, on_stderr),
        )
        returncode = await process.wait()

        if task.stop_requested:
            raise DownloadStopped(label)
        if returncode != 0:
            raise ProcessExitError(label, returncode, tail("\n".join(stderr_lines)))

    async def _run_extractor(
        self,
        task: RunningTask,
        slot: str,
        phase: Phase,
        args: List[str],
        on_progress: ProgressCallback,
        ctx: str,
    ) -> None:
        self._check_stop(task, phase.value)
        on_progress(ProgressUpdate(phase, 0))

        def on_output(line: str) -> None:
            percent = parse_progress_percent(line)
            if percent is not None and not task.stop_requested:
                on_progress(ProgressUpdate(phase, percent))

        with _timed_step(ctx, f"yt-dlp:{phase.value}"):
            await self._run_process(
                task, slot, self.binaries.ytdlp, args, f"yt-dlp ({phase.value})", on_output
            )

    def _output_template(self, task: RunningTask, suffix: str = "") -> str:
        return str(task.output_dir / f"{task.filename}{suffix}.%(ext)s")

    def _ffmpeg_location_args(self) -> List[str]:
        # A bare command name is resolved by yt-dlp itself.
        if os.path.dirname(self.binaries.ffmpeg):
            return ["--ffmpeg-location", self.binaries.ffmpeg]
        return []

    async def _run_video(
        self,
        task: RunningTask,
        url: str,
        on_progress: ProgressCallback,
        ctx: str,
    ) -> Path:
        video_args = [
            "--no-playlist",
            "--format",
            "bv*",
            *COMMON_YTDLP_ARGS,
            "--output",
            self._output_template(task, "_video"),
            url,
        ]
        await self._run_extractor(
            task, "video_process", Phase.VIDEO, video_args, on_progress, ctx
        )

        audio_args = [
            "--no-playlist",
            "--format",
            "ba",
            *COMMON_YTDLP_ARGS,
            "--output",
            self._output_template(task, "_audio"),
            url,
        ]
        await self._run_extractor(
            task, "audio_process", Phase.AUDIO, audio_args, on_progress, ctx
        )

        video_file = find_output_file(task.output_dir, f"{task.filename}_video.")
        audio_file = find_output_file(task.output_dir, f"{task.filename}_audio.")
        if video_file is None or audio_file is None:
            missing = "video" if video_file is None else "audio"
            raise OutputNotFoundError(
                f"yt-dlp finished but the {missing} stream file for "
                f"'{task.filename}' was not found in {task.output_dir}"
            )

        self._check_stop(task, "merge")
        output = task.output_dir / f"{task.filename}.{MERGED_EXTENSION}"
        merge_args = [
            "-y",
            "-hide_banner",
            "-loglevel",
            "error",
            "-i",
            str(video_file),
            "-i",
            str(audio_file),
            "-map",
            "0:v:0",
            "-map",
            "1:a:0",
            "-c",
            "copy",
            str(output),
        ]
        with _timed_step(ctx, "ffmpeg:merge"):
            await self._run_process(
                task, "merge_process", self.binaries.ffmpeg, merge_args, "ffmpeg merge"
            )

        if not output.is_file():
            raise OutputNotFoundError(f"ffmpeg finished but '{output}' does not exist")

        for intermediate in (video_file, audio_file):
            try:
                intermediate.unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                log.warning(f"Could not remove intermediate '{intermediate}': {e}")
        return output

    async def _run_audio(
        self,
        task: RunningTask,
        url: str,
        on_progress: ProgressCallback,
        ctx: str,
    ) -> Path:
        args = [
            "--no-playlist",
            "-x",
            "--audio-format",
            self.audio_format,
            "--audio-quality",
            "0",
            *self._ffmpeg_location_args(),
            *COMMON_YTDLP_ARGS,
            "--output",
            self._output_template(task),
            url,
        ]
        await self._run_extractor(
            task, "audio_process", Phase.AUDIO, args, on_progress, ctx
        )

        expected = task.output_dir / f"{task.filename}.{self.audio_format}"
        output = (
            expected
            if expected.is_file()
            else find_output_file(task.output_dir, f"{task.filename}.")
        )
        if output is None:
            raise OutputNotFoundError(
                f"yt-dlp finished but no audio file for '{task.filename}' "
                f"was found in {task.output_dir}"
            )

        if self.verify_audio and not FileIntegrityChecker.check_audio(str(output)):
            raise FileIntegrityError(f"Audio file '{output.name}' failed integrity check")
        return output
