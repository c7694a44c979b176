import asyncio
import sys
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

# Ensure tests can import the package regardless of how pytest is invoked.
ROOT = Path(__file__).resolve().parents[1]
ROOT_STR = str(ROOT)
if ROOT_STR not in sys.path:
    sys.path.insert(0, ROOT_STR)

from downtube_cli.core.download_queue import DownloadQueue  # noqa: E402
from downtube_cli.core.events import EventBus  # noqa: E402
from downtube_cli.exceptions import MetadataProbeError  # noqa: E402
from downtube_cli.media.runner import RunOutcome  # noqa: E402
from downtube_cli.models.job import (  # noqa: E402
    DownloadJob,
    JobStatus,
    MediaInfo,
    Phase,
    ProgressUpdate,
)


class FakeRunner:
    """Scriptable stand-in for ProcessRunner.

    A URL listed in `gates` keeps its job running until the gate event is set
    or the job is stopped.
    """

    def __init__(self) -> None:
        self.calls: List[str] = []
        self.stopped: List[str] = []
        self.gates: Dict[str, asyncio.Event] = {}
        self.failures: Dict[str, Exception] = {}
        self.raises: Dict[str, Exception] = {}
        self.fail_on_stop = False
        self.running = 0
        self.max_running = 0
        self._stop_events: Dict[str, asyncio.Event] = {}

    def hold(self, url: str) -> asyncio.Event:
        gate = asyncio.Event()
        self.gates[url] = gate
        return gate

    async def run_download_job(self, job: DownloadJob, on_progress) -> RunOutcome:
        self.calls.append(job.url)
        self.running += 1
        self.max_running = max(self.max_running, self.running)
        stop = asyncio.Event()
        self._stop_events[job.id] = stop
        try:
            if job.url in self.raises:
                raise self.raises[job.url]
            on_progress(ProgressUpdate(Phase.INIT))
            on_progress(ProgressUpdate(Phase.VIDEO, 0))

            gate = self.gates.get(job.url)
            if gate is not None and not gate.is_set():
                waiters = {
                    asyncio.ensure_future(gate.wait()),
                    asyncio.ensure_future(stop.wait()),
                }
                _, pending = await asyncio.wait(
                    waiters, return_when=asyncio.FIRST_COMPLETED
                )
                for waiter in pending:
                    waiter.cancel()
            else:
                await asyncio.sleep(0)

            if stop.is_set():
                if self.fail_on_stop and job.url in self.failures:
                    return RunOutcome.failed(self.failures[job.url])
                return RunOutcome.stopped("video")

            on_progress(ProgressUpdate(Phase.VIDEO, 50))
            if job.url in self.failures:
                return RunOutcome.failed(self.failures[job.url])
            on_progress(ProgressUpdate(Phase.COMPLETE, 100))
            return RunOutcome.ok(Path(job.output_dir) / f"{job.filename}.mkv")
        finally:
            self.running -= 1
            self._stop_events.pop(job.id, None)

    async def stop_current_job_and_cleanup(self, job: DownloadJob) -> None:
        self.stopped.append(job.url)
        stop = self._stop_events.get(job.id)
        if stop is not None:
            stop.set()
        await asyncio.sleep(0)


class FakeProbe:
    def __init__(self, infos: Optional[Dict[str, MediaInfo]] = None) -> None:
        self.infos = infos or {}
        self.calls: List[str] = []

    async def download_info(self, url: str) -> MediaInfo:
        self.calls.append(url)
        if url not in self.infos:
            raise MetadataProbeError("yt-dlp --dump-json failed: code=1")
        return self.infos[url]


class FakeExpander:
    """Mimics `--playlist-end`: never returns more entries than the limit."""

    def __init__(self, infos: Optional[List[MediaInfo]] = None, error=None) -> None:
        self.infos = infos or []
        self.error = error
        self.limits: List[int] = []

    async def parse_playlist_infos(self, playlist_url, playlist_limit=None, timeout_ms=None):
        self.limits.append(playlist_limit)
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return list(self.infos[:playlist_limit])


class EventRecorder:
    def __init__(self) -> None:
        self.events: list = []

    def __call__(self, event) -> None:
        self.events.append(event)

    def types(self) -> List[str]:
        return [event.type for event in self.events]


def media_info(index: int) -> MediaInfo:
    video_id = f"vid{index:08d}"
    return MediaInfo(
        id=video_id,
        url=f"https://www.youtube.com/watch?v={video_id}",
        title=f"Entry {index}",
    )


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


def job_by_url(queue: DownloadQueue, url: str) -> DownloadJob:
    return next(job for job in queue.list_jobs() if job.url == url)


def running_jobs(queue: DownloadQueue) -> List[DownloadJob]:
    return [job for job in queue.list_jobs() if job.status is JobStatus.RUNNING]


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def make_queue(runner, recorder, tmp_path):
    def _make(**kwargs) -> DownloadQueue:
        bus = EventBus()
        bus.subscribe(recorder)
        kwargs.setdefault("output_dir", tmp_path)
        return DownloadQueue(runner, bus=bus, **kwargs)

    return _make
