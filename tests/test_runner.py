import asyncio
import sys

import pytest

from conftest import wait_for
from downtube_cli.core.download_queue import DownloadQueue
from downtube_cli.exceptions import ProcessExitError, SpawnError
from downtube_cli.media.binaries import Binaries
from downtube_cli.media.runner import OutcomeKind, ProcessRunner
from downtube_cli.models.job import DownloadJob, JobStatus, JobType, Phase

pytestmark = pytest.mark.skipif(
    sys.platform == "win32", reason="uses POSIX shell scripts as fake binaries"
)

FAKE_YTDLP = r"""#!/bin/sh
out=""
fmt=""
while [ $# -gt 0 ]; do
  case "$1" in
    --output) out="$2"; shift ;;
    --audio-format) fmt="$2"; shift ;;
  esac
  shift
done
if [ -n "$FAKE_YTDLP_FAIL" ]; then
  echo "ERROR: [youtube] abc: Video unavailable" >&2
  exit 1
fi
base=$(printf '%s' "$out" | sed 's/\.%(ext)s$//')
case "$base" in
  *_video) ext="webm" ;;
  *_audio) ext="m4a" ;;
  *) ext="${fmt:-m4a}" ;;
esac
echo "[download] Destination: $base.$ext"
echo "[download]  12.3% of 1.00MiB at 1.00MiB/s ETA 00:01"
printf 'partial' > "$base.$ext"
if [ -n "$FAKE_YTDLP_SLEEP" ]; then
  sleep "$FAKE_YTDLP_SLEEP"
fi
echo "[download] 100.0% of 1.00MiB in 00:00:01"
printf 'data' > "$base.$ext"
"""

FAKE_FFMPEG = r"""#!/bin/sh
for last; do :; done
printf 'merged' > "$last"
"""

URL = "https://www.youtube.com/watch?v=aaaaaaaaaaa"


@pytest.fixture
def binaries(tmp_path) -> Binaries:
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    ytdlp = bin_dir / "yt-dlp"
    ffmpeg = bin_dir / "ffmpeg"
    ytdlp.write_text(FAKE_YTDLP)
    ffmpeg.write_text(FAKE_FFMPEG)
    ytdlp.chmod(0o755)
    ffmpeg.chmod(0o755)
    return Binaries(ytdlp=str(ytdlp), ffmpeg=str(ffmpeg))


@pytest.fixture
def out_dir(tmp_path):
    return tmp_path / "out"


def _job(out_dir, job_type=JobType.VIDEO, filename="clip") -> DownloadJob:
    return DownloadJob.create(URL, job_type, filename, out_dir)


def test_video_job_downloads_both_streams_and_merges(binaries, out_dir) -> None:
    runner = ProcessRunner(binaries)
    updates = []

    outcome = asyncio.run(runner.run_download_job(_job(out_dir), updates.append))

    assert outcome.kind is OutcomeKind.OK
    assert outcome.output_file == out_dir / "clip.mkv"
    assert outcome.output_file.read_text() == "merged"
    assert sorted(p.name for p in out_dir.iterdir()) == ["clip.mkv"]
    assert [(u.current, u.percent) for u in updates] == [
        (Phase.INIT, None),
        (Phase.VIDEO, 0),
        (Phase.VIDEO, 12),
        (Phase.VIDEO, 100),
        (Phase.AUDIO, 0),
        (Phase.AUDIO, 12),
        (Phase.AUDIO, 100),
        (Phase.COMPLETE, 100),
    ]
    assert runner.current_task is None


def test_audio_job_produces_configured_format(binaries, out_dir) -> None:
    runner = ProcessRunner(binaries, audio_format="opus", verify_audio=False)
    updates = []

    outcome = asyncio.run(
        runner.run_download_job(_job(out_dir, JobType.AUDIO, "song"), updates.append)
    )

    assert outcome.kind is OutcomeKind.OK
    assert outcome.output_file == out_dir / "song.opus"
    assert {u.current for u in updates} == {Phase.INIT, Phase.AUDIO, Phase.COMPLETE}


def test_audio_job_fails_integrity_check(binaries, out_dir) -> None:
    runner = ProcessRunner(binaries, audio_format="mp3", verify_audio=True)

    outcome = asyncio.run(
        runner.run_download_job(_job(out_dir, JobType.AUDIO, "song"), lambda _u: None)
    )

    assert outcome.kind is OutcomeKind.FAILED
    assert "integrity" in str(outcome.error)


def test_non_zero_exit_fails_with_stderr_tail(binaries, out_dir, monkeypatch) -> None:
    monkeypatch.setenv("FAKE_YTDLP_FAIL", "1")
    runner = ProcessRunner(binaries)

    outcome = asyncio.run(runner.run_download_job(_job(out_dir), lambda _u: None))

    assert outcome.kind is OutcomeKind.FAILED
    assert isinstance(outcome.error, ProcessExitError)
    assert outcome.error.returncode == 1
    assert "Video unavailable" in outcome.error.stderr_tail
    assert runner.current_task is None


def test_missing_binary_is_a_spawn_failure(tmp_path, out_dir) -> None:
    runner = ProcessRunner(
        Binaries(ytdlp=str(tmp_path / "missing-yt-dlp"), ffmpeg="ffmpeg")
    )

    outcome = asyncio.run(runner.run_download_job(_job(out_dir), lambda _u: None))

    assert outcome.kind is OutcomeKind.FAILED
    assert isinstance(outcome.error, SpawnError)
    assert "yt-dlp (video) spawn failed" in str(outcome.error)


def test_stop_kills_job_and_removes_only_its_files(binaries, out_dir, monkeypatch) -> None:
    monkeypatch.setenv("FAKE_YTDLP_SLEEP", "30")
    out_dir.mkdir()
    sibling = out_dir / "clip-2.mkv"
    sibling.write_text("someone else's download")
    runner = ProcessRunner(binaries, stop_grace_seconds=0.05)
    job = _job(out_dir)

    async def scenario():
        run = asyncio.create_task(runner.run_download_job(job, lambda _u: None))
        await wait_for(lambda: (out_dir / "clip_video.webm").exists(), timeout=5)
        loop = asyncio.get_running_loop()
        started = loop.time()
        await runner.stop_current_job_and_cleanup(job)
        outcome = await asyncio.wait_for(run, timeout=5)
        return outcome, loop.time() - started

    outcome, elapsed = asyncio.run(scenario())

    assert outcome.kind is OutcomeKind.STOPPED
    assert elapsed < 5
    assert sorted(p.name for p in out_dir.iterdir()) == ["clip-2.mkv"]
    assert runner.current_task is None


def test_stop_for_job_not_owning_runner_is_noop(binaries, out_dir) -> None:
    out_dir.mkdir()
    (out_dir / "clip.mkv").write_text("finished earlier")
    runner = ProcessRunner(binaries)

    asyncio.run(runner.stop_current_job_and_cleanup(_job(out_dir)))

    assert (out_dir / "clip.mkv").exists()


def test_second_job_is_refused_while_slot_is_taken(binaries, out_dir, monkeypatch) -> None:
    monkeypatch.setenv("FAKE_YTDLP_SLEEP", "30")
    runner = ProcessRunner(binaries, stop_grace_seconds=0)
    first = _job(out_dir)
    second = _job(out_dir, filename="other")

    async def scenario():
        run = asyncio.create_task(runner.run_download_job(first, lambda _u: None))
        await wait_for(lambda: runner.current_task is not None, timeout=5)
        refused = await runner.run_download_job(second, lambda _u: None)
        await runner.stop_current_job_and_cleanup(first)
        await run
        return refused

    refused = asyncio.run(scenario())

    assert refused.kind is OutcomeKind.FAILED
    assert "busy" in str(refused.error)


def test_restart_during_pause_waits_for_stop_cleanup(binaries, out_dir, monkeypatch) -> None:
    monkeypatch.setenv("FAKE_YTDLP_SLEEP", "30")
    runner = ProcessRunner(binaries, stop_grace_seconds=0.3)
    queue = DownloadQueue(runner, out_dir)
    video_part = out_dir / "clip_video.webm"

    async def scenario():
        job = queue.enqueue(queue.create_job(URL, JobType.VIDEO, filename="clip"))
        queue.start()
        await wait_for(video_part.exists, timeout=5)
        stopped = runner.current_task
        pausing = asyncio.create_task(queue.pause())
        await wait_for(lambda: stopped.stop_requested, timeout=5)
        queue.start()
        await asyncio.sleep(0.1)
        held_during_grace = runner.current_task is stopped
        await pausing
        await wait_for(
            lambda: runner.current_task not in (None, stopped) and video_part.exists(),
            timeout=5,
        )
        await queue.pause()
        await queue.wait_until_idle()
        return job, held_during_grace

    job, held_during_grace = asyncio.run(scenario())

    assert held_during_grace is True
    assert queue.get_job(job.id).status is JobStatus.QUEUED
    assert list(out_dir.iterdir()) == []


def test_reused_name_never_touches_earlier_output(binaries, out_dir, monkeypatch) -> None:
    runner = ProcessRunner(binaries, stop_grace_seconds=0.05)
    queue = DownloadQueue(runner, out_dir, autostart=True)
    other_url = "https://www.youtube.com/watch?v=bbbbbbbbbbb"

    async def scenario():
        first = queue.enqueue(queue.create_job(URL, JobType.VIDEO, filename="song"))
        await queue.wait_until_idle()
        queue.remove(first.id)

        monkeypatch.setenv("FAKE_YTDLP_SLEEP", "30")
        second = queue.enqueue(
            queue.create_job(other_url, JobType.VIDEO, filename="song")
        )
        await wait_for(
            lambda: (out_dir / f"{second.filename}_video.webm").exists(), timeout=5
        )
        await queue.cancel_by_url(other_url)
        await queue.wait_until_idle()
        return first, second

    first, second = asyncio.run(scenario())

    assert first.filename == "song"
    assert second.filename == "song-2"
    assert second.status is JobStatus.CANCELLED
    assert sorted(p.name for p in out_dir.iterdir()) == ["song.mkv"]
    assert (out_dir / "song.mkv").read_text() == "merged"
