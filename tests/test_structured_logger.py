import json
from dataclasses import replace

from downtube_cli.core.events import EventBus, JobAdded, JobRemoved, JobUpdated
from downtube_cli.models.job import DownloadJob, JobStatus, JobType, Phase
from downtube_cli.utils.structured_logger import create_event_logger


def test_event_logger_records_lifecycle(tmp_path) -> None:
    bus = EventBus()
    logger, unsubscribe = create_event_logger(bus, tmp_path / "logs")
    job = DownloadJob.create("https://x.test/v", JobType.VIDEO, "clip", tmp_path)

    bus.publish(JobAdded(job.snapshot()))
    job.status = JobStatus.RUNNING
    job.started_at = 100.0
    bus.publish(JobUpdated(job.snapshot()))
    job.progress.current = Phase.VIDEO
    job.progress.percent = 10
    bus.publish(JobUpdated(job.snapshot()))
    job.progress.percent = 20
    bus.publish(JobUpdated(job.snapshot()))
    done = replace(
        job, status=JobStatus.COMPLETED, finished_at=112.5, output_file=tmp_path / "clip.mkv"
    )
    bus.publish(JobUpdated(done))
    bus.publish(JobRemoved(job.id))
    unsubscribe()
    bus.publish(JobRemoved("ignored"))
    logger.close()

    entries = [json.loads(line) for line in logger.path.read_text().splitlines()]
    assert [entry["event"] for entry in entries] == [
        "job_added",
        "job_started",
        "job_phase",
        "job_completed",
        "job_removed",
    ]
    assert entries[2]["phase"] == "video"
    assert entries[3]["duration_s"] == 12.5
    assert entries[3]["output_file"].endswith("clip.mkv")
    assert all(entry["session_id"] == entries[0]["session_id"] for entry in entries)
