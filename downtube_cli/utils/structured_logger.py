"""
Structured logging system for better log analysis and debugging.
Provides JSON-formatted logs with context and metadata.
"""

import json
import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from downtube_cli.core.events import (
    EventBus,
    JobAdded,
    JobRemoved,
    JobUpdated,
    QueueEvent,
    QueueStateChanged,
)
from downtube_cli import __version__
from downtube_cli.models.job import DownloadJob, JobStatus
from downtube_cli.utils.path import youtube_id_from_url

log = logging.getLogger(__name__)


class StructuredLogger:
    """
    Logger that writes one JSON object per line, alongside a console summary.

    Usage:
        logger = StructuredLogger("downtube_cli", log_dir=Path("logs"))
        logger.info("job_completed", job_id="1a2b3c4d", output_file="a.mkv")
    """

    def __init__(
        self,
        name: str,
        log_dir: Path | None = None,
        enable_json: bool = True,
        enable_console: bool = False,
    ):
        """
        Initialize structured logger.

        Args:
            name: Logger name
            log_dir: Directory for JSON log files (None = disabled)
            enable_json: Enable JSON file logging
            enable_console: Mirror events to the standard logger at DEBUG
        """
        self.name = name
        self.log_dir = log_dir
        self.enable_json = enable_json and log_dir is not None
        self.enable_console = enable_console
        self.path: Path | None = None

        self._logger = logging.getLogger(name)
        self._json_file = None
        if self.enable_json:
            log_dir.mkdir(parents=True, exist_ok=True)
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            self.path = log_dir / f"downtube_{timestamp}.jsonl"
            self._json_file = open(self.path, "a", encoding="utf-8")  # noqa: SIM115

        self._session_context: dict[str, Any] = {
            "session_id": f"{int(time.time())}_{id(self)}",
        }

    def set_session_context(self, **kwargs) -> None:
        """Set session-level context that appears in all logs."""
        self._session_context.update(kwargs)

    def _write_json(self, level: str, event: str, context: Dict[str, Any]) -> None:
        if not self._json_file or self._json_file.closed:
            return
        entry = {
            "timestamp": datetime.now().isoformat(),
            "level": level,
            "event": event,
            **self._session_context,
            **context,
        }
        try:
            self._json_file.write(json.dumps(entry, default=str) + "\n")
            self._json_file.flush()
        except (OSError, TypeError, ValueError) as e:
            log.warning(f"JSON event logging failed: {e}")

    def emit(self, level: str, event: str, **context) -> None:
        if self.enable_console:
            details = " ".join(f"{k}={v}" for k, v in context.items())
            self._logger.debug(f"[{event}] {details}")
        if self.enable_json:
            self._write_json(level, event, context)

    def info(self, event: str, **context) -> None:
        self.emit("INFO", event, **context)

    def warning(self, event: str, **context) -> None:
        self.emit("WARNING", event, **context)

    def error(self, event: str, **context) -> None:
        self.emit("ERROR", event, **context)

    def close(self) -> None:
        """Close JSON log file."""
        if self._json_file and not self._json_file.closed:
            self._json_file.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class JobEventLogger:
    """
    Translates queue events into structured log entries.

    Progress is recorded only on phase changes, not on every percent tick.
    """

    def __init__(self, logger: StructuredLogger):
        self.logger = logger
        self._last_seen: Dict[str, tuple] = {}

    def attach(self, bus: EventBus) -> Callable[[], None]:
        """Subscribes to `bus`; returns the unsubscribe handle."""
        return bus.subscribe(self.handle)

    @staticmethod
    def _job_fields(job: DownloadJob) -> Dict[str, Any]:
        return {
            "job_id": job.id,
            "url": job.url,
            "type": job.type.value,
            "filename": job.filename,
            "video_id": youtube_id_from_url(job.url),
        }

    def handle(self, event: QueueEvent) -> None:
        if isinstance(event, JobAdded):
            job = event.job
            self._last_seen[job.id] = (job.status, job.progress.current)
            title = job.info.title if job.info else None
            self.logger.info("job_added", title=title, **self._job_fields(job))
        elif isinstance(event, JobUpdated):
            self._job_updated(event.job)
        elif isinstance(event, JobRemoved):
            self._last_seen.pop(event.id, None)
            self.logger.info("job_removed", job_id=event.id)
        elif isinstance(event, QueueStateChanged):
            state = event.state
            self.logger.info(
                "queue_state",
                running=state.running,
                paused=state.paused,
                current_job_id=state.current_job_id,
            )

    def _job_updated(self, job: DownloadJob) -> None:
        previous = self._last_seen.get(job.id)
        current = (job.status, job.progress.current)
        if previous == current:
            return
        self._last_seen[job.id] = current
        fields = self._job_fields(job)

        if previous is None or previous[0] != job.status:
            if job.status is JobStatus.RUNNING:
                self.logger.info("job_started", **fields)
            elif job.status is JobStatus.COMPLETED:
                duration = (
                    round(job.finished_at - job.started_at, 2)
                    if job.finished_at and job.started_at
                    else None
                )
                self.logger.info(
                    "job_completed",
                    output_file=job.output_file,
                    duration_s=duration,
                    **fields,
                )
            elif job.status is JobStatus.FAILED:
                self.logger.error("job_failed", error=job.error, **fields)
            elif job.status is JobStatus.CANCELLED:
                self.logger.warning("job_cancelled", **fields)
            elif job.status is JobStatus.QUEUED:
                self.logger.warning("job_requeued", **fields)
        elif job.progress.current is not None:
            self.logger.info(
                "job_phase",
                phase=job.progress.current.value,
                percent=job.progress.percent,
                **fields,
            )


def create_event_logger(
    bus: EventBus, log_dir: Optional[Path]
) -> tuple[StructuredLogger, Callable[[], None]]:
    """
    Create a JSON-lines event logger wired to `bus`.

    Returns:
        Tuple of (base_logger, unsubscribe)
    """
    base = StructuredLogger("downtube_cli.events", log_dir=log_dir)
    base.set_session_context(app_version=__version__)
    unsubscribe = JobEventLogger(base).attach(bus)
    return base, unsubscribe
