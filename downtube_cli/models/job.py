"""
Runtime data structures for download jobs and the queue that drives them.
"""

import time
import uuid
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional


class JobType(str, Enum):
    VIDEO = "video"
    AUDIO = "audio"


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_active(self) -> bool:
        return self in (JobStatus.QUEUED, JobStatus.RUNNING)

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class Phase(str, Enum):
    """The pipeline step a running job is currently in."""

    INIT = "init"
    VIDEO = "video"
    AUDIO = "audio"
    COMPLETE = "complete"


@dataclass
class JobProgress:
    percent: int = 0
    current: Optional[Phase] = None


@dataclass(frozen=True)
class ProgressUpdate:
    """A progress report from the runner. `percent=None` keeps the previous value."""

    current: Phase
    percent: Optional[int] = None


@dataclass
class MediaInfo:
    """Normalized metadata for a single media item."""

    id: str
    url: str
    title: str
    uploader: Optional[str] = None
    channel: Optional[str] = None
    thumbnail: Optional[str] = None
    duration: Optional[float] = None
    webpage_url: Optional[str] = None
    extractor: Optional[str] = None
    is_live: Optional[bool] = None
    availability: Optional[str] = None
    formats_count: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DownloadJob:
    """A single unit of work: one URL turned into one output file."""

    id: str
    url: str
    type: JobType
    filename: str
    output_dir: Path
    status: JobStatus = JobStatus.QUEUED
    output_file: Optional[Path] = None
    progress: JobProgress = field(default_factory=JobProgress)
    error: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    started_at: Optional[float] = None
    finished_at: Optional[float] = None
    info: Optional[MediaInfo] = None

    @classmethod
    def create(
        cls,
        url: str,
        job_type: JobType,
        filename: str,
        output_dir: Path,
        info: Optional[MediaInfo] = None,
    ) -> "DownloadJob":
        return cls(
            id=uuid.uuid4().hex,
            url=url,
            type=JobType(job_type),
            filename=filename,
            output_dir=Path(output_dir),
            info=info,
        )

    @property
    def short_id(self) -> str:
        return self.id[:8]

    @property
    def display_name(self) -> str:
        if self.info and self.info.title:
            return self.info.title
        return self.filename

    def snapshot(self) -> "DownloadJob":
        """Returns a copy that later mutations of this job will not affect."""
        return replace(self, progress=replace(self.progress))


@dataclass(frozen=True)
class QueueState:
    running: bool
    paused: bool
    current_job_id: Optional[str] = None


@dataclass(frozen=True)
class OperationResult:
    """Outcome of a queue control operation that may be refused."""

    success: bool
    message: Optional[str] = None


@dataclass(frozen=True)
class PlaylistEnqueueResult:
    added: int
    limited: bool
    skipped: int = 0
