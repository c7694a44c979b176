"""
Data Models Layer.

This package contains the Pydantic configuration model and the dataclasses
that describe jobs, progress and queue state.
"""

from .config import AppConfig
from .job import DownloadJob, JobStatus, JobType, MediaInfo, Phase, QueueState

__all__ = [
    "AppConfig",
    "DownloadJob",
    "JobStatus",
    "JobType",
    "MediaInfo",
    "Phase",
    "QueueState",
]
