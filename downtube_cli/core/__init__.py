"""
Core queue engine.

This package contains the scheduling logic. The `DownloadQueue` owns the
ordered job list and runs one job at a time through the `ProcessRunner`,
announcing every change on the `EventBus`.
"""

from .download_queue import DownloadQueue
from .events import EventBus

__all__ = ["DownloadQueue", "EventBus"]
