"""
Web Layer.

This package talks to the GitHub releases API to keep the bundled yt-dlp
binary current.
"""

from .release_fetcher import YtDlpUpdater

__all__ = ["YtDlpUpdater"]
