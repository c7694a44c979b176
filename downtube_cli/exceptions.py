"""
Defines custom exceptions for the application to allow for more specific error handling.
"""


class DownTubeError(Exception):
    """Base exception for all application-specific errors."""


class SpawnError(DownTubeError):
    """Raised when an external binary (yt-dlp, ffmpeg) cannot be started."""


class ProcessExitError(DownTubeError):
    """Raised when an external process ran but exited with a non-zero code."""

    def __init__(self, label: str, returncode: int | None, stderr_tail: str = ""):
        self.label = label
        self.returncode = returncode
        self.stderr_tail = stderr_tail
        message = f"{label} exited with code {returncode}"
        if stderr_tail:
            message += f": {stderr_tail}"
        super().__init__(message)


class OutputNotFoundError(DownTubeError):
    """Raised when an expected output file is absent after a successful run."""


class FileIntegrityError(DownTubeError):
    """Raised when a downloaded file fails a post-download integrity check."""


class PlaylistTimeoutError(DownTubeError):
    """Raised when playlist expansion exceeds its deadline."""


class MetadataProbeError(DownTubeError):
    """Raised when single-item metadata cannot be fetched or parsed."""


class InvalidUrlError(DownTubeError):
    """Raised when a URL cannot be normalized into a usable http(s) address."""


class ConfigurationError(DownTubeError):
    """Raised for issues related to configuration loading or validation."""


class UpdateError(DownTubeError):
    """Raised when the yt-dlp binary cannot be updated."""
