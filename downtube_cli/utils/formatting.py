"""
Helper functions for formatting data into human-readable strings.
"""

from dataclasses import dataclass
from typing import Optional


def format_size(bytes_size: int) -> str:
    """Formats bytes into a human-readable size string (e.g., '145.3 MB')."""
    if bytes_size <= 0:
        return "0 B"
    units = ["B", "KB", "MB", "GB", "TB"]
    i = 0
    while bytes_size >= 1024 and i < len(units) - 1:
        bytes_size /= 1024
        i += 1
    return f"{bytes_size:.1f} {units[i]}"


def format_duration(seconds: float) -> str:
    """
    Formats a duration in seconds into a human-readable string (e.g., '2h 34m 12s').
    """
    s = int(seconds)
    hours, remainder = divmod(s, 3600)
    minutes, secs = divmod(remainder, 60)
    parts = []
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")
    if secs > 0 or not parts:
        parts.append(f"{secs}s")
    return " ".join(parts)


def format_clock(seconds: Optional[float]) -> str:
    """Formats a media length as 'm:ss' (or 'h:mm:ss'); '--:--' when unknown."""
    if seconds is None or seconds < 0:
        return "--:--"
    s = int(seconds)
    hours, remainder = divmod(s, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


@dataclass(frozen=True)
class ErrorCategory:
    key: str
    title: str
    hint: str


NETWORK_ERROR = ErrorCategory(
    "network", "Network error", "Check your internet connection and retry."
)
NOT_FOUND_ERROR = ErrorCategory(
    "not-found", "Video not found", "The link may be wrong or the video was deleted."
)
PRIVATE_ERROR = ErrorCategory(
    "private", "Video unavailable", "The video is private or region-restricted."
)
GENERIC_ERROR = ErrorCategory("generic", "Download failed", "")

MAX_ERROR_LENGTH = 100


def classify_error(error: Optional[str]) -> ErrorCategory:
    """
    Maps a job's error text onto a coarse, user-facing category.

    For the generic case the hint carries the (truncated) original message.
    """
    if not error:
        return ErrorCategory(GENERIC_ERROR.key, GENERIC_ERROR.title, "Unknown error")

    lowered = error.lower()
    if "network" in lowered or "connection" in lowered:
        return NETWORK_ERROR
    if "not found" in lowered or "404" in lowered:
        return NOT_FOUND_ERROR
    if "private" in lowered or "unavailable" in lowered:
        return PRIVATE_ERROR

    hint = error
    if len(hint) > MAX_ERROR_LENGTH:
        hint = hint[:MAX_ERROR_LENGTH] + "..."
    return ErrorCategory(GENERIC_ERROR.key, GENERIC_ERROR.title, hint)
