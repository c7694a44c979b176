"""
Utilities for building job filenames and inspecting media URLs.
"""

import re
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, Optional, Set
from urllib.parse import parse_qs, urlparse

from pathvalidate import sanitize_filename

from downtube_cli.models.job import JobType

PLAYLIST_INDEX_WIDTH = 3

# A job writes <base>.<ext> plus, for video, the two intermediate streams.
JOB_FILE_SUFFIXES = ("", "_video", "_audio")

_WHITESPACE_RE = re.compile(r"\s+")
_YOUTUBE_ID_RE = re.compile(r"^[A-Za-z0-9_-]{11}$")


def create_dir(directory_path: Path) -> None:
    """Creates a directory if it does not already exist."""
    directory_path.mkdir(parents=True, exist_ok=True)


def sanitize_base_name(name: str) -> str:
    """
    Turns user input into a filesystem-safe base name without an extension.

    Whitespace and dots become underscores, so the first dot of any file the
    job produces always starts its extension.
    """
    cleaned = sanitize_filename(name.strip(), platform="universal")
    # '%' would be read as an output-template field by yt-dlp
    cleaned = cleaned.replace("%", "_").replace(".", "_")
    return _WHITESPACE_RE.sub("_", cleaned).strip("_")


def default_base_name(job_type: JobType, now: Optional[datetime] = None) -> str:
    """Timestamped base name for a job created without a prefix."""
    stamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
    suffix = "AUDIO" if JobType(job_type) is JobType.AUDIO else "VOD"
    return f"{stamp}_{suffix}"


def playlist_entry_name(prefix: str, index: int, width: int = PLAYLIST_INDEX_WIDTH) -> str:
    """Base name for the `index`-th (1-based) entry of a playlist."""
    return f"{prefix}_{index:0{width}d}"


def job_file_stems(base: str) -> Set[str]:
    """Every file stem (name up to the first dot) a job with `base` may write."""
    return {base + suffix for suffix in JOB_FILE_SUFFIXES}


def filenames_clash(a: str, b: str) -> bool:
    """True if jobs named `a` and `b` could write, find or delete each other's files."""
    return bool(job_file_stems(a) & job_file_stems(b))


def unique_base_name(
    base: str,
    taken: Iterable[str],
    in_use: Optional[Callable[[str], bool]] = None,
) -> str:
    """
    Returns `base`, or `base-2`, `base-3`, ... until it clashes with no name in `taken`.

    `in_use`, when given, also rejects candidates it reports as occupied,
    typically because files with that name already exist on disk.
    """
    taken = list(taken)
    candidate = base
    counter = 2
    while any(filenames_clash(candidate, other) for other in taken) or (
        in_use is not None and in_use(candidate)
    ):
        candidate = f"{base}-{counter}"
        counter += 1
    return candidate


def is_playlist_url(url: str) -> bool:
    """Checks whether a URL carries a playlist (``list=``) query parameter."""
    try:
        query = parse_qs(urlparse(url.strip()).query)
    except ValueError:
        return False
    return bool(query.get("list"))


def youtube_id_from_url(url: str) -> Optional[str]:
    """
    Extracts the 11-character video id from common YouTube URL shapes.

    Handles ``watch?v=``, ``youtu.be/<id>``, ``/shorts/<id>``, ``/embed/<id>``
    and ``/live/<id>``. Returns None for anything else.
    """
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return None
    host = (parsed.hostname or "").lower()
    if host.startswith("www.") or host.startswith("m."):
        host = host.split(".", 1)[1]

    candidate = None
    if host == "youtu.be":
        candidate = parsed.path.lstrip("/").split("/")[0]
    elif host in ("youtube.com", "music.youtube.com", "youtube-nocookie.com"):
        parts = [p for p in parsed.path.split("/") if p]
        if parts and parts[0] == "watch":
            candidate = (parse_qs(parsed.query).get("v") or [None])[0]
        elif len(parts) >= 2 and parts[0] in ("shorts", "embed", "live", "v"):
            candidate = parts[1]

    if candidate and _YOUTUBE_ID_RE.match(candidate):
        return candidate
    return None


def youtube_watch_url(video_id: str) -> str:
    return f"https://www.youtube.com/watch?v={video_id}"
