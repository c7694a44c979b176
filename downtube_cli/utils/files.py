"""
Filename-prefix scans of an output directory, used to discover files whose
extension is chosen by the extractor and to clean up after a stopped job.
"""

import logging
from pathlib import Path
from typing import List, Optional

from downtube_cli.utils.path import job_file_stems

log = logging.getLogger(__name__)

# Transient files yt-dlp may leave behind; never treated as a finished output.
_TRANSIENT_SUFFIXES = (".part", ".ytdl", ".temp")


def _list_files(directory: Path) -> List[Path]:
    try:
        entries = list(directory.iterdir())
    except FileNotFoundError:
        return []
    return sorted(p for p in entries if p.is_file())


def find_by_prefix(directory: Path, prefix: str) -> List[Path]:
    """Returns every regular file in `directory` whose name starts with `prefix`."""
    if not prefix:
        raise ValueError("Refusing to scan with an empty filename prefix.")
    return [p for p in _list_files(directory) if p.name.startswith(prefix)]


def find_output_file(directory: Path, prefix: str) -> Optional[Path]:
    """
    Finds the first finished file matching `prefix`, skipping transient downloads.

    Args:
        directory: Directory to scan.
        prefix: Filename prefix, usually ``"<base>."`` or ``"<base>_video."``.

    Returns:
        The matching path, or None if nothing usable exists.
    """
    for path in find_by_prefix(directory, prefix):
        if not path.name.endswith(_TRANSIENT_SUFFIXES):
            return path
    return None


def find_job_files(directory: Path, base: str) -> List[Path]:
    """
    Every file a job with base name `base` produced, finished or partial.

    That is ``<base>.*``, ``<base>_video.*`` and ``<base>_audio.*``; a
    sibling such as ``<base>-2.mkv`` is not matched.
    """
    if not base:
        raise ValueError("Refusing to scan with an empty filename prefix.")
    stems = job_file_stems(base)
    return [
        p
        for p in _list_files(directory)
        if "." in p.name and p.name.split(".", 1)[0] in stems
    ]


def remove_job_files(directory: Path, base: str) -> List[Path]:
    """
    Deletes every file in `directory` that belongs to the job named `base`.

    Unlink failures are logged and skipped so one locked file does not
    leave the rest behind.

    Returns:
        The paths that were actually removed.
    """
    removed = []
    for path in find_job_files(directory, base):
        try:
            path.unlink()
            removed.append(path)
            log.debug(f"Removed '{path.name}'")
        except FileNotFoundError:
            continue
        except OSError as e:
            log.warning(f"Could not remove '{path}': {e}")
    return removed
