"""
Locates the external yt-dlp and ffmpeg executables.
"""

import asyncio
import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from downtube_cli.exceptions import SpawnError
from downtube_cli.media.process import run_captured
from downtube_cli.models.config import AppConfig
from downtube_cli.storage.config_manager import get_config_dir

log = logging.getLogger(__name__)


def app_bin_dir() -> Path:
    """Directory where `update-ytdlp` installs a private yt-dlp copy."""
    return get_config_dir() / "bin"


def executable_name(name: str) -> str:
    return f"{name}.exe" if os.name == "nt" else name


def locate_binary(name: str, configured: str = "") -> str:
    """
    Resolves an executable, in order: explicit config path, app bin dir, PATH.

    Falls back to the bare name, so a missing binary surfaces later as a
    SpawnError with a clear message rather than here.
    """
    if configured:
        return configured

    bundled = app_bin_dir() / executable_name(name)
    if bundled.is_file():
        return str(bundled)

    found = shutil.which(name)
    if found:
        return found

    log.debug(f"{name} not found in app bin dir or PATH")
    return name


@dataclass(frozen=True)
class Binaries:
    ytdlp: str
    ffmpeg: str

    @classmethod
    def from_config(cls, config: AppConfig) -> "Binaries":
        return cls(
            ytdlp=locate_binary("yt-dlp", config.ytdlp_path),
            ffmpeg=locate_binary("ffmpeg", config.ffmpeg_path),
        )


async def binary_version(program: str, flag: str = "--version") -> Optional[str]:
    """First line of `program <flag>`, or None if it is missing or fails."""
    try:
        result = await run_captured(program, [flag], label=Path(program).name, timeout=30)
    except (SpawnError, asyncio.TimeoutError) as e:
        log.debug(f"Could not read version of {program}: {e}")
        return None
    if result.returncode != 0:
        return None
    lines = result.stdout.strip().splitlines()
    return lines[0].strip() if lines else None
