"""
Post-download sanity checks for extracted audio files.
"""

import logging
from pathlib import Path
from typing import Dict, Optional, Type

import mutagen
from mutagen import FileType, MutagenError
from mutagen.flac import FLAC
from mutagen.mp3 import MP3, HeaderNotFoundError
from mutagen.mp4 import MP4
from mutagen.oggopus import OggOpus
from mutagen.wave import WAVE

log = logging.getLogger(__name__)

# Container class mutagen must recognise for each `--audio-format` value.
FORMAT_TYPES: Dict[str, Type[FileType]] = {
    "mp3": MP3,
    "m4a": MP4,
    "opus": OggOpus,
    "flac": FLAC,
    "wav": WAVE,
}


class FileIntegrityChecker:
    """Verifies that yt-dlp's audio extraction produced a playable file."""

    @staticmethod
    def _open(filepath: str, expected: Optional[Type[FileType]]) -> Optional[FileType]:
        if expected is MP3:
            # mutagen.File would sniff a headerless file as something else.
            return MP3(filepath)
        if expected is not None:
            return expected(filepath)
        return mutagen.File(filepath)

    @staticmethod
    def check_audio(filepath: str) -> bool:
        """
        Checks that `filepath` opens as the container its extension promises
        and carries a stream with a positive length.

        Unknown extensions fall back to mutagen's content sniffing.

        Args:
            filepath: Path to the extracted audio file.

        Returns:
            True if the file looks playable, False otherwise.
        """
        name = Path(filepath).name
        expected = FORMAT_TYPES.get(Path(filepath).suffix.lower().lstrip("."))
        try:
            audio = FileIntegrityChecker._open(filepath, expected)
        except HeaderNotFoundError:
            log.warning(f"Integrity check failed for '{name}': Missing MP3 header.")
            return False
        except (MutagenError, OSError) as e:
            log.warning(f"Integrity check failed for '{name}': {e}")
            return False

        if audio is None:
            log.warning(f"Integrity check failed for '{name}': Unknown format.")
            return False
        length = getattr(audio.info, "length", 0) if audio.info else 0
        if length > 0:
            log.debug(f"Integrity check passed for '{name}' ({length:.1f}s)")
            return True
        log.warning(f"Integrity check failed for '{name}': No valid stream info.")
        return False
