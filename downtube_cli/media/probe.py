"""
Single-item metadata lookup through `yt-dlp --dump-json`.
"""

import json
import logging
import time
from typing import Any, Dict, List, Optional

from downtube_cli.exceptions import MetadataProbeError, SpawnError
from downtube_cli.media.process import run_captured, tail
from downtube_cli.models.job import MediaInfo

log = logging.getLogger(__name__)

STDOUT_PREVIEW_CHARS = 1500

PROBE_ARGS = [
    "--no-check-certificate",
    "--no-cache-dir",
    "--no-warnings",
    "--no-playlist",
    "--dump-json",
]


def best_thumbnail(thumbnails: Optional[List[Dict[str, Any]]]) -> Optional[str]:
    """Picks the widest thumbnail URL from a yt-dlp `thumbnails` list."""
    if not thumbnails:
        return None
    candidates = [t for t in thumbnails if isinstance(t, dict) and t.get("url")]
    if not candidates:
        return None
    widest = max(candidates, key=lambda t: t.get("width") or 0)
    return str(widest["url"])


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _as_str(value: Any) -> Optional[str]:
    return str(value) if value else None


def parse_info_payload(url: str, data: Any) -> MediaInfo:
    """
    Normalizes a yt-dlp `--dump-json` object into a MediaInfo.

    Raises:
        MetadataProbeError: If the payload is not an object or has no ``id``.
    """
    if not isinstance(data, dict) or not data.get("id"):
        raise MetadataProbeError('yt-dlp returned JSON but missing "id"')

    formats = data.get("formats")
    live_status = data.get("live_status")
    is_live = data.get("is_live")
    if isinstance(live_status, str):
        is_live = live_status != "not_live"

    return MediaInfo(
        id=str(data["id"]),
        url=url,
        title=str(data.get("title") or data.get("fulltitle") or data["id"]),
        uploader=_as_str(data.get("uploader")),
        channel=_as_str(data.get("channel")),
        thumbnail=_as_str(data.get("thumbnail")) or best_thumbnail(data.get("thumbnails")),
        duration=_as_float(data.get("duration")),
        webpage_url=_as_str(data.get("webpage_url")),
        extractor=_as_str(data.get("extractor")),
        is_live=is_live if isinstance(is_live, bool) else None,
        availability=_as_str(data.get("availability")),
        formats_count=len(formats) if isinstance(formats, list) else None,
    )


class MetadataProbe:
    """Fetches normalized metadata for one URL."""

    def __init__(self, ytdlp_path: str):
        self.ytdlp_path = ytdlp_path

    async def download_info(self, url: str) -> MediaInfo:
        """
        Runs yt-dlp in single-item JSON mode and normalizes the result.

        Raises:
            MetadataProbeError: On spawn failure, non-zero exit, invalid JSON,
                or a payload without an ``id``.
        """
        started = time.monotonic()
        try:
            result = await run_captured(
                self.ytdlp_path, [*PROBE_ARGS, url], label="yt-dlp"
            )
        except SpawnError as e:
            raise MetadataProbeError(str(e)) from e

        if result.returncode != 0:
            stderr_tail = tail(result.stderr)
            message = f"yt-dlp --dump-json failed: code={result.returncode}"
            if stderr_tail:
                message += f"\n\n{stderr_tail}"
            raise MetadataProbeError(message)

        try:
            data = json.loads(result.stdout.strip())
        except json.JSONDecodeError as e:
            preview = result.stdout[:STDOUT_PREVIEW_CHARS]
            raise MetadataProbeError(
                f"yt-dlp returned invalid JSON: {e}\n\nstdout preview:\n{preview}"
            ) from e

        info = parse_info_payload(url, data)
        elapsed_ms = int((time.monotonic() - started) * 1000)
        log.debug(f"Probed {url} -> id={info.id} title={info.title!r} ms={elapsed_ms}")
        return info
