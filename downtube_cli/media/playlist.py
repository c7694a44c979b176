"""
Playlist expansion through `yt-dlp --flat-playlist -J`.
"""

import asyncio
import json
import logging
import math
import re
from typing import Any, List, Optional

from downtube_cli.exceptions import (
    DownTubeError,
    InvalidUrlError,
    PlaylistTimeoutError,
    ProcessExitError,
)
from downtube_cli.media.probe import best_thumbnail
from downtube_cli.media.process import run_captured, tail
from downtube_cli.models.config import (
    DEFAULT_PLAYLIST_LIMIT,
    DEFAULT_PLAYLIST_TIMEOUT_MS,
    MAX_PLAYLIST_TIMEOUT_MS,
    PLAYLIST_MAX_ENTRIES,
)
from downtube_cli.models.job import MediaInfo
from downtube_cli.utils.path import youtube_watch_url

log = logging.getLogger(__name__)

_HTTP_RE = re.compile(r"^https?://", re.IGNORECASE)
_QUOTES_RE = re.compile(r"^[\"']+|[\"']+$")
_JSON_PREFIX_RE = re.compile(r"^youtubetabplaylistjson", re.IGNORECASE)
_MISSING_COLON_RE = re.compile(r"^https//", re.IGNORECASE)
_BARE_WWW_RE = re.compile(r"^www\.", re.IGNORECASE)


def normalize_playlist_url(raw: str) -> str:
    """
    Repairs common copy/paste damage in a playlist URL.

    Handles surrounding quotes, a leaked ``youtubetabplaylistjson`` prefix,
    ``https//`` without a colon and a bare ``www.`` host.

    Raises:
        InvalidUrlError: If the result is still not an http(s) URL.
    """
    s = _QUOTES_RE.sub("", raw.strip())
    s = _JSON_PREFIX_RE.sub("", s)
    if _MISSING_COLON_RE.match(s):
        s = _MISSING_COLON_RE.sub("https://", s)
    if not _HTTP_RE.match(s) and _BARE_WWW_RE.match(s):
        s = f"https://{s}"
    if not _HTTP_RE.match(s):
        raise InvalidUrlError(f'Invalid playlist URL: "{raw}"')
    return s


def normalize_limit(value: Any, fallback: int, maximum: int) -> int:
    """
    Coerces `value` to a positive int capped at `maximum`.

    Anything non-numeric, non-finite or below 1 becomes `fallback`.
    """
    if isinstance(value, bool):
        return fallback
    try:
        number = float(value)
    except (TypeError, ValueError):
        return fallback
    if not math.isfinite(number):
        return fallback
    whole = math.floor(number)
    if whole <= 0:
        return fallback
    return min(whole, maximum)


def _entry_url(entry: dict) -> Optional[str]:
    url = str(entry.get("webpage_url") or "").strip()
    if not url and entry.get("id"):
        url = youtube_watch_url(str(entry["id"]))
    if not url and entry.get("url"):
        raw = str(entry["url"]).strip()
        if _HTTP_RE.match(raw):
            url = raw
        elif raw:
            url = youtube_watch_url(raw)
    return url or None


def parse_playlist_payload(data: Any) -> List[MediaInfo]:
    """
    Converts a flat-playlist JSON document into MediaInfo entries, in order.

    Entries without a resolvable URL are dropped.
    """
    if not isinstance(data, dict):
        return []
    extractor = data.get("extractor")
    infos = []

    for entry in data.get("entries") or []:
        if not isinstance(entry, dict):
            continue
        url = _entry_url(entry)
        if not url:
            continue

        duration = entry.get("duration")
        if isinstance(duration, bool) or not isinstance(duration, (int, float)):
            duration = None
        elif not math.isfinite(duration):
            duration = None

        live_status = entry.get("live_status")
        entry_id = entry.get("id") or url

        infos.append(
            MediaInfo(
                id=str(entry_id),
                url=url,
                title=str(entry.get("title") or entry.get("id") or "unknown"),
                uploader=str(entry["uploader"]) if entry.get("uploader") else None,
                channel=str(entry["channel"]) if entry.get("channel") else None,
                thumbnail=best_thumbnail(entry.get("thumbnails")),
                duration=float(duration) if duration is not None else None,
                webpage_url=url,
                extractor=str(extractor) if extractor else None,
                is_live=(
                    live_status != "not_live" if isinstance(live_status, str) else None
                ),
                availability=(
                    str(entry["availability"]) if entry.get("availability") else None
                ),
            )
        )
    return infos


class PlaylistExpander:
    """Resolves a playlist URL into its ordered entries."""

    def __init__(
        self,
        ytdlp_path: str,
        default_limit: int = DEFAULT_PLAYLIST_LIMIT,
        default_timeout_ms: int = DEFAULT_PLAYLIST_TIMEOUT_MS,
    ):
        self.ytdlp_path = ytdlp_path
        self.default_limit = default_limit
        self.default_timeout_ms = default_timeout_ms

    async def parse_playlist_infos(
        self,
        playlist_url: str,
        playlist_limit: Any = None,
        timeout_ms: Any = None,
    ) -> List[MediaInfo]:
        """
        Expands a playlist into at most `playlist_limit` entries.

        Args:
            playlist_url: Playlist URL; malformed variants are repaired first.
            playlist_limit: Requested cap, clamped to the system maximum.
            timeout_ms: Deadline for the extractor, clamped to 120 s.

        Raises:
            InvalidUrlError: If the URL cannot be normalized.
            PlaylistTimeoutError: If the extractor did not finish in time.
            SpawnError: If yt-dlp could not be started.
            ProcessExitError: If yt-dlp exited with a non-zero code.
        """
        url = normalize_playlist_url(playlist_url)
        limit = normalize_limit(playlist_limit, self.default_limit, PLAYLIST_MAX_ENTRIES)
        timeout = normalize_limit(
            timeout_ms, self.default_timeout_ms, MAX_PLAYLIST_TIMEOUT_MS
        )
        log.debug(f"Expanding playlist url={url} limit={limit} timeout_ms={timeout}")

        args = [
            "--flat-playlist",
            "-J",
            "--no-warnings",
            "--no-check-certificate",
            "--no-playlist-reverse",
            "--playlist-end",
            str(limit),
            url,
        ]
        try:
            result = await run_captured(
                self.ytdlp_path, args, label="yt-dlp", timeout=timeout / 1000
            )
        except asyncio.TimeoutError as e:
            raise PlaylistTimeoutError(
                f"yt-dlp playlist parse timeout: {timeout}ms"
            ) from e

        if result.returncode != 0:
            raise ProcessExitError(
                "yt-dlp playlist parse", result.returncode, tail(result.stderr)
            )

        try:
            data = json.loads(result.stdout.strip())
        except json.JSONDecodeError as e:
            raise DownTubeError(
                f"yt-dlp playlist parse returned invalid JSON: {e}"
            ) from e

        infos = parse_playlist_payload(data)[:limit]
        log.debug(f"Playlist {url} expanded to {len(infos)} entries")
        return infos
