"""
Keeps a private yt-dlp binary current by fetching the latest GitHub release.
"""

import asyncio
import logging
import os
import re
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

import aiofiles
import aiohttp

from downtube_cli.exceptions import UpdateError
from downtube_cli.media.binaries import binary_version

log = logging.getLogger(__name__)

RELEASES_URL = "https://api.github.com/repos/yt-dlp/yt-dlp/releases/latest"
_CHUNK_SIZE = 262144  # 256 KB
_VERSION_PART_RE = re.compile(r"\d+")

DownloadProgress = Callable[[int, int], None]


def asset_name_for_platform(platform: str = sys.platform) -> str:
    """Name of the standalone yt-dlp release asset for `platform`."""
    if platform.startswith("win"):
        return "yt-dlp.exe"
    if platform == "darwin":
        return "yt-dlp_macos"
    return "yt-dlp"


def version_key(version: str) -> tuple[int, ...]:
    """'2024.08.06.1' -> (2024, 8, 6, 1). Non-numeric noise is ignored."""
    return tuple(int(part) for part in _VERSION_PART_RE.findall(version))


def is_newer(remote: str, local: Optional[str]) -> bool:
    if not local:
        return True
    return version_key(remote) > version_key(local)


@dataclass(frozen=True)
class ReleaseInfo:
    tag: str
    asset_name: str
    download_url: str
    size: int = 0


@dataclass(frozen=True)
class UpdateResult:
    updated: bool
    version: str
    path: Path
    previous_version: Optional[str] = None


def parse_release(payload: Any, asset_name: str) -> ReleaseInfo:
    """
    Picks the platform asset out of a GitHub `releases/latest` response.

    Raises:
        UpdateError: If the payload has no tag or no matching asset.
    """
    if not isinstance(payload, dict) or not payload.get("tag_name"):
        raise UpdateError("GitHub release response has no tag_name")
    for asset in payload.get("assets") or []:
        if asset.get("name") == asset_name and asset.get("browser_download_url"):
            return ReleaseInfo(
                tag=str(payload["tag_name"]),
                asset_name=asset_name,
                download_url=str(asset["browser_download_url"]),
                size=int(asset.get("size") or 0),
            )
    raise UpdateError(
        f"Release {payload['tag_name']} has no asset named '{asset_name}'"
    )


async def local_version(ytdlp_path: str) -> Optional[str]:
    """`yt-dlp --version` output, or None if the binary is missing or broken."""
    return await binary_version(ytdlp_path)


class YtDlpUpdater:
    """Downloads the platform's yt-dlp release into `install_dir`."""

    def __init__(
        self,
        install_dir: Path,
        max_retries: int = 3,
        on_progress: Optional[DownloadProgress] = None,
    ):
        self.install_dir = install_dir
        self.max_retries = max_retries
        self.on_progress = on_progress
        self.asset_name = asset_name_for_platform()

    @property
    def target_path(self) -> Path:
        return self.install_dir / self.asset_name.replace("_macos", "")

    async def fetch_latest_release(self, session: aiohttp.ClientSession) -> ReleaseInfo:
        """Queries the GitHub API with retry logic."""
        for attempt in range(1, self.max_retries + 1):
            try:
                log.debug(
                    f"Attempt {attempt}/{self.max_retries} to fetch yt-dlp release..."
                )
                async with session.get(
                    RELEASES_URL, headers={"Accept": "application/vnd.github+json"}
                ) as response:
                    response.raise_for_status()
                    payload = await response.json()
                return parse_release(payload, self.asset_name)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                log.warning(f"Release fetch attempt {attempt} failed: {e}")
                if attempt == self.max_retries:
                    raise UpdateError(
                        f"Failed to fetch yt-dlp release after {self.max_retries} "
                        "attempts."
                    ) from e
                await asyncio.sleep(2**attempt)

        raise UpdateError("Release fetching failed unexpectedly.")

    async def download(self, session: aiohttp.ClientSession, release: ReleaseInfo) -> Path:
        """Streams the asset to a temp file, then swaps it in and marks it executable."""
        self.install_dir.mkdir(parents=True, exist_ok=True)
        target = self.target_path
        partial = target.with_name(target.name + ".download")

        try:
            async with session.get(release.download_url, allow_redirects=True) as response:
                response.raise_for_status()
                total = int(response.headers.get("Content-Length", release.size or 0))
                received = 0
                async with aiofiles.open(partial, "wb") as f:
                    async for chunk in response.content.iter_chunked(_CHUNK_SIZE):
                        await f.write(chunk)
                        received += len(chunk)
                        if self.on_progress:
                            self.on_progress(received, total)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            partial.unlink(missing_ok=True)
            raise UpdateError(f"Failed to download {release.asset_name}: {e}") from e

        try:
            os.replace(partial, target)
            if os.name != "nt":
                target.chmod(0o755)
        except OSError as e:
            raise UpdateError(f"Failed to install yt-dlp to '{target}': {e}") from e
        return target

    async def update(self, current_path: Optional[str] = None, force: bool = False) -> UpdateResult:
        """
        Installs the latest release if it is newer than `current_path` reports.

        Args:
            current_path: Binary to compare against. Defaults to the install target.
            force: Download even when the local version is up to date.
        """
        compare_path = current_path or str(self.target_path)
        previous = await local_version(compare_path)

        timeout = aiohttp.ClientTimeout(total=None, sock_connect=15, sock_read=90)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            release = await self.fetch_latest_release(session)
            log.debug(f"Latest yt-dlp release: {release.tag}, local: {previous}")

            if not force and not is_newer(release.tag, previous):
                return UpdateResult(False, release.tag, Path(compare_path), previous)

            path = await self.download(session, release)

        log.info(f"[green]✓ yt-dlp {release.tag} installed to[/green] {path}")
        return UpdateResult(True, release.tag, path, previous)
