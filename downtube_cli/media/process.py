"""
Asyncio subprocess helpers shared by the extractor and merge steps.

Every child is started in its own session so the whole tree (yt-dlp spawns
ffmpeg for post-processing) can be killed with a single signal.
"""

import asyncio
import logging
import os
import signal
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from downtube_cli.exceptions import SpawnError

log = logging.getLogger(__name__)

STDERR_TAIL_CHARS = 2000
_STREAM_LIMIT = 1024 * 1024


@dataclass
class CompletedProcess:
    returncode: int
    stdout: str
    stderr: str


def tail(text: str, limit: int = STDERR_TAIL_CHARS) -> str:
    """Last `limit` characters of `text`, stripped."""
    return text.strip()[-limit:]


def _decode(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


async def spawn(
    program: str, args: Sequence[str], *, label: str
) -> asyncio.subprocess.Process:
    """
    Starts `program` with piped stdout/stderr in a new process group.

    Raises:
        SpawnError: If the binary is missing or cannot be executed.
    """
    kwargs = {}
    if os.name == "posix":
        kwargs["start_new_session"] = True
    try:
        process = await asyncio.create_subprocess_exec(
            program,
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            limit=_STREAM_LIMIT,
            **kwargs,
        )
    except OSError as e:
        raise SpawnError(f"{label} spawn failed ({program}): {e}") from e
    log.debug(f"Spawned {label} pid={process.pid}")
    return process


async def kill_tree(process: asyncio.subprocess.Process) -> None:
    """Force-kills `process` and all of its descendants. Safe to call twice."""
    if process.returncode is not None:
        return
    try:
        if os.name == "posix":
            os.killpg(process.pid, signal.SIGKILL)
        else:
            taskkill = await asyncio.create_subprocess_exec(
                "taskkill",
                "/PID",
                str(process.pid),
                "/T",
                "/F",
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            await taskkill.wait()
    except ProcessLookupError:
        return
    except OSError as e:
        log.warning(f"Tree kill failed for pid={process.pid}: {e}, killing parent only")
        try:
            process.kill()
        except ProcessLookupError:
            pass


async def pump_lines(
    stream: Optional[asyncio.StreamReader], on_line: Callable[[str], None]
) -> None:
    """Feeds every line of `stream` to `on_line` until EOF."""
    if stream is None:
        return
    while True:
        line = await stream.readline()
        if not line:
            break
        on_line(_decode(line).rstrip("\r\n"))


async def run_captured(
    program: str,
    args: Sequence[str],
    *,
    label: str,
    timeout: Optional[float] = None,
) -> CompletedProcess:
    """
    Runs a process to completion and returns its decoded output.

    Args:
        program: Executable path.
        args: Command-line arguments.
        label: Short name used in log lines and errors.
        timeout: Seconds before the process tree is killed. None means no limit.

    Raises:
        SpawnError: If the process could not be started.
        asyncio.TimeoutError: If `timeout` expired. The tree is already dead.
    """
    process = await spawn(program, args, label=label)
    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout)
    except (asyncio.TimeoutError, asyncio.CancelledError):
        await kill_tree(process)
        await process.wait()
        raise
    return CompletedProcess(
        returncode=process.returncode if process.returncode is not None else -1,
        stdout=_decode(stdout),
        stderr=_decode(stderr),
    )
