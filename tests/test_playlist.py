import asyncio
import json

import pytest

from downtube_cli.exceptions import (
    DownTubeError,
    InvalidUrlError,
    PlaylistTimeoutError,
    ProcessExitError,
)
from downtube_cli.media.playlist import (
    PlaylistExpander,
    normalize_limit,
    normalize_playlist_url,
    parse_playlist_payload,
)
from downtube_cli.media.process import CompletedProcess

PLAYLIST_URL = "https://www.youtube.com/playlist?list=PLabc"


def _payload(entries):
    return {"id": "PLabc", "extractor": "youtube:tab", "entries": entries}


def test_unresolvable_entries_are_dropped() -> None:
    entries = [
        {"id": "aaaaaaaaaaa", "title": "First", "duration": 61.0},
        {"title": "No way to address this one"},
        {"webpage_url": "https://www.youtube.com/watch?v=bbbbbbbbbbb", "title": "Second"},
        {"url": "ccccccccccc"},
        {"url": "https://vimeo.com/42", "live_status": "is_live"},
        "garbage",
    ]

    infos = parse_playlist_payload(_payload(entries))

    assert len(infos) == 4
    assert [info.url for info in infos] == [
        "https://www.youtube.com/watch?v=aaaaaaaaaaa",
        "https://www.youtube.com/watch?v=bbbbbbbbbbb",
        "https://www.youtube.com/watch?v=ccccccccccc",
        "https://vimeo.com/42",
    ]
    assert infos[0].title == "First"
    assert infos[0].duration == 61.0
    assert infos[0].extractor == "youtube:tab"
    # Title falls back to the id, then to "unknown".
    assert infos[2].title == "unknown"
    assert infos[3].is_live is True
    assert infos[3].id == "https://vimeo.com/42"


def test_payload_without_entries_is_empty() -> None:
    assert parse_playlist_payload({"id": "x"}) == []
    assert parse_playlist_payload([]) == []


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (PLAYLIST_URL, PLAYLIST_URL),
        (f'"{PLAYLIST_URL}"', PLAYLIST_URL),
        (f"youtubetabplaylistjson{PLAYLIST_URL}", PLAYLIST_URL),
        ("https//www.youtube.com/playlist?list=PLabc", PLAYLIST_URL),
        ("www.youtube.com/playlist?list=PLabc", PLAYLIST_URL),
    ],
)
def test_normalize_playlist_url_repairs_pasted_urls(raw, expected) -> None:
    assert normalize_playlist_url(raw) == expected


def test_normalize_playlist_url_rejects_garbage() -> None:
    with pytest.raises(InvalidUrlError, match="Invalid playlist URL"):
        normalize_playlist_url("ftp://example.com/list")


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (10, 10),
        ("25", 25),
        (7.9, 7),
        (0, 50),
        (-3, 50),
        (None, 50),
        ("abc", 50),
        (float("nan"), 50),
        (True, 50),
        (10_000, 500),
    ],
)
def test_normalize_limit(value, expected) -> None:
    assert normalize_limit(value, 50, 500) == expected


def _fake_run(monkeypatch, result=None, error=None):
    calls = []

    async def fake_run_captured(program, args, *, label, timeout=None):
        calls.append({"program": program, "args": list(args), "timeout": timeout})
        if error is not None:
            raise error
        return result

    monkeypatch.setattr("downtube_cli.media.playlist.run_captured", fake_run_captured)
    return calls


def test_expander_passes_limit_and_slices(monkeypatch) -> None:
    entries = [{"id": f"vid{i:08d}", "title": f"E{i}"} for i in range(1, 8)]
    calls = _fake_run(monkeypatch, CompletedProcess(0, json.dumps(_payload(entries)), ""))
    expander = PlaylistExpander("yt-dlp", default_limit=5)

    infos = asyncio.run(expander.parse_playlist_infos(f" '{PLAYLIST_URL}' ", timeout_ms=999_999))

    assert [info.title for info in infos] == ["E1", "E2", "E3", "E4", "E5"]
    args = calls[0]["args"]
    assert args[:2] == ["--flat-playlist", "-J"]
    assert args[args.index("--playlist-end") + 1] == "5"
    assert args[-1] == PLAYLIST_URL
    assert calls[0]["timeout"] == 120.0


def test_expander_timeout(monkeypatch) -> None:
    _fake_run(monkeypatch, error=asyncio.TimeoutError())
    expander = PlaylistExpander("yt-dlp")

    with pytest.raises(PlaylistTimeoutError, match="timeout: 30000ms"):
        asyncio.run(expander.parse_playlist_infos(PLAYLIST_URL))


def test_expander_non_zero_exit(monkeypatch) -> None:
    _fake_run(monkeypatch, CompletedProcess(1, "", "ERROR: The playlist does not exist"))
    expander = PlaylistExpander("yt-dlp")

    with pytest.raises(ProcessExitError) as excinfo:
        asyncio.run(expander.parse_playlist_infos(PLAYLIST_URL))

    assert excinfo.value.returncode == 1
    assert "does not exist" in str(excinfo.value)


def test_expander_invalid_json(monkeypatch) -> None:
    _fake_run(monkeypatch, CompletedProcess(0, "not json", ""))
    expander = PlaylistExpander("yt-dlp")

    with pytest.raises(DownTubeError, match="invalid JSON"):
        asyncio.run(expander.parse_playlist_infos(PLAYLIST_URL))
