import pytest

from downtube_cli.utils.formatting import (
    classify_error,
    format_clock,
    format_duration,
    format_size,
)


@pytest.mark.parametrize(
    ("error", "key"),
    [
        ("Unable to download webpage: <urlopen error [Errno -3] network unreachable>", "network"),
        ("Connection reset by peer", "network"),
        ("HTTP Error 404: Not Found", "not-found"),
        ("ERROR: [youtube] abc: Private video", "private"),
        ("ERROR: Video unavailable", "private"),
        ("yt-dlp (video) exited with code 2", "generic"),
    ],
)
def test_classify_error(error, key) -> None:
    assert classify_error(error).key == key


def test_generic_error_hint_is_truncated() -> None:
    category = classify_error("x" * 150)

    assert category.title == "Download failed"
    assert category.hint == "x" * 100 + "..."
    assert classify_error(None).hint == "Unknown error"


def test_human_readable_formats() -> None:
    assert format_size(0) == "0 B"
    assert format_size(1536) == "1.5 KB"
    assert format_duration(3725) == "1h 2m 5s"
    assert format_duration(0) == "0s"
    assert format_clock(None) == "--:--"
    assert format_clock(65) == "1:05"
    assert format_clock(3725) == "1:02:05"
