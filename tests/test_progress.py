import pytest

from downtube_cli.media.progress import parse_progress_percent


@pytest.mark.parametrize(
    ("line", "expected"),
    [
        ("[download]  12.3% of 10.00MiB at 1.20MiB/s ETA 00:07", 12),
        ("[download]   0.0% of ~ 5.00MiB at Unknown B/s ETA Unknown", 0),
        ("[download]  99.5% of 3.2MiB", 100),
        ("[download]  49.4% of 3.2MiB", 49),
        ("[download] 100.0% of 3.20MiB in 00:00:02 at 1.5MiB/s", 100),
    ],
)
def test_parses_percent_from_download_lines(line, expected) -> None:
    assert parse_progress_percent(line) == expected


@pytest.mark.parametrize(
    "line",
    [
        "[youtube] aaaaaaaaaaa: Downloading webpage",
        "[download] Destination: clip_video.webm",
        "[download] 45% of 3MiB",
        "",
    ],
)
def test_lines_without_marker_return_none(line) -> None:
    assert parse_progress_percent(line) is None


def test_last_marker_in_chunk_wins() -> None:
    chunk = "[download]  10.0% of 1MiB\r[download]  20.0% of 1MiB\r[download]  30.4% of 1MiB"
    assert parse_progress_percent(chunk) == 30
