import pytest

from downtube_cli.media.integrity import FileIntegrityChecker


@pytest.mark.parametrize("name", ["song.mp3", "song.m4a", "song.opus", "song.flac", "song.wav", "song.xyz"])
def test_garbage_audio_fails_check(tmp_path, name) -> None:
    path = tmp_path / name
    path.write_bytes(b"not really audio" * 8)

    assert FileIntegrityChecker.check_audio(str(path)) is False


def test_missing_file_fails_check(tmp_path) -> None:
    assert FileIntegrityChecker.check_audio(str(tmp_path / "gone.mp3")) is False
