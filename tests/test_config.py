import configparser

import pytest

from downtube_cli.exceptions import ConfigurationError
from downtube_cli.models.config import AppConfig
from downtube_cli.storage.config_manager import ConfigManager


def test_missing_file_uses_defaults(tmp_path) -> None:
    config = ConfigManager(tmp_path / "config.ini").load_config()

    assert config.audio_format == "mp3"
    assert config.playlist_limit == 50
    assert config.stop_grace_seconds == 0.2
    assert config.config_path == str(tmp_path)


def test_saved_config_loads_back_with_cli_overrides(tmp_path) -> None:
    path = tmp_path / "config.ini"
    manager = ConfigManager(path)
    manager.save_new_config(
        {"output_dir": str(tmp_path / "media"), "audio_format": "FLAC", "event_log": True}
    )

    config = ConfigManager(path).load_config(
        {"playlist_limit": 20, "audio_format": None}
    )

    assert config.output_path == tmp_path / "media"
    assert config.audio_format == "flac"
    assert config.event_log is True
    assert config.playlist_limit == 20
    parser = configparser.ConfigParser(interpolation=None)
    parser.read(path)
    assert set(parser["DEFAULT"]) == AppConfig.get_ini_keys()


def test_missing_keys_are_migrated(tmp_path) -> None:
    path = tmp_path / "config.ini"
    path.write_text("[DEFAULT]\naudio_format = opus\n", encoding="utf-8")

    config = ConfigManager(path).load_config()

    assert config.audio_format == "opus"
    parser = configparser.ConfigParser(interpolation=None)
    parser.read(path)
    assert parser["DEFAULT"]["playlist_timeout_ms"] == "30000"
    assert parser["DEFAULT"]["verify_audio"] == "true"


@pytest.mark.parametrize(
    "contents",
    [
        "[DEFAULT]\naudio_format = aiff\n",
        "[DEFAULT]\nplaylist_limit = 501\n",
        "[DEFAULT]\nplaylist_limit = lots\n",
        "[DEFAULT]\nstop_grace_ms = 9000\n",
        "[DEFAULT]\nplaylist_timeout_ms = 10\n",
    ],
)
def test_invalid_values_raise_configuration_error(tmp_path, contents) -> None:
    path = tmp_path / "config.ini"
    path.write_text(contents, encoding="utf-8")

    with pytest.raises(ConfigurationError):
        ConfigManager(path).load_config()


def test_save_rejects_invalid_settings(tmp_path) -> None:
    with pytest.raises(ConfigurationError):
        ConfigManager(tmp_path / "config.ini").save_new_config({"audio_format": "aiff"})
    assert not (tmp_path / "config.ini").exists()
