"""
Pydantic model for application configuration.
Provides robust validation for all settings.
"""

from pathlib import Path

from pydantic import BaseModel, Field, field_validator, model_validator

AUDIO_FORMATS = ("mp3", "m4a", "opus", "flac", "wav")

DEFAULT_PLAYLIST_LIMIT = 50
PLAYLIST_MAX_ENTRIES = 500
DEFAULT_PLAYLIST_TIMEOUT_MS = 30_000
MAX_PLAYLIST_TIMEOUT_MS = 120_000


def default_output_dir() -> str:
    return str(Path.home() / "Downloads" / "DownTube")


class AppConfig(BaseModel):
    """A validated configuration model for the application."""

    # Locations
    output_dir: str = Field(default_factory=default_output_dir)
    ytdlp_path: str = ""  # Empty means auto-locate
    ffmpeg_path: str = ""

    # Download Settings
    audio_format: str = "mp3"
    verify_audio: bool = True
    stop_grace_ms: int = 200

    # Playlist Settings
    playlist_limit: int = DEFAULT_PLAYLIST_LIMIT
    playlist_timeout_ms: int = DEFAULT_PLAYLIST_TIMEOUT_MS

    # Logging
    event_log: bool = False

    # Internal fields not loaded from INI file
    config_path: str = Field("", repr=False)

    class Config:
        """Pydantic model configuration."""

        validate_assignment = True
        str_strip_whitespace = True

    @field_validator("output_dir")
    @classmethod
    def validate_output_dir(cls, v: str) -> str:
        if not v:
            raise ValueError("Output directory cannot be empty.")
        return str(Path(v).expanduser())

    @field_validator("ytdlp_path", "ffmpeg_path")
    @classmethod
    def expand_binary_path(cls, v: str) -> str:
        return str(Path(v).expanduser()) if v else ""

    @field_validator("audio_format")
    @classmethod
    def validate_audio_format(cls, v: str) -> str:
        v = v.lower()
        if v not in AUDIO_FORMATS:
            raise ValueError(f"Audio format must be one of: {', '.join(AUDIO_FORMATS)}.")
        return v

    @field_validator("playlist_limit")
    @classmethod
    def validate_playlist_limit(cls, v: int) -> int:
        if v < 1 or v > PLAYLIST_MAX_ENTRIES:
            raise ValueError(
                f"Playlist limit must be between 1 and {PLAYLIST_MAX_ENTRIES}."
            )
        return v

    @field_validator("playlist_timeout_ms")
    @classmethod
    def validate_playlist_timeout(cls, v: int) -> int:
        if v < 1000 or v > MAX_PLAYLIST_TIMEOUT_MS:
            raise ValueError(
                f"Playlist timeout must be between 1000 and {MAX_PLAYLIST_TIMEOUT_MS} ms."
            )
        return v

    @model_validator(mode="after")
    def validate_stop_grace(self) -> "AppConfig":
        if self.stop_grace_ms < 0 or self.stop_grace_ms > 5000:
            raise ValueError("Stop grace period must be between 0 and 5000 ms.")
        return self

    @property
    def output_path(self) -> Path:
        return Path(self.output_dir)

    @property
    def stop_grace_seconds(self) -> float:
        return self.stop_grace_ms / 1000

    @classmethod
    def get_ini_keys(cls) -> set[str]:
        """Returns a set of all keys that are expected in the INI file."""
        internal_fields = {"config_path"}
        return {key for key in cls.model_fields if key not in internal_fields}
