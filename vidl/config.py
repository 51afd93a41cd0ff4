from __future__ import annotations

import shlex
from pathlib import Path
from typing import Any

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CONFIG_DIR = ".vidl"
DB_FILE_NAME = "vidl.sqlite3"
DEFAULT_EXTRA_YOUTUBE_DL_ARGS: tuple[str, ...] = (
    "--restrict-filenames",
    "--continue",
    "-f",
    "137/22/248/247/best",
)
DEFAULT_FILENAME_FORMAT = "%(uploader)s__%(upload_date)s_%(title)s__%(id)s.%(ext)s"
_CONFIG_DIR_RELATIVE_DEFAULTS: tuple[tuple[str, Path], ...] = (
    ("db_path", Path(DB_FILE_NAME)),
    ("log_dir", Path("logs")),
)
_PATH_FIELDS: tuple[str, ...] = (
    "config_dir",
    "download_dir",
    *(field_name for field_name, _ in _CONFIG_DIR_RELATIVE_DEFAULTS),
)
_MINIMUM_ONE_FIELDS: tuple[str, ...] = (
    "num_workers",
    "dedup_window_size",
    "rate_limit_requests",
    "update_interval_minutes",
    "scheduler_poll_interval_seconds",
)


def _default_in_config_dir(relative_path: Path) -> Path:
    return Path(DEFAULT_CONFIG_DIR) / relative_path


def _config_dir_default_note(relative_path: Path) -> str:
    return f"Defaults to `${{VIDL_CONFIG_DIR}}/{relative_path}` when not explicitly set."


def _resolve_path(value: str | Path) -> Path:
    return Path(value).expanduser().resolve()


def _parse_bool_with_default(value: Any, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if value == 1:
            return True
        if value == 0:
            return False
        return default
    if not isinstance(value, str):
        return default

    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


class AppSettings(BaseSettings):
    """
    Runtime configuration for vidl.

    Every option is read from a `VIDL_*` environment variable (or `.env`).
    Paths are resolved to absolute paths by `load_settings`.
    """

    model_config = SettingsConfigDict(
        env_prefix="VIDL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Paths.
    config_dir: Path = Field(
        default=Path(DEFAULT_CONFIG_DIR),
        description="Root directory for the database, logs and the scheduler lock file.",
    )
    db_path: Path = Field(
        default=_default_in_config_dir(Path(DB_FILE_NAME)),
        description=f"SQLite database path. {_config_dir_default_note(Path(DB_FILE_NAME))}",
    )
    download_dir: Path = Field(
        default=Path("download"),
        description="Directory the download tool writes videos into.",
    )

    # Download tool.
    youtube_dl_binary: str = Field(
        default="yt-dlp",
        description="Executable invoked for each download (youtube-dl compatible).",
    )
    extra_youtube_dl_args: list[str] = Field(
        default_factory=lambda: list(DEFAULT_EXTRA_YOUTUBE_DL_ARGS),
        description="Extra arguments appended to every download command (JSON list in env).",
    )
    filename_format: str = Field(
        default=DEFAULT_FILENAME_FORMAT,
        description="Output template passed to the download tool, relative to download_dir.",
    )
    download_timeout_seconds: float | None = Field(
        default=None,
        description="Kill a download after this many seconds. Unbounded when unset.",
    )

    # Workers and scheduling.
    num_workers: int = Field(
        default=4,
        description="Number of worker threads consuming the work queue.",
    )
    update_interval_minutes: int = Field(
        default=60,
        description="Minimum time between two checks of the same channel unless forced.",
    )
    dedup_window_size: int = Field(
        default=200,
        description="Number of most recent known videos consulted for early stop.",
    )
    scheduler_enabled: bool = Field(
        default=True,
        description="Run the periodic refresh loop in `vidl serve`.",
    )
    scheduler_poll_interval_seconds: int = Field(
        default=300,
        description="How often the refresh loop enqueues an update for every channel.",
    )

    # Remote source.
    invidious_url: str = Field(
        default="https://y.com.sb",
        description="Invidious instance used to list YouTube channels.",
    )
    http_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout applied to every outbound HTTP request.",
    )
    request_retries: int = Field(
        default=3,
        ge=0,
        description="Retries after a failed request (so up to retries + 1 attempts).",
    )
    request_retry_delay_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Pause between two attempts of the same request.",
    )
    rate_limit_requests: int = Field(
        default=10,
        description="Requests allowed per rate limit window and per source.",
    )
    rate_limit_window_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Rate limit window length.",
    )
    metadata_backoff_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Sleep before asking the rate limiter again for a metadata request.",
    )
    listing_backoff_seconds: float = Field(
        default=10.0,
        ge=0,
        description="Sleep before asking the rate limiter again for a video page request.",
    )

    # Logging.
    log_dir: Path = Field(
        default=_default_in_config_dir(Path("logs")),
        description=f"Directory for log files. {_config_dir_default_note(Path('logs'))}",
    )
    log_level: str = Field(
        default="INFO",
        description="Console log level (stdout).",
    )

    @field_validator("invidious_url", mode="before")
    @classmethod
    def _normalize_invidious_url(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("VIDL_INVIDIOUS_URL must be a string.")
        normalized = value.strip().rstrip("/")
        if not normalized:
            raise ValueError("VIDL_INVIDIOUS_URL must not be empty.")
        return normalized

    @field_validator("youtube_dl_binary", "filename_format", mode="before")
    @classmethod
    def _normalize_required_text(cls, value: Any, info: ValidationInfo) -> str:
        env_name = f"VIDL_{str(info.field_name).upper()}"
        if not isinstance(value, str):
            raise ValueError(f"{env_name} must be a string.")
        normalized = value.strip()
        if not normalized:
            raise ValueError(f"{env_name} must not be empty.")
        return normalized

    @field_validator("extra_youtube_dl_args", mode="before")
    @classmethod
    def _normalize_extra_args(cls, value: Any) -> Any:
        if isinstance(value, str):
            return shlex.split(value)
        return value

    @field_validator("download_timeout_seconds", mode="before")
    @classmethod
    def _normalize_download_timeout(cls, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator(*_MINIMUM_ONE_FIELDS)
    @classmethod
    def _clamp_minimum_one(cls, value: int) -> int:
        return max(1, value)

    @field_validator(*_PATH_FIELDS, mode="before")
    @classmethod
    def _normalize_paths(cls, value: Any) -> Any:
        if value is None:
            return None
        return _resolve_path(value)

    @field_validator("scheduler_enabled", mode="before")
    @classmethod
    def _normalize_scheduler_enabled(cls, value: Any) -> bool:
        return _parse_bool_with_default(value, default=True)

    @property
    def scheduler_lock_path(self) -> Path:
        return self.config_dir / "scheduler.lock"


def _apply_path_defaults(settings: AppSettings) -> AppSettings:
    updates: dict[str, Path] = {}
    for field_name, relative_default in _CONFIG_DIR_RELATIVE_DEFAULTS:
        if field_name in settings.model_fields_set:
            continue
        updates[field_name] = settings.config_dir / relative_default
    if not updates:
        return settings
    return settings.model_copy(update=updates)


def _resolve_path_fields(settings: AppSettings) -> AppSettings:
    resolved_updates = {
        field_name: _resolve_path(getattr(settings, field_name))
        for field_name in _PATH_FIELDS
    }
    return settings.model_copy(update=resolved_updates)


def load_settings() -> AppSettings:
    settings = AppSettings()
    settings = _apply_path_defaults(settings)
    return _resolve_path_fields(settings)
