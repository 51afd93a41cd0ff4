from __future__ import annotations

import time
from pathlib import Path

import pytest

from vidl.config import DEFAULT_EXTRA_YOUTUBE_DL_ARGS, load_settings
from vidl.models.channels import Channel, ChannelID, ChannelMetadata, Service
from vidl.models.work_items import UpdateWorkItem, WorkItem
from vidl.repositories.channel_repository import ChannelRepository
from vidl.services.scheduler_service import SchedulerLock, SchedulerService


def _add_channels(channel_repo: ChannelRepository, count: int) -> list[Channel]:
    return [
        channel_repo.create_channel(
            ChannelID(id=f"UC{number}", service=Service.YOUTUBE),
            ChannelMetadata(title=f"Channel {number}", thumbnail_url="", description=""),
        )
        for number in range(count)
    ]


def test_scheduler_tick_enqueues_one_update_per_channel(channel_repo: ChannelRepository) -> None:
    channels = _add_channels(channel_repo, 3)
    enqueued: list[WorkItem] = []
    scheduler = SchedulerService(channel_repo, enqueued.append, poll_interval_seconds=60)

    assert scheduler.run_tick() == 3
    assert enqueued == [UpdateWorkItem(channel=channel) for channel in channels]


def test_scheduler_service_runs_ticks(channel_repo: ChannelRepository) -> None:
    _add_channels(channel_repo, 1)
    enqueued: list[WorkItem] = []
    scheduler = SchedulerService(channel_repo, enqueued.append, poll_interval_seconds=1)

    assert scheduler.start() is True
    time.sleep(1.2)
    scheduler.stop()

    assert len(enqueued) >= 1
    assert not scheduler.is_running


def test_scheduler_single_instance_lock(tmp_path: Path, channel_repo: ChannelRepository) -> None:
    lock_path = tmp_path / "locks" / "scheduler.lock"
    first = SchedulerService(channel_repo, lambda _item: None, 60, lock_path=lock_path)
    second = SchedulerService(channel_repo, lambda _item: None, 60, lock_path=lock_path)

    assert first.start() is True
    assert second.start() is False
    assert lock_path.read_text(encoding="utf-8").strip().isdigit()

    first.stop()
    assert second.start() is True
    second.stop()


def test_scheduler_lock_is_exclusive_until_released(tmp_path: Path) -> None:
    path = tmp_path / "scheduler.lock"
    owner = SchedulerLock(path)
    contender = SchedulerLock(path)

    assert owner.acquire() is True
    assert owner.acquire() is True
    assert contender.acquire() is False
    assert not contender.held

    owner.release()
    assert not owner.held
    assert contender.acquire() is True
    contender.release()


def test_load_settings_defaults(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_dir = tmp_path / "vidl-config"
    monkeypatch.setenv("VIDL_CONFIG_DIR", str(config_dir))
    monkeypatch.delenv("VIDL_SCHEDULER_ENABLED", raising=False)

    settings = load_settings()

    assert settings.config_dir == config_dir.resolve()
    assert settings.db_path == config_dir.resolve() / "vidl.sqlite3"
    assert settings.log_dir == config_dir.resolve() / "logs"
    assert settings.scheduler_lock_path == config_dir.resolve() / "scheduler.lock"
    assert settings.num_workers == 4
    assert settings.invidious_url == "https://y.com.sb"
    assert settings.extra_youtube_dl_args == list(DEFAULT_EXTRA_YOUTUBE_DL_ARGS)
    assert settings.filename_format == "%(uploader)s__%(upload_date)s_%(title)s__%(id)s.%(ext)s"
    assert settings.rate_limit_requests == 10
    assert settings.rate_limit_window_seconds == 60
    assert settings.update_interval_minutes == 60
    assert settings.dedup_window_size == 200
    assert settings.request_retries == 3
    assert settings.download_timeout_seconds is None
    assert settings.scheduler_enabled is True


def test_load_settings_parses_env_overrides(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("VIDL_DB_PATH", str(tmp_path / "elsewhere" / "db.sqlite3"))
    monkeypatch.setenv("VIDL_INVIDIOUS_URL", " https://invidious.example/ ")
    monkeypatch.setenv("VIDL_NUM_WORKERS", "0")
    monkeypatch.setenv("VIDL_EXTRA_YOUTUBE_DL_ARGS", '["-f", "best"]')
    monkeypatch.setenv("VIDL_SCHEDULER_ENABLED", "false")
    monkeypatch.setenv("VIDL_DOWNLOAD_TIMEOUT_SECONDS", "3600")

    settings = load_settings()

    assert settings.db_path == (tmp_path / "elsewhere" / "db.sqlite3").resolve()
    assert settings.log_dir == settings.config_dir / "logs"
    assert settings.invidious_url == "https://invidious.example"
    assert settings.num_workers == 1
    assert settings.extra_youtube_dl_args == ["-f", "best"]
    assert settings.scheduler_enabled is False
    assert settings.download_timeout_seconds == 3600


def test_load_settings_rejects_empty_invidious_url(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("VIDL_INVIDIOUS_URL", "  ")

    with pytest.raises(ValueError, match="VIDL_INVIDIOUS_URL"):
        load_settings()
