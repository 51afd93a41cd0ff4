from __future__ import annotations

import logging
from collections.abc import Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from vidl.dependencies import reset_cached_dependencies
from vidl.models.channels import Channel, ChannelID, ChannelMetadata, Service, VideoRecord
from vidl.repositories.channel_repository import ChannelRepository
from vidl.repositories.database import Database
from vidl.repositories.video_repository import VideoRepository

BASE_PUBLISHED_AT = datetime(2024, 1, 1, tzinfo=UTC)


def make_video(number: int, *, title: str | None = None) -> VideoRecord:
    """Video ``number``; higher numbers are published later."""
    return VideoRecord(
        video_id=f"vid{number:04d}",
        url=f"http://youtube.com/watch?v=vid{number:04d}",
        title=title if title is not None else f"Video {number}",
        description=f"Description {number}",
        thumbnail_url=f"https://img.example/vid{number:04d}.jpg",
        published_at=BASE_PUBLISHED_AT + timedelta(hours=number),
        duration_seconds=60 + number,
    )


@pytest.fixture(autouse=True)
def _isolated_env(  # pyright: ignore[reportUnusedFunction]
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> Iterator[None]:
    monkeypatch.setenv("VIDL_CONFIG_DIR", str(tmp_path / "vidl-config"))
    monkeypatch.setenv("VIDL_DOWNLOAD_DIR", str(tmp_path / "downloads"))
    monkeypatch.setenv("VIDL_SCHEDULER_ENABLED", "0")
    reset_cached_dependencies()
    yield
    reset_cached_dependencies()
    _reset_vidl_logger()


def _reset_vidl_logger() -> None:
    logger = logging.getLogger("vidl")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


@pytest.fixture
def database(tmp_path: Path) -> Database:
    db = Database(tmp_path / "vidl.sqlite3")
    db.initialize()
    return db


@pytest.fixture
def channel_repo(database: Database) -> ChannelRepository:
    return ChannelRepository(database)


@pytest.fixture
def video_repo(database: Database) -> VideoRepository:
    return VideoRepository(database)


@pytest.fixture
def channel(channel_repo: ChannelRepository) -> Channel:
    return channel_repo.create_channel(
        ChannelID(id="UCuCkxoKLYO_EQ2GeFtbM_bw", service=Service.YOUTUBE),
        ChannelMetadata(
            title="Half as Interesting",
            thumbnail_url="https://img.example/channel.jpg",
            description="",
        ),
    )
