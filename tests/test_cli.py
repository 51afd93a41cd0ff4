from __future__ import annotations

import json
from collections.abc import Iterator
from typing import Any
from urllib.parse import urlparse

import pytest
from click.testing import CliRunner
from conftest import make_video
from rich.console import Console

from vidl import dependencies
from vidl.main import main
from vidl.models.channels import Channel, ChannelID, ChannelMetadata, Service
from vidl.models.video_status import VideoStatus

CHANNEL_ID = "UCuCkxoKLYO_EQ2GeFtbM_bw"


def _channel_payload() -> dict[str, Any]:
    return {
        "author": "Half as Interesting",
        "authorId": CHANNEL_ID,
        "description": "",
        "authorThumbnails": [{"url": "https://img/author.jpg", "width": 100, "height": 100}],
        "authorBanners": [],
    }


def _videos_payload() -> dict[str, Any]:
    return {
        "videos": [
            {
                "title": f"Upload {number}",
                "videoId": f"up{number}",
                "videoThumbnails": [
                    {"quality": "default", "url": f"https://img/up{number}.jpg", "width": 120, "height": 90}
                ],
                "description": "",
                "lengthSeconds": 300,
                "published": 1_700_000_000 - number * 86_400,
            }
            for number in range(3)
        ],
        "continuation": None,
    }


@pytest.fixture
def fake_invidious(monkeypatch: pytest.MonkeyPatch) -> list[str]:
    requested: list[str] = []

    def _fake_fetch_text(url: str, *, timeout_seconds: float, user_agent: str) -> str:
        requested.append(url)
        path = urlparse(url).path
        if path.endswith("/videos"):
            return json.dumps(_videos_payload())
        return json.dumps(_channel_payload())

    monkeypatch.setattr("vidl.services.sources.invidious._fetch_text", _fake_fetch_text)
    return requested


@pytest.fixture
def runner(monkeypatch: pytest.MonkeyPatch) -> Iterator[CliRunner]:
    monkeypatch.setattr("vidl.main.console", Console(width=200))
    yield CliRunner()


def _stored_channel() -> Channel:
    return dependencies.get_channel_repository().create_channel(
        ChannelID(id=CHANNEL_ID, service=Service.YOUTUBE),
        ChannelMetadata(title="Half as Interesting", thumbnail_url="", description=""),
    )


def test_init_creates_database(runner: CliRunner) -> None:
    result = runner.invoke(main, ["init"])

    assert result.exit_code == 0, result.output
    assert dependencies.get_settings().db_path.is_file()


def test_add_and_list_channel(runner: CliRunner, fake_invidious: list[str]) -> None:
    result = runner.invoke(main, ["add", CHANNEL_ID])
    assert result.exit_code == 0, result.output
    assert "Half as Interesting" in result.output

    channels = dependencies.get_channel_repository().list_channels()
    assert [(channel.chanid, channel.title) for channel in channels] == [
        (CHANNEL_ID, "Half as Interesting")
    ]

    duplicate = runner.invoke(main, ["add", CHANNEL_ID])
    assert duplicate.exit_code == 1
    assert "already exists" in duplicate.output

    listing = runner.invoke(main, ["list"])
    assert listing.exit_code == 0, listing.output
    assert CHANNEL_ID in listing.output


def test_add_vimeo_channel_is_not_supported(runner: CliRunner) -> None:
    result = runner.invoke(main, ["add", "someone", "--service", "vimeo"])

    assert result.exit_code == 1
    assert "not supported" in result.output


def test_update_stores_new_videos(runner: CliRunner, fake_invidious: list[str]) -> None:
    channel = _stored_channel()

    result = runner.invoke(main, ["update"])
    assert result.exit_code == 0, result.output

    videos = dependencies.get_video_repository().list_videos(channel_id=channel.id)
    assert [video.title for video in videos] == ["Upload 0", "Upload 1", "Upload 2"]
    assert {video.status for video in videos} == {VideoStatus.NEW}

    requests_after_first = len(fake_invidious)
    second = runner.invoke(main, ["update"])
    assert second.exit_code == 0, second.output
    assert len(fake_invidious) == requests_after_first

    forced = runner.invoke(main, ["update", "--force", "--full"])
    assert forced.exit_code == 0, forced.output
    assert len(fake_invidious) > requests_after_first
    assert len(dependencies.get_video_repository().list_videos()) == 3

    listing = runner.invoke(main, ["list", str(channel.id), "--status", "NE"])
    assert listing.exit_code == 0, listing.output
    assert "Upload 0" in listing.output


def test_queue_ignore_and_worker(runner: CliRunner, monkeypatch: pytest.MonkeyPatch) -> None:
    channel = _stored_channel()
    videos = dependencies.get_video_repository()
    queued_id = videos.insert_video(channel.id, make_video(1))
    ignored_id = videos.insert_video(channel.id, make_video(2))
    downloaded: list[str] = []

    class _FakeProcess:
        pid = 1

        def __init__(self, command: list[str], **kwargs: Any) -> None:
            downloaded.append(command[1])
            self.stdout = iter(["[download] 100%\n"])

        def wait(self) -> int:
            return 0

        def kill(self) -> None:
            pass

    monkeypatch.setattr("vidl.services.download_service.subprocess.Popen", _FakeProcess)

    assert runner.invoke(main, ["queue", str(queued_id)]).exit_code == 0
    assert runner.invoke(main, ["ignore", str(ignored_id)]).exit_code == 0
    assert videos.get_video_by_id(queued_id).status is VideoStatus.QUEUED

    result = runner.invoke(main, ["worker"])
    assert result.exit_code == 0, result.output

    assert downloaded == [make_video(1).url]
    assert videos.get_video_by_id(queued_id).status is VideoStatus.GRABBED
    assert videos.get_video_by_id(ignored_id).status is VideoStatus.IGNORE

    rejected = runner.invoke(main, ["queue", str(ignored_id)])
    assert rejected.exit_code == 1
    assert "Invalid video status transition" in rejected.output


def test_remove_channel(runner: CliRunner) -> None:
    channel = _stored_channel()

    result = runner.invoke(main, ["remove", str(channel.id)])
    assert result.exit_code == 0, result.output
    assert dependencies.get_channel_repository().list_channels() == []

    missing = runner.invoke(main, ["remove", str(channel.id)])
    assert missing.exit_code == 1
