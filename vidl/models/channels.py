from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from vidl.models.video_status import VideoStatus


class Service(Enum):
    YOUTUBE = "youtube"
    VIMEO = "vimeo"

    @classmethod
    def from_str(cls, raw_value: str) -> Service:
        normalized = raw_value.strip().lower()
        for service in cls:
            if service.value == normalized:
                return service
        raise ValueError(f"Unknown service: {raw_value!r}")


@dataclass(frozen=True)
class ChannelID:
    id: str
    service: Service


@dataclass(frozen=True)
class Channel:
    id: int
    chanid: str
    service: Service
    title: str
    thumbnail_url: str
    last_update: datetime | None = None

    @property
    def identity(self) -> ChannelID:
        return ChannelID(id=self.chanid, service=self.service)


@dataclass(frozen=True)
class ChannelMetadata:
    title: str
    thumbnail_url: str
    description: str


@dataclass(frozen=True)
class VideoRecord:
    video_id: str
    url: str
    title: str
    description: str
    thumbnail_url: str
    published_at: datetime
    duration_seconds: int
    title_alt: str | None = None
    description_alt: str | None = None


@dataclass(frozen=True)
class PersistedVideo:
    id: int
    channel_id: int
    status: VideoStatus
    date_added: datetime
    record: VideoRecord

    @property
    def url(self) -> str:
        return self.record.url

    @property
    def title(self) -> str:
        return self.record.title
