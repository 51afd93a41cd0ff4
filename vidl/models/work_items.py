from __future__ import annotations

from dataclasses import dataclass
from typing import TypeAlias

from vidl.models.channels import Channel


@dataclass(frozen=True)
class UpdateWorkItem:
    channel: Channel
    force: bool = False
    full_update: bool = False


@dataclass(frozen=True)
class DownloadWorkItem:
    video_id: int


@dataclass(frozen=True)
class ThumbnailCacheWorkItem:
    url: str


@dataclass(frozen=True)
class ShutdownWorkItem:
    pass


WorkItem: TypeAlias = UpdateWorkItem | DownloadWorkItem | ThumbnailCacheWorkItem | ShutdownWorkItem


def describe_work_item(item: WorkItem) -> str:
    if isinstance(item, UpdateWorkItem):
        return "update"
    if isinstance(item, DownloadWorkItem):
        return "download"
    if isinstance(item, ThumbnailCacheWorkItem):
        return "thumbnail_cache"
    return "shutdown"
